# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit Tests for Package Data Models

Tests constraint parsing and matching, provisions, conflicts, catalogs and
plan actions.
"""

from datetime import datetime, UTC

import pytest
from pydantic import ValidationError as PydanticValidationError

from pkgengine.models.package_models import (
    Action,
    ActionType,
    Catalog,
    ChangePlan,
    ChangeRequest,
    Constraint,
    InstalledPackage,
    InstallReason,
    PackageSpec
)


class TestConstraint:
    """Test suite for Constraint"""

    def test_parse_unversioned(self):
        """Test parsing a bare name"""
        constraint = Constraint.parse("libfoo")

        assert constraint.name == "libfoo"
        assert constraint.operator is None
        assert constraint.version is None
        assert not constraint.is_versioned

    @pytest.mark.parametrize("text,operator,version", [
        ("libfoo>=1.2", ">=", "1.2"),
        ("libfoo<=1.2", "<=", "1.2"),
        ("libfoo>1.2", ">", "1.2"),
        ("libfoo<1.2", "<", "1.2"),
        ("libfoo=2:1.2-3", "=", "2:1.2-3"),
    ])
    def test_parse_versioned(self, text, operator, version):
        """Test parsing every relation"""
        constraint = Constraint.parse(text)

        assert constraint.name == "libfoo"
        assert constraint.operator == operator
        assert constraint.version == version
        assert str(constraint) == text

    def test_multi_hyphen_release_matches(self):
        """Test pins on the version match a release containing hyphens"""
        assert Constraint.parse("foo>=1.0").version_matches("1.0-rc-1")
        assert Constraint.parse("foo=1.0").version_matches("1.0-rc-1")
        assert not Constraint.parse("foo>1.0").version_matches("1.0-rc-1")

    def test_parse_invalid(self):
        """Test malformed constraint raises error"""
        with pytest.raises(ValueError, match="Invalid constraint"):
            Constraint.parse(">=1.0")

    def test_operator_requires_version(self):
        """Test operator and version must be given together"""
        with pytest.raises(PydanticValidationError):
            Constraint(name="libfoo", operator=">=")

        with pytest.raises(PydanticValidationError):
            Constraint(name="libfoo", version="1.0")

    def test_version_matches_is_loose(self):
        """Test constraint matching ignores a missing release"""
        assert Constraint.parse("libfoo=1.0").version_matches("1.0-3")
        assert Constraint.parse("libfoo>=1.0-2").version_matches("1.0")
        assert not Constraint.parse("libfoo>1.0").version_matches("1.0-5")

    def test_satisfied_by_name(self):
        """Test a package satisfies a constraint on its own name"""
        package = PackageSpec(name="libfoo", version="1.5")

        assert Constraint.parse("libfoo").satisfied_by(package)
        assert Constraint.parse("libfoo>=1.0").satisfied_by(package)
        assert not Constraint.parse("libfoo>=2.0").satisfied_by(package)
        assert not Constraint.parse("libbar").satisfied_by(package)

    def test_satisfied_by_provision(self):
        """Test versioned and unversioned provisions"""
        bash = PackageSpec(name="bash", version="5.2", provides=["sh=5.2"])
        dash = PackageSpec(name="dash", version="0.5", provides=["sh"])

        assert Constraint.parse("sh").satisfied_by(bash)
        assert Constraint.parse("sh").satisfied_by(dash)
        assert Constraint.parse("sh>=5").satisfied_by(bash)
        # Unversioned provision never satisfies a versioned constraint
        assert not Constraint.parse("sh>=5").satisfied_by(dash)


class TestPackageSpec:
    """Test suite for PackageSpec"""

    def test_constraints_parsed_from_strings(self):
        """Test dependencies and conflicts accept strings"""
        package = PackageSpec(name="app", version="1.0", dependencies=["libfoo>=1.0", "libbar"], conflicts=["oldapp"])

        assert package.dependencies == (Constraint.parse("libfoo>=1.0"), Constraint.parse("libbar"))
        assert package.conflicts == (Constraint.parse("oldapp"),)

    def test_serialized_constraints_are_strings(self):
        """Test model_dump renders constraints as text"""
        package = PackageSpec(name="app", version="1.0", dependencies=["libfoo>=1.0"])
        data = package.model_dump(mode="json")

        assert data["dependencies"] == ["libfoo>=1.0"]
        assert PackageSpec.model_validate(data) == package

    def test_invalid_name(self):
        """Test names with relation characters are rejected"""
        with pytest.raises(PydanticValidationError):
            PackageSpec(name="app>=1", version="1.0")

    def test_invalid_provision(self):
        """Test provisions only accept '='"""
        with pytest.raises(PydanticValidationError):
            PackageSpec(name="bash", version="5.2", provides=["sh>=5"])

    def test_immutable(self):
        """Test package specs are frozen"""
        package = PackageSpec(name="app", version="1.0")

        with pytest.raises(PydanticValidationError):
            package.version = "2.0"

    def test_key_and_provisions(self):
        """Test identity helpers"""
        package = PackageSpec(name="postfix", version="3.8-1", provides=["mta", "smtp-server=1"])

        assert package.key == "postfix@3.8-1"
        assert [str(p) for p in package.provisions] == ["mta", "smtp-server=1"]

    def test_conflicts_with(self):
        """Test conflict detection by name and provision"""
        postfix = PackageSpec(name="postfix", version="3.8", conflicts=["mta"])
        exim = PackageSpec(name="exim", version="4.9", provides=["mta"])
        other = PackageSpec(name="vim", version="9.0")

        assert postfix.conflicts_with(exim) == Constraint.parse("mta")
        assert postfix.conflicts_with(other) is None

    def test_never_conflicts_with_itself(self):
        """Test a package providing what it conflicts with"""
        postfix = PackageSpec(name="postfix", version="3.8", provides=["mta"], conflicts=["mta"])
        newer = PackageSpec(name="postfix", version="3.9", provides=["mta"], conflicts=["mta"])

        assert postfix.conflicts_with(newer) is None


class TestCatalog:
    """Test suite for Catalog"""

    def test_find_and_providers(self):
        """Test querying a catalog"""
        catalog = Catalog(name="core", packages=[
            PackageSpec(name="bash", version="5.1", provides=["sh=5.1"]),
            PackageSpec(name="bash", version="5.2", provides=["sh=5.2"]),
            PackageSpec(name="dash", version="0.5", provides=["sh"]),
        ])

        assert [p.version for p in catalog.find("bash")] == ["5.1", "5.2"]
        assert [p.key for p in catalog.providers(Constraint.parse("sh>=5.2"))] == ["bash@5.2"]
        assert len(catalog.providers(Constraint.parse("sh"))) == 3

    def test_duplicate_entries_rejected(self):
        """Test name+version is unique within a catalog"""
        with pytest.raises(PydanticValidationError, match="Duplicate catalog entry"):
            Catalog(name="core", packages=[
                PackageSpec(name="bash", version="5.1"),
                PackageSpec(name="bash", version="5.1"),
            ])


class TestChangeRequestAndPlan:
    """Test suite for ChangeRequest, Action and ChangePlan"""

    def test_request_parses_add(self):
        """Test add entries accept pinned strings"""
        request = ChangeRequest(add=["app", "libfoo>=1.0"], remove=["old"])

        assert request.add[1] == Constraint.parse("libfoo>=1.0")
        assert request.remove == ["old"]
        assert not request.sysupgrade

    def test_action_descriptions(self):
        """Test action summaries"""
        old = InstalledPackage(
            spec=PackageSpec(name="app", version="1.0"),
            files=("usr/bin/app",),
            installed_at=datetime.now(UTC),
            reason=InstallReason.DEPENDENCY
        )
        new = PackageSpec(name="app", version="2.0")

        install = Action.install(new)
        upgrade = Action.upgrade(old, new)
        remove = Action.remove(old)

        assert str(install) == "install app@2.0"
        assert str(upgrade) == "upgrade app 1.0 -> 2.0"
        assert str(remove) == "remove app@1.0"
        # Upgrade keeps the previous install reason unless given one
        assert upgrade.reason == InstallReason.DEPENDENCY
        assert Action.upgrade(old, new, InstallReason.EXPLICIT).reason == InstallReason.EXPLICIT
        assert upgrade.current.version == "1.0"
        assert upgrade.target.version == "2.0"
        assert remove.target is None

    def test_plan_helpers(self):
        """Test plan summaries and filters"""
        plan = ChangePlan(actions=[
            Action.install(PackageSpec(name="a", version="1.0")),
            Action.install(PackageSpec(name="b", version="1.0")),
        ], batches=[["a"], ["b"]])

        assert not plan.is_empty
        assert plan.names() == ["a", "b"]
        assert plan.summary() == ["install a@1.0", "install b@1.0"]
        assert len(plan.of_type(ActionType.REMOVE)) == 0
        assert ChangePlan().is_empty
