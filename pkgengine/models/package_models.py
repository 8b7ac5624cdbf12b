# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Package Data Models

Defines data structures for the package engine including package specs,
constraints, catalogs, change requests/plans and transaction records.
"""

import re
from typing import List, Dict, Optional, Tuple
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from pkgengine.models.version import Version, vercmp


class InstallReason(str, Enum):
    """Why a package is installed"""
    EXPLICIT = "explicit"
    DEPENDENCY = "dependency"


class ActionType(str, Enum):
    """Type of plan action"""
    INSTALL = "install"
    UPGRADE = "upgrade"
    REMOVE = "remove"


class TransactionState(str, Enum):
    """Transaction engine state"""
    IDLE = "idle"
    STAGING = "staging"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"


class TransactionStatus(str, Enum):
    """Transaction status"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    NEEDS_RECOVERY = "needs_recovery"
    RECOVERED = "recovered"


OPERATORS = ("=", ">=", "<=", ">", "<")

_CONSTRAINT_RE = re.compile(
    r"^\s*(?P<name>[^<>=\s]+)\s*(?:(?P<op>>=|<=|=|<|>)\s*(?P<version>[^<>=\s]+))?\s*$"
)


class Constraint(BaseModel):
    """
    Package name plus optional version relation.

    Example: "libfoo>=1.2" -> name="libfoo", operator=">=", version="1.2"
    """
    model_config = ConfigDict(frozen=True)

    name: str
    operator: Optional[str] = None
    version: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Constraint name cannot be empty")
        return value

    @field_validator("operator")
    @classmethod
    def _check_operator(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in OPERATORS:
            raise ValueError(f"Invalid operator: {value}. Must be one of {OPERATORS}")
        return value

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: Optional[str], info) -> Optional[str]:
        if (info.data.get("operator") is None) != (value is None):
            raise ValueError("Operator and version must be given together")
        return value

    @classmethod
    def parse(cls, text: str) -> "Constraint":
        """Parse "name", "name>=1.0", "name=2:1.0-3" ..."""
        match = _CONSTRAINT_RE.match(text or "")
        if not match:
            raise ValueError(f"Invalid constraint: {text!r}")
        return cls(
            name=match.group("name"),
            operator=match.group("op"),
            version=match.group("version")
        )

    @property
    def is_versioned(self) -> bool:
        return self.operator is not None

    def version_matches(self, version: str) -> bool:
        """Check a version against the relation (loose comparison)."""
        if self.operator is None:
            return True

        cmp = vercmp(version, self.version)
        if self.operator == "=":
            return cmp == 0
        if self.operator == ">=":
            return cmp >= 0
        if self.operator == "<=":
            return cmp <= 0
        if self.operator == ">":
            return cmp > 0
        return cmp < 0

    def satisfied_by(self, package: "PackageSpec") -> bool:
        """
        Check whether a package satisfies this constraint by its own name
        or by one of its provisions.

        An unversioned provision never satisfies a versioned constraint.
        """
        if package.name == self.name and self.version_matches(package.version):
            return True

        for provision in package.provisions:
            if provision.name != self.name:
                continue
            if self.operator is None:
                return True
            if provision.version is not None and self.version_matches(provision.version):
                return True
        return False

    def __str__(self) -> str:
        if self.operator is None:
            return self.name
        return f"{self.name}{self.operator}{self.version}"


def _to_constraints(value) -> Tuple[Constraint, ...]:
    return tuple(Constraint.parse(v) if isinstance(v, str) else v for v in (value or ()))


class PackageSpec(BaseModel):
    """
    Immutable description of one package version.

    name + version are never mutated once published into a catalog;
    a new version supersedes the old entry.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str = ""
    dependencies: Tuple[Constraint, ...] = ()
    conflicts: Tuple[Constraint, ...] = ()
    provides: Tuple[str, ...] = ()
    source: Optional[str] = None  # Fetch reference for the package archive
    signature: Optional[str] = None  # ASCII-armored detached signature
    catalog: Optional[str] = None  # Catalog the entry was loaded from

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value or any(ch in value for ch in "<>= /"):
            raise ValueError(f"Invalid package name: {value!r}")
        return value

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        Version(value)
        return value

    @field_validator("dependencies", "conflicts", mode="before")
    @classmethod
    def _parse_constraints(cls, value):
        return _to_constraints(value)

    @field_validator("provides", mode="before")
    @classmethod
    def _check_provides(cls, value):
        provides = tuple(value or ())
        for item in provides:
            provision = Constraint.parse(item)
            if provision.operator not in (None, "="):
                raise ValueError(f"Provision must be unversioned or use '=': {item}")
        return provides

    @field_serializer("dependencies", "conflicts")
    def _serialize_constraints(self, value: Tuple[Constraint, ...]) -> List[str]:
        return [str(c) for c in value]

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}"

    @property
    def version_key(self) -> Version:
        return Version(self.version)

    @property
    def provisions(self) -> List[Constraint]:
        return [Constraint.parse(item) for item in self.provides]

    def satisfies(self, constraint: Constraint) -> bool:
        return constraint.satisfied_by(self)

    def conflicts_with(self, other: "PackageSpec") -> Optional[Constraint]:
        """Return the conflict entry matching another package, if any."""
        if other.name == self.name:
            return None
        for conflict in self.conflicts:
            if conflict.satisfied_by(other):
                return conflict
        return None

    def __str__(self) -> str:
        return self.key


class InstalledPackage(BaseModel):
    """Record of an installed package"""
    model_config = ConfigDict(frozen=True)

    spec: PackageSpec
    files: Tuple[str, ...] = ()
    installed_at: datetime
    reason: InstallReason = InstallReason.EXPLICIT
    transaction_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def version(self) -> str:
        return self.spec.version

    @property
    def key(self) -> str:
        return self.spec.key


class Catalog(BaseModel):
    """Read-only snapshot of one sync source"""
    model_config = ConfigDict(frozen=True)

    name: str
    url: Optional[str] = None
    packages: Tuple[PackageSpec, ...] = ()

    @field_validator("packages")
    @classmethod
    def _check_unique(cls, value: Tuple[PackageSpec, ...]) -> Tuple[PackageSpec, ...]:
        seen = set()
        for package in value:
            if package.key in seen:
                raise ValueError(f"Duplicate catalog entry: {package.key}")
            seen.add(package.key)
        return value

    def find(self, name: str) -> List[PackageSpec]:
        """All versions published under a name."""
        return [p for p in self.packages if p.name == name]

    def providers(self, constraint: Constraint) -> List[PackageSpec]:
        """All entries satisfying a constraint by name or provision."""
        return [p for p in self.packages if constraint.satisfied_by(p)]


class CatalogConfig(BaseModel):
    """Catalog configuration from catalogs.conf"""
    name: str
    url: Optional[str] = None
    enabled: bool = True
    signature_required: bool = True


class ChangeRequest(BaseModel):
    """Requested package changes"""
    add: List[Constraint] = Field(default_factory=list)
    remove: List[str] = Field(default_factory=list)
    sysupgrade: bool = False  # Upgrade every installed package as well
    remove_unneeded: bool = False  # Drop dependencies nothing requires anymore

    @field_validator("add", mode="before")
    @classmethod
    def _parse_add(cls, value):
        return list(_to_constraints(value))


class Action(BaseModel):
    """One step of a change plan"""
    model_config = ConfigDict(frozen=True)

    type: ActionType
    package: Optional[PackageSpec] = None  # Target version (install/upgrade)
    installed: Optional[InstalledPackage] = None  # Current version (upgrade/remove)
    reason: InstallReason = InstallReason.EXPLICIT

    @classmethod
    def install(cls, package: PackageSpec, reason: InstallReason = InstallReason.EXPLICIT) -> "Action":
        return cls(type=ActionType.INSTALL, package=package, reason=reason)

    @classmethod
    def upgrade(
        cls,
        installed: InstalledPackage,
        package: PackageSpec,
        reason: Optional[InstallReason] = None
    ) -> "Action":
        return cls(
            type=ActionType.UPGRADE,
            package=package,
            installed=installed,
            reason=reason or installed.reason
        )

    @classmethod
    def remove(cls, installed: InstalledPackage) -> "Action":
        return cls(type=ActionType.REMOVE, installed=installed, reason=installed.reason)

    @property
    def name(self) -> str:
        return self.package.name if self.package else self.installed.name

    @property
    def target(self) -> Optional[PackageSpec]:
        """Spec present after the action (None for removals)."""
        return self.package

    @property
    def current(self) -> Optional[PackageSpec]:
        """Spec present before the action (None for installs)."""
        return self.installed.spec if self.installed else None

    def __str__(self) -> str:
        if self.type == ActionType.INSTALL:
            return f"install {self.package.key}"
        if self.type == ActionType.UPGRADE:
            return f"upgrade {self.name} {self.installed.version} -> {self.package.version}"
        return f"remove {self.installed.key}"


class ChangePlan(BaseModel):
    """
    Ordered actions produced by the resolver.

    batches lists the package names of each ordering group; a dependency
    cycle forms a single batch.
    """
    actions: List[Action] = Field(default_factory=list)
    batches: List[List[str]] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.actions

    def names(self) -> List[str]:
        return [action.name for action in self.actions]

    def summary(self) -> List[str]:
        return [str(action) for action in self.actions]

    def of_type(self, action_type: ActionType) -> List[Action]:
        return [a for a in self.actions if a.type == action_type]


class TransactionRecord(BaseModel):
    """Transaction record for operations"""
    id: str
    status: TransactionStatus
    actions: List[str] = Field(default_factory=list)
    completed_actions: List[str] = Field(default_factory=list)
    started_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "status": self.status.value,
            "actions": self.actions,
            "completed_actions": self.completed_actions,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error
        }


class RecoveryRecord(BaseModel):
    """
    Durable record of a transaction that entered the committing phase.

    Removed once the installed-set record has been replaced.
    """
    transaction_id: str
    plan: ChangePlan
    staging_dir: str
    manifests: Dict[int, List[str]] = Field(default_factory=dict)  # action index -> staged paths
    completed: List[int] = Field(default_factory=list)
    started_at: datetime
