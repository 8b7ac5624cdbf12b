# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Dependency Resolver

Single responsibility: Translate a ChangeRequest into an ordered ChangePlan
"""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pkgengine.core.errors import (
    ConflictDetectedError,
    NotFoundError,
    UnresolvableDependencyError,
    ValidationError,
    VersionPinConflictError
)
from pkgengine.models.package_models import (
    Action,
    ChangePlan,
    ChangeRequest,
    Constraint,
    InstalledPackage,
    InstallReason,
    PackageSpec
)
from pkgengine.models.version import vercmp
from .ordering import order_actions

logger = logging.getLogger(__name__)

Candidate = Tuple[int, PackageSpec]

# Why a name was (re)selected during this resolution
REQUESTED = "requested"
DEPENDENCY = "dependency"
SYSUPGRADE = "sysupgrade"


class WorkingSet:
    """
    Package set being resolved: installed packages minus the removals,
    plus everything selected from the catalogs so far.

    A name selected from a catalog is locked for the rest of the resolution.
    """

    def __init__(self, installed: Dict[str, InstalledPackage], removing: Set[str]):
        self.packages: Dict[str, PackageSpec] = {
            name: pkg.spec for name, pkg in installed.items() if name not in removing
        }
        self.reasons: Dict[str, InstallReason] = {
            name: pkg.reason for name, pkg in installed.items() if name not in removing
        }
        self.locked: Dict[str, str] = {}
        self.pins: Dict[str, List[Constraint]] = {}

    def select(self, spec: PackageSpec, origin: str):
        self.packages[spec.name] = spec
        self.locked[spec.name] = origin
        if origin == REQUESTED:
            self.reasons[spec.name] = InstallReason.EXPLICIT
        else:
            self.reasons.setdefault(spec.name, InstallReason.DEPENDENCY)

    def satisfies(self, constraint: Constraint) -> bool:
        return any(constraint.satisfied_by(spec) for spec in self.packages.values())

    def constraints_on(self, name: str) -> List[Constraint]:
        """Every constraint currently placed on a name (dependencies and pins)."""
        constraints = list(self.pins.get(name, []))
        for spec in self.packages.values():
            constraints.extend(dep for dep in spec.dependencies if dep.name == name)
        return constraints


def best_version(candidates: Iterable[Candidate]) -> Optional[PackageSpec]:
    """
    Highest version; equal versions go to the earliest registered catalog.

    Args:
        candidates: (catalog position, spec) pairs

    Returns:
        Selected spec or None if there are no candidates
    """
    best = None
    for position, spec in candidates:
        if best is None:
            best = (position, spec)
            continue
        best_position, best_spec = best
        if spec.version_key > best_spec.version_key or (
            spec.version_key == best_spec.version_key and position < best_position
        ):
            best = (position, spec)
    return best[1] if best else None


def first_provider(candidates: Iterable[Candidate]) -> Optional[PackageSpec]:
    """Earliest catalog, then package name, then highest version."""
    ranked = sorted(candidates, key=lambda c: c[1].version_key, reverse=True)
    ranked.sort(key=lambda c: (c[0], c[1].name))
    return ranked[0][1] if ranked else None


class DependencyResolver:
    """
    Resolves change requests against a database store.

    Resolution never mutates the store; it either returns a complete plan
    or raises a ResolutionError (or NotFoundError / ValidationError for a
    bad request).
    """

    def __init__(self, store):
        """
        Initialize dependency resolver.

        Args:
            store: DatabaseStore providing installed() and the catalog index
        """
        self.store = store

    @property
    def index(self):
        return self.store.index

    def resolve(self, request: ChangeRequest) -> ChangePlan:
        """
        Resolve a change request into an ordered plan.

        Args:
            request: Packages to add and remove

        Returns:
            ChangePlan with ordered actions and batches

        Raises:
            NotFoundError: Requested package unknown to every catalog
            ValidationError: Same name requested for add and remove
            UnresolvableDependencyError: A constraint cannot be satisfied
            ConflictDetectedError: Two packages of the result conflict
            VersionPinConflictError: A version change breaks a constraint
        """
        installed = dict(self.store.installed())
        logger.info(
            f"Resolving request: add={[str(c) for c in request.add]} remove={request.remove} "
            f"sysupgrade={request.sysupgrade}"
        )

        removing = self._removal_set(request, installed)
        working = WorkingSet(installed, removing)

        self._seed_requests(request, working, removing)
        if request.sysupgrade:
            self._seed_upgrades(installed, working)

        self._expand(working, removing)

        if request.remove_unneeded and removing:
            self._drop_unneeded(installed, removing, working)

        self._check_conflicts(working)
        self._check_stability(working, installed)

        actions = self._diff(working, installed)
        ordered, batches = order_actions(actions)
        plan = ChangePlan(actions=ordered, batches=batches)

        logger.info(f"Resolved plan with {len(plan.actions)} action(s): {plan.summary()}")
        return plan

    # =========================================================================
    # Seeding
    # =========================================================================

    def _removal_set(self, request: ChangeRequest, installed: Dict[str, InstalledPackage]) -> Set[str]:
        requested = {c.name for c in request.add}
        overlap = sorted(requested & set(request.remove))
        if overlap:
            raise ValidationError(
                f"Packages requested for both add and remove: {', '.join(overlap)}",
                field="remove"
            )

        removing = set()
        for name in request.remove:
            if name in installed:
                removing.add(name)
            else:
                logger.info(f"Package {name} is not installed, nothing to remove")
        return removing

    def _seed_requests(self, request: ChangeRequest, working: WorkingSet, removing: Set[str]):
        pins_by_name: Dict[str, List[Constraint]] = {}
        for constraint in request.add:
            pins_by_name.setdefault(constraint.name, []).append(constraint)

        for name, pins in pins_by_name.items():
            spec = self._select_requested(name, pins, removing)

            previous = working.locked.get(spec.name)
            if previous == REQUESTED and working.packages[spec.name] != spec:
                raise ValidationError(
                    f"Requests select two versions of {spec.name}: "
                    f"{working.packages[spec.name].version} and {spec.version}",
                    field="add"
                )

            working.select(spec, REQUESTED)
            working.pins.setdefault(spec.name, []).extend(p for p in pins if p.name == spec.name)
            logger.debug(f"Selected {spec.key} for request {[str(p) for p in pins]}")

    def _select_requested(self, name: str, pins: List[Constraint], removing: Set[str]) -> PackageSpec:
        exact = self.index.find(name)
        if exact:
            matching = [c for c in exact if all(pin.version_matches(c[1].version) for pin in pins)]
            spec = best_version(matching)
        else:
            known = [c for c in self.index.providers(Constraint(name=name)) if c[1].name not in removing]
            if not known:
                raise NotFoundError("Package", name)
            matching = [c for c in known if all(pin.satisfied_by(c[1]) for pin in pins)]
            spec = first_provider(matching)

        if spec is None:
            pinned = next((pin for pin in pins if pin.is_versioned), pins[0])
            raise UnresolvableDependencyError(pinned, required_by=None)
        return spec

    def _seed_upgrades(self, installed: Dict[str, InstalledPackage], working: WorkingSet):
        for name in sorted(working.packages):
            if name in working.locked or name not in installed:
                continue
            newest = best_version(self.index.find(name))
            if newest and vercmp(newest.version, installed[name].version) > 0:
                working.select(newest, SYSUPGRADE)
                logger.debug(f"System upgrade selects {newest.key}")

    # =========================================================================
    # Closure expansion
    # =========================================================================

    def _expand(self, working: WorkingSet, removing: Set[str]):
        queue = sorted(working.packages)
        while queue:
            name = queue.pop(0)
            spec = working.packages.get(name)
            if spec is None:
                continue

            for dep in spec.dependencies:
                if working.satisfies(dep):
                    continue

                candidate = self._select_dependency(dep, working, removing, required_by=spec.key)
                working.select(candidate, DEPENDENCY)
                queue.append(candidate.name)
                logger.debug(f"Selected {candidate.key} for {dep} (required by {spec.key})")

    def _select_dependency(
        self,
        dep: Constraint,
        working: WorkingSet,
        removing: Set[str],
        required_by: str
    ) -> PackageSpec:
        if dep.name not in removing and dep.name not in working.locked:
            entries = [c for c in self.index.find(dep.name) if dep.version_matches(c[1].version)]
            placed = working.constraints_on(dep.name)
            agreeing = [c for c in entries if all(other.satisfied_by(c[1]) for other in placed)]
            spec = best_version(agreeing or entries)
            if spec:
                return spec

        providers = [
            c for c in self.index.providers(dep)
            if c[1].name != dep.name
            and c[1].name not in removing
            and c[1].name not in working.locked
        ]
        spec = first_provider(providers)
        if spec:
            return spec

        if working.locked.get(dep.name) == REQUESTED:
            raise VersionPinConflictError(dep.name, dep, required_by)
        raise UnresolvableDependencyError(dep, required_by=required_by)

    # =========================================================================
    # Unneeded dependencies
    # =========================================================================

    def _reachable(self, roots: Iterable[PackageSpec], packages: Dict[str, PackageSpec]) -> Set[str]:
        """Names reachable from roots along dependency edges (roots excluded)."""
        seen: Set[str] = set()
        stack = list(roots)
        while stack:
            spec = stack.pop()
            for dep in spec.dependencies:
                for name, other in packages.items():
                    if name not in seen and dep.satisfied_by(other):
                        seen.add(name)
                        stack.append(other)
        return seen

    def _drop_unneeded(self, installed: Dict[str, InstalledPackage], removing: Set[str], working: WorkingSet):
        removed_specs = [installed[name].spec for name in sorted(removing)]
        candidates = {
            name for name in self._reachable(removed_specs, working.packages)
            if working.reasons.get(name) == InstallReason.DEPENDENCY and name not in working.locked
        }
        if not candidates:
            return

        keepers = [spec for name, spec in working.packages.items() if name not in candidates]
        still_needed = self._reachable(keepers, working.packages)

        for name in sorted(candidates - still_needed):
            logger.info(f"Removing unneeded dependency {working.packages[name].key}")
            del working.packages[name]
            del working.reasons[name]

    # =========================================================================
    # Checks
    # =========================================================================

    def _check_conflicts(self, working: WorkingSet):
        names = sorted(working.packages)
        for i, first in enumerate(names):
            for second in names[i + 1:]:
                a, b = working.packages[first], working.packages[second]
                conflict = a.conflicts_with(b)
                if conflict is not None:
                    raise ConflictDetectedError(a.key, b.key, conflict)
                conflict = b.conflicts_with(a)
                if conflict is not None:
                    raise ConflictDetectedError(b.key, a.key, conflict)

    def _check_stability(self, working: WorkingSet, installed: Dict[str, InstalledPackage]):
        for name in sorted(working.packages):
            spec = working.packages[name]
            for dep in spec.dependencies:
                if working.satisfies(dep):
                    continue

                target = working.packages.get(dep.name)
                if target is not None and dep.name in installed and installed[dep.name].version != target.version:
                    raise VersionPinConflictError(dep.name, dep, spec.key)
                raise UnresolvableDependencyError(dep, required_by=spec.key)

    # =========================================================================
    # Diff
    # =========================================================================

    def _diff(self, working: WorkingSet, installed: Dict[str, InstalledPackage]) -> List[Action]:
        actions = []
        for name in sorted(working.packages):
            spec = working.packages[name]
            current = installed.get(name)
            if current is None:
                actions.append(Action.install(spec, working.reasons[name]))
            elif current.version != spec.version:
                reason = InstallReason.EXPLICIT if working.locked.get(name) == REQUESTED else None
                actions.append(Action.upgrade(current, spec, reason))

        for name in sorted(installed):
            if name not in working.packages:
                actions.append(Action.remove(installed[name]))

        return actions
