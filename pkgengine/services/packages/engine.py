# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Transaction Engine

Single responsibility: Apply a ChangePlan to the filesystem with
all-or-nothing semantics.

State machine:
    IDLE -> STAGING -> COMMITTING -> COMMITTED   (success)
    STAGING -> ROLLING_BACK -> IDLE              (staging failure / cancel)

Staging fetches, verifies and extracts every package into
<staging_root>/<transaction_id>/<action index>/ without touching live paths.
Committing writes a recovery record first and then applies actions strictly
in plan order, recording each completed action so an interrupted commit can
be replayed from the kept staging area.
"""

import logging
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, UTC
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Set

from pkgengine.core.errors import (
    CommitFailedError,
    ExtractError,
    FetchError,
    PkgEngineError,
    RecoveryError,
    StagingFailedError,
    TransactionCancelledError,
    VerificationError
)
from pkgengine.core.logging import log_event
from pkgengine.models.package_models import (
    Action,
    ActionType,
    ChangePlan,
    InstalledPackage,
    PackageSpec,
    RecoveryRecord,
    TransactionState
)
from .collaborators import normalize_relpath, write_atomic
from .transactions import RecoveryLog

logger = logging.getLogger(__name__)


class TransactionEngine:
    """Stages and commits change plans through injected collaborators"""

    def __init__(
        self,
        filesystem,
        fetcher,
        verifier,
        extractor,
        staging_workers: int = 4,
        verify_signatures: bool = True,
        unsigned_catalogs: Iterable[str] = ()
    ):
        """
        Initialize transaction engine.

        Args:
            filesystem: Live filesystem (write/delete/exists)
            fetcher: Package fetcher (fetch)
            verifier: Signature verifier (verify)
            extractor: Archive extractor (extract)
            staging_workers: Thread pool size for staging
            verify_signatures: Require a valid signature for every package
            unsigned_catalogs: Catalogs exempt from the signature requirement
        """
        self.filesystem = filesystem
        self.fetcher = fetcher
        self.verifier = verifier
        self.extractor = extractor
        self.staging_workers = staging_workers
        self.verify_signatures = verify_signatures
        self.unsigned_catalogs = set(unsigned_catalogs)
        self.state = TransactionState.IDLE

    def _transition(self, state: TransactionState, transaction_id: str):
        log_event(
            logger,
            "transaction_state",
            transaction_id=transaction_id,
            from_state=self.state.value,
            to_state=state.value
        )
        self.state = state

    def signature_required(self, spec: PackageSpec) -> bool:
        return self.verify_signatures and spec.catalog not in self.unsigned_catalogs

    # =========================================================================
    # Execute
    # =========================================================================

    def execute(
        self,
        plan: ChangePlan,
        installed: Mapping[str, InstalledPackage],
        transaction_id: str,
        staging_root: Path,
        recovery_log: RecoveryLog,
        cancel_event: Optional[threading.Event] = None
    ) -> Dict[str, InstalledPackage]:
        """
        Stage and commit a plan.

        Args:
            plan: Ordered change plan
            installed: Installed set before the transaction
            transaction_id: Transaction ID (names the staging directory)
            staging_root: Parent directory for staging areas
            recovery_log: Durable record of the committing transaction
            cancel_event: Set to cancel before committing starts

        Returns:
            Installed set after the transaction

        Raises:
            StagingFailedError: Staging failed, nothing live was touched
            TransactionCancelledError: Cancelled before committing
            CommitFailedError: Live mutation failed, recovery record kept
        """
        staging_dir = staging_root / transaction_id

        self._transition(TransactionState.STAGING, transaction_id)
        try:
            manifests = self._stage(plan, staging_dir, transaction_id, cancel_event)
            if cancel_event is not None and cancel_event.is_set():
                raise TransactionCancelledError("Transaction cancelled", transaction_id=transaction_id)
        except (StagingFailedError, TransactionCancelledError) as e:
            self._rollback(staging_dir, transaction_id, e)
            raise

        self._transition(TransactionState.COMMITTING, transaction_id)
        record = RecoveryRecord(
            transaction_id=transaction_id,
            plan=plan,
            staging_dir=str(staging_dir),
            manifests=manifests,
            started_at=datetime.now(UTC)
        )
        recovery_log.write(record)

        post_state = self._commit(record, dict(installed), recovery_log)
        self._transition(TransactionState.COMMITTED, transaction_id)
        return post_state

    def finish(self, transaction_id: str, staging_dir: Path):
        """Discard the staging area once the post-state has been persisted."""
        shutil.rmtree(staging_dir, ignore_errors=True)
        self._transition(TransactionState.IDLE, transaction_id)

    def _rollback(self, staging_dir: Path, transaction_id: str, error: Exception):
        self._transition(TransactionState.ROLLING_BACK, transaction_id)
        shutil.rmtree(staging_dir, ignore_errors=True)
        log_event(
            logger,
            "staging_discarded",
            level="WARNING",
            transaction_id=transaction_id,
            error=str(error)
        )
        self._transition(TransactionState.IDLE, transaction_id)

    # =========================================================================
    # Staging
    # =========================================================================

    def _stage(
        self,
        plan: ChangePlan,
        staging_dir: Path,
        transaction_id: str,
        cancel_event: Optional[threading.Event]
    ) -> Dict[int, List[str]]:
        """
        Stage every install/upgrade action in parallel.

        Failures are reported for the earliest failing action in plan order.
        """
        to_stage = [
            (index, action) for index, action in enumerate(plan.actions)
            if action.type != ActionType.REMOVE
        ]
        manifests: Dict[int, List[str]] = {}
        if not to_stage:
            return manifests

        with ThreadPoolExecutor(max_workers=self.staging_workers) as executor:
            futures = [
                (index, action, executor.submit(self._stage_action, index, action, staging_dir, cancel_event))
                for index, action in to_stage
            ]
            for index, action, future in futures:
                try:
                    manifests[index] = future.result()
                except TransactionCancelledError:
                    for _, _, pending in futures:
                        pending.cancel()
                    raise TransactionCancelledError(
                        f"Transaction cancelled while staging {action}",
                        transaction_id=transaction_id
                    )
                except (PkgEngineError, OSError) as e:
                    for _, _, pending in futures:
                        pending.cancel()
                    logger.error(f"Staging failed for {action}: {e}")
                    raise StagingFailedError(str(action), e, transaction_id=transaction_id)

        return manifests

    def _stage_action(
        self,
        index: int,
        action: Action,
        staging_dir: Path,
        cancel_event: Optional[threading.Event]
    ) -> List[str]:
        if cancel_event is not None and cancel_event.is_set():
            raise TransactionCancelledError("Transaction cancelled")

        spec = action.target
        if not spec.source:
            raise FetchError(spec.key, "package has no source")

        logger.info(f"Staging {spec.key} from {spec.source}")
        data = self.fetcher.fetch(spec.source)

        if spec.signature or self.signature_required(spec):
            if not spec.signature:
                raise VerificationError(f"Missing signature for {spec.key}")
            if not self.verifier.verify(data, spec.signature):
                raise VerificationError(f"Invalid signature for {spec.key}")

        action_dir = staging_dir / str(index)
        manifest: List[str] = []
        for path, content in self.extractor.extract(data):
            try:
                relpath = normalize_relpath(path)
            except ValueError as e:
                raise ExtractError(f"{spec.key}: {e}")
            write_atomic(action_dir / relpath, content)
            if relpath not in manifest:
                manifest.append(relpath)

        logger.debug(f"Staged {spec.key}: {len(manifest)} file(s)")
        return manifest

    # =========================================================================
    # Committing
    # =========================================================================

    def _commit(
        self,
        record: RecoveryRecord,
        state: Dict[str, InstalledPackage],
        recovery_log: RecoveryLog
    ) -> Dict[str, InstalledPackage]:
        staging_dir = Path(record.staging_dir)
        completed = [str(record.plan.actions[i]) for i in sorted(record.completed)]

        for index, action in enumerate(record.plan.actions):
            replaying = index not in record.completed
            try:
                self._apply_action(index, action, record, staging_dir, state, touch_live=replaying)
            except (PkgEngineError, OSError) as e:
                log_event(
                    logger,
                    "action_failed",
                    level="ERROR",
                    transaction_id=record.transaction_id,
                    action=str(action),
                    error=str(e)
                )
                raise CommitFailedError(str(action), e, completed, transaction_id=record.transaction_id)

            if replaying:
                recovery_log.mark_completed(record, index)
                completed.append(str(action))
                log_event(
                    logger,
                    "action_committed",
                    transaction_id=record.transaction_id,
                    action=str(action),
                    index=index
                )

        return state

    def _apply_action(
        self,
        index: int,
        action: Action,
        record: RecoveryRecord,
        staging_dir: Path,
        state: Dict[str, InstalledPackage],
        touch_live: bool
    ):
        """
        Apply one action to the live filesystem (when touch_live) and to the
        evolving installed-set mapping.
        """
        if action.type == ActionType.REMOVE:
            current = state.pop(action.name, None)
            files = current.files if current else action.installed.files
            if touch_live:
                self._delete_unowned(files, state)
            return

        manifest = record.manifests.get(index, [])
        if touch_live:
            action_dir = staging_dir / str(index)
            for path in manifest:
                self.filesystem.write(path, (action_dir / path).read_bytes())

            if action.type == ActionType.UPGRADE:
                previous = state.get(action.name)
                old_files = previous.files if previous else action.installed.files
                others = {n: p for n, p in state.items() if n != action.name}
                new_files = set(manifest)
                self._delete_unowned([f for f in old_files if f not in new_files], others)

        state[action.name] = InstalledPackage(
            spec=action.target,
            files=tuple(manifest),
            installed_at=datetime.now(UTC),
            reason=action.reason,
            transaction_id=record.transaction_id
        )

    def _delete_unowned(self, files: Iterable[str], owners: Mapping[str, InstalledPackage]):
        """Delete files, skipping paths still listed in another package's manifest."""
        owned: Set[str] = set()
        for package in owners.values():
            owned.update(package.files)

        for path in files:
            if path in owned:
                logger.debug(f"Keeping shared file {path}")
                continue
            self.filesystem.delete(path)

    # =========================================================================
    # Recovery
    # =========================================================================

    def replay(
        self,
        record: RecoveryRecord,
        installed: Mapping[str, InstalledPackage],
        recovery_log: RecoveryLog
    ) -> Dict[str, InstalledPackage]:
        """
        Re-apply every action an interrupted commit did not complete.

        Writes and deletes are idempotent, so an action that was interrupted
        half way is simply applied again from the kept staging area.

        Args:
            record: Pending recovery record
            installed: Installed set persisted before the interrupted commit
            recovery_log: Recovery log (updated as actions complete)

        Returns:
            Installed set after the transaction

        Raises:
            RecoveryError: Staging data is missing or an action fails again
        """
        staging_dir = Path(record.staging_dir)
        for index, action in enumerate(record.plan.actions):
            if index in record.completed or action.type == ActionType.REMOVE:
                continue
            for path in record.manifests.get(index, []):
                if not (staging_dir / str(index) / path).is_file():
                    raise RecoveryError(
                        f"Staging data missing for {action}: {path}",
                        transaction_id=record.transaction_id
                    )

        self._transition(TransactionState.COMMITTING, record.transaction_id)
        try:
            post_state = self._commit(record, dict(installed), recovery_log)
        except CommitFailedError as e:
            raise RecoveryError(
                f"Recovery of {record.transaction_id} failed: {e.message}",
                transaction_id=record.transaction_id,
                details=e.details
            )
        self._transition(TransactionState.COMMITTED, record.transaction_id)
        return post_state
