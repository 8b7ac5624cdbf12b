# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Database Store

Single responsibility: Own the installed-set record and serialize
transactions against it.

Layout under db_path:
    local/installed.json   installed set (replaced atomically)
    sync/<catalog>.json    synchronized catalogs
    db.lck                 transaction lock (flock)
    recovery.json          in-flight committing transaction
    transactions.jsonl     transaction history
    staging/<txn-id>/      staging areas
"""

import contextlib
import fcntl
import json
import logging
import threading
from datetime import datetime, UTC
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from pkgengine.core.errors import (
    CommitFailedError,
    RecoveryError,
    RecoveryRequiredError,
    StagingFailedError,
    StoreBusyError,
    TransactionCancelledError,
    ValidationError
)
from pkgengine.core.logging import log_event
from pkgengine.models.package_models import (
    Catalog,
    ChangePlan,
    InstalledPackage,
    TransactionRecord,
    TransactionStatus
)
from .collaborators import write_atomic
from .engine import TransactionEngine
from .index import CatalogIndex
from .transactions import RecoveryLog, TransactionLogger

logger = logging.getLogger(__name__)

RECORD_FORMAT_VERSION = 1


def dump_installed(packages: Mapping[str, InstalledPackage]) -> bytes:
    """Serialize an installed set to the installed.json format."""
    data = {
        "version": RECORD_FORMAT_VERSION,
        "packages": {
            name: packages[name].model_dump(mode="json") for name in sorted(packages)
        }
    }
    return json.dumps(data, indent=2).encode("utf-8")


def load_installed(raw: bytes) -> Dict[str, InstalledPackage]:
    """
    Parse installed.json content.

    Raises:
        ValidationError: If the record is corrupt
    """
    try:
        data = json.loads(raw)
        return {
            name: InstalledPackage.model_validate(entry)
            for name, entry in data.get("packages", {}).items()
        }
    except (json.JSONDecodeError, AttributeError, PydanticValidationError) as e:
        raise ValidationError(f"Corrupt installed-set record: {e}", field="packages")


class DatabaseStore:
    """
    Installed-set owner.

    Readers get the last committed snapshot; apply() is the only mutator and
    swaps the snapshot as a whole once the new record is durable.
    """

    def __init__(
        self,
        db_path: Path,
        index: CatalogIndex,
        engine: TransactionEngine,
        lock_policy: str = "block"
    ):
        """
        Initialize database store.

        Args:
            db_path: Database directory
            index: Catalog index with the registered catalogs
            engine: Transaction engine applying plans to the filesystem
            lock_policy: "block" waits for the lock, "fail" raises StoreBusyError
        """
        self.db_path = Path(db_path)
        self.index = index
        self.engine = engine
        self.lock_policy = lock_policy

        self.installed_file = self.db_path / "local" / "installed.json"
        self.lock_file = self.db_path / "db.lck"
        self.staging_root = self.db_path / "staging"

        self.staging_root.mkdir(parents=True, exist_ok=True)
        self.recovery_log = RecoveryLog(self.db_path / "recovery.json")
        self.transaction_logger = TransactionLogger(self.db_path / "transactions.jsonl")

        self._snapshot: Mapping[str, InstalledPackage] = MappingProxyType(self._load())
        self._snapshot_lock = threading.Lock()

        if self.recovery_log.pending:
            logger.warning("Interrupted transaction found, recovery required")

    def _load(self) -> Dict[str, InstalledPackage]:
        if not self.installed_file.exists():
            return {}

        try:
            return load_installed(self.installed_file.read_bytes())
        except ValidationError as e:
            logger.error(f"Failed to load installed packages: {e}")
            raise

    def _persist(self, packages: Dict[str, InstalledPackage]):
        write_atomic(self.installed_file, dump_installed(packages))
        with self._snapshot_lock:
            self._snapshot = MappingProxyType(dict(packages))

    # =========================================================================
    # Reads
    # =========================================================================

    def installed(self) -> Mapping[str, InstalledPackage]:
        """Read-only view of the last committed installed set."""
        with self._snapshot_lock:
            return self._snapshot

    def catalog(self, name: str) -> Catalog:
        return self.index.catalog(name)

    def catalogs(self) -> List[Catalog]:
        return self.index.catalogs()

    def query_package_version(self, name: str) -> Optional[str]:
        """Installed version of a package, or None if not installed."""
        package = self.installed().get(name)
        return package.version if package else None

    @property
    def needs_recovery(self) -> bool:
        return self.recovery_log.pending

    def list_transactions(self, limit: int = 50) -> List[Dict[str, Any]]:
        return self.transaction_logger.list_transactions(limit)

    def get_transaction(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        return self.transaction_logger.get_transaction(transaction_id)

    # =========================================================================
    # Locking
    # =========================================================================

    @contextlib.contextmanager
    def lock(self, blocking: Optional[bool] = None) -> Iterator[None]:
        """
        Hold the exclusive transaction lock.

        Args:
            blocking: Override the configured lock policy for this call

        Raises:
            StoreBusyError: If the lock is held and the policy does not wait
        """
        if blocking is None:
            blocking = self.lock_policy != "fail"

        flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
        with open(self.lock_file, "a+") as lock_file:
            try:
                fcntl.flock(lock_file.fileno(), flags)
            except BlockingIOError:
                raise StoreBusyError(f"Database {self.db_path} is locked by another transaction")

            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    # =========================================================================
    # Mutations
    # =========================================================================

    def apply(
        self,
        plan: ChangePlan,
        cancel_event: Optional[threading.Event] = None,
        blocking: Optional[bool] = None
    ) -> TransactionRecord:
        """
        Apply a change plan; the only mutator of the installed set.

        Args:
            plan: Plan produced by the resolver
            cancel_event: Set to cancel before committing starts
            blocking: Override the configured lock policy for this call

        Returns:
            Completed transaction record

        Raises:
            StoreBusyError: Another transaction holds the lock
            RecoveryRequiredError: An interrupted transaction is pending
            StagingFailedError / TransactionCancelledError: Nothing changed
            CommitFailedError: Live state partially changed, recovery required
        """
        with self.lock(blocking):
            if self.recovery_log.pending:
                raise RecoveryRequiredError("Interrupted transaction pending, run recovery first")

            transaction = self.transaction_logger.create_transaction(plan)
            if plan.is_empty:
                logger.info("Nothing to do")
                transaction.status = TransactionStatus.COMPLETED
                transaction.completed_at = datetime.now(UTC)
                self.transaction_logger.log(transaction)
                return transaction

            transaction.status = TransactionStatus.IN_PROGRESS
            self.transaction_logger.log(transaction)
            logger.info(f"Transaction {transaction.id} started: {transaction.actions}")

            try:
                post_state = self.engine.execute(
                    plan,
                    self.installed(),
                    transaction.id,
                    self.staging_root,
                    self.recovery_log,
                    cancel_event
                )
            except (StagingFailedError, TransactionCancelledError) as e:
                transaction.status = TransactionStatus.ROLLED_BACK
                transaction.error = e.message
                transaction.completed_at = datetime.now(UTC)
                self.transaction_logger.log(transaction)
                raise
            except CommitFailedError as e:
                transaction.status = TransactionStatus.NEEDS_RECOVERY
                transaction.completed_actions = e.completed
                transaction.error = e.message
                self.transaction_logger.log(transaction)
                logger.critical(f"Transaction {transaction.id} failed while committing: {e}")
                raise

            self._persist(post_state)
            self.recovery_log.clear()
            self.engine.finish(transaction.id, self.staging_root / transaction.id)

            transaction.status = TransactionStatus.COMPLETED
            transaction.completed_actions = plan.summary()
            transaction.completed_at = datetime.now(UTC)
            self.transaction_logger.log(transaction)

            logger.info(f"Transaction {transaction.id} completed")
            return transaction

    def recover(self) -> Optional[TransactionRecord]:
        """
        Finish an interrupted commit from its recovery record.

        Returns:
            Recovered transaction record, or None if nothing was pending

        Raises:
            RecoveryError: Recovery could not complete; manual intervention needed
        """
        with self.lock(blocking=True):
            record = self.recovery_log.load()
            if record is None:
                return None

            log_event(
                logger,
                "recovery_started",
                level="WARNING",
                transaction_id=record.transaction_id,
                completed=len(record.completed),
                total=len(record.plan.actions)
            )

            transaction = TransactionRecord(
                id=record.transaction_id,
                status=TransactionStatus.RECOVERED,
                actions=record.plan.summary(),
                started_at=record.started_at
            )

            try:
                post_state = self.engine.replay(record, self.installed(), self.recovery_log)
            except RecoveryError as e:
                transaction.status = TransactionStatus.FAILED
                transaction.error = e.message
                self.transaction_logger.log(transaction)
                logger.critical(f"Recovery of {record.transaction_id} failed, manual intervention required: {e}")
                raise

            self._persist(post_state)
            self.recovery_log.clear()
            self.engine.finish(record.transaction_id, Path(record.staging_dir))

            transaction.completed_actions = record.plan.summary()
            transaction.completed_at = datetime.now(UTC)
            self.transaction_logger.log(transaction)

            log_event(logger, "recovery_completed", transaction_id=record.transaction_id)
            return transaction
