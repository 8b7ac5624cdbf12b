# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Transaction Logger and Recovery Log

Single responsibility: Log and retrieve transactions (append-only JSONL) and
keep the durable record of the transaction currently committing.
"""

import json
import logging
import os
import uuid
from pathlib import Path
from typing import List, Dict, Any, Optional
from datetime import datetime, UTC

from pydantic import ValidationError as PydanticValidationError

from pkgengine.core.errors import RecoveryError
from pkgengine.models.package_models import (
    ChangePlan,
    RecoveryRecord,
    TransactionRecord,
    TransactionStatus
)
from .collaborators import write_atomic

logger = logging.getLogger(__name__)


class TransactionLogger:
    """Manages transaction logging to append-only JSONL file"""

    def __init__(self, log_file: Path):
        """
        Initialize transaction logger.

        Args:
            log_file: Path to transactions.jsonl
        """
        self.log_file = log_file

        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        if not self.log_file.exists():
            self.log_file.touch()

    def create_transaction(self, plan: ChangePlan) -> TransactionRecord:
        """
        Create a new transaction record.

        Args:
            plan: Plan the transaction applies

        Returns:
            New transaction record
        """
        return TransactionRecord(
            id=f"txn-{uuid.uuid4().hex[:12]}",
            status=TransactionStatus.PENDING,
            actions=plan.summary(),
            started_at=datetime.now(UTC)
        )

    def log(self, transaction: TransactionRecord):
        """
        Append transaction to JSONL log file.

        Args:
            transaction: Transaction record to log
        """
        log_line = json.dumps(transaction.to_dict())
        with open(self.log_file, "a") as f:
            f.write(log_line + "\n")
            f.flush()
            os.fsync(f.fileno())

    def _read_entries(self) -> List[Dict[str, Any]]:
        if not self.log_file.exists():
            return []

        entries = []
        with open(self.log_file, "r") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError as e:
                    logger.error(f"Failed to parse transaction log line: {e}")
        return entries

    def list_transactions(self, limit: int = 50) -> List[Dict[str, Any]]:
        """
        List recent transactions from log (latest state of each).

        Args:
            limit: Maximum number of transactions to return

        Returns:
            List of transaction records (most recent first)
        """
        latest: Dict[str, Dict[str, Any]] = {}
        for entry in self._read_entries():
            # Re-inserting moves the transaction to the end
            latest.pop(entry.get("id"), None)
            latest[entry.get("id")] = entry

        return list(reversed(list(latest.values())))[:limit]

    def get_transaction(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        """
        Get the latest state of a transaction by ID.

        Args:
            transaction_id: Transaction ID

        Returns:
            Transaction record or None if not found
        """
        found = None
        for entry in self._read_entries():
            if entry.get("id") == transaction_id:
                found = entry
        return found


class RecoveryLog:
    """
    Durable record of the in-flight committing transaction.

    Written before the first live mutation and after every completed action;
    cleared once the installed-set record has been replaced.
    """

    def __init__(self, record_file: Path):
        self.record_file = record_file

    @property
    def pending(self) -> bool:
        return self.record_file.exists()

    def write(self, record: RecoveryRecord):
        write_atomic(self.record_file, record.model_dump_json(indent=2).encode("utf-8"))

    def mark_completed(self, record: RecoveryRecord, index: int):
        """Record that the action at index finished and persist."""
        record.completed.append(index)
        self.write(record)

    def load(self) -> Optional[RecoveryRecord]:
        """
        Load the pending record.

        Raises:
            RecoveryError: If the record exists but cannot be parsed
        """
        if not self.record_file.exists():
            return None

        try:
            return RecoveryRecord.model_validate_json(self.record_file.read_text())
        except PydanticValidationError as e:
            raise RecoveryError(f"Corrupt recovery record {self.record_file}: {e}")

    def clear(self):
        self.record_file.unlink(missing_ok=True)
