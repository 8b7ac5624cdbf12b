# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit Tests for Commit Failures and the Recovery Pass

Tests that a failure while committing keeps a recovery record, blocks new
transactions, and that recovery replays the remaining actions.
"""

import shutil

import pytest

from pkgengine.core.errors import (
    CommitFailedError,
    FilesystemError,
    RecoveryError,
    RecoveryRequiredError
)
from pkgengine.models.package_models import ChangePlan, ChangeRequest, TransactionStatus
from pkgengine.services.packages.resolver import DependencyResolver


def plan_for(store, **request):
    return DependencyResolver(store).resolve(ChangeRequest(**request))


@pytest.fixture
def failed_store(harness):
    """Store whose transaction failed on the second action while committing"""
    harness.publish("core", "app", "1.0", dependencies=["lib"], files={"usr/bin/app": "app"})
    harness.publish("core", "lib", "1.0", files={"usr/lib/libfoo.so": "lib"})
    store = harness.store(installed=[harness.installed("old", "1.0", files={"usr/bin/old": "old"})])
    plan = plan_for(store, add=["app"], remove=["old"])
    harness.filesystem.fail_paths.add("usr/bin/app")

    with pytest.raises(CommitFailedError) as exc_info:
        store.apply(plan)

    store.commit_error = exc_info.value
    return store


class TestCommitFailure:
    """Test suite for failures after committing started"""

    def test_error_reports_completed_actions(self, failed_store):
        """Test the error names the failing action and what was applied"""
        error = failed_store.commit_error

        assert error.action == "install app@1.0"
        assert error.completed == ["remove old@1.0", "install lib@1.0"]
        assert isinstance(error.cause, FilesystemError)
        assert error.recoverable is False

    def test_recovery_record_kept(self, failed_store):
        """Test the record lists completed action indices"""
        record = failed_store.recovery_log.load()

        assert failed_store.needs_recovery
        assert record.completed == [0, 1]
        assert record.plan.summary() == ["remove old@1.0", "install lib@1.0", "install app@1.0"]

    def test_installed_record_not_replaced(self, failed_store):
        """Test the persisted set still holds the pre-state"""
        assert list(failed_store.installed()) == ["old"]

    def test_history_marks_needs_recovery(self, failed_store):
        """Test the transaction log records the failure"""
        latest = failed_store.list_transactions()[0]

        assert latest["status"] == "needs_recovery"
        assert latest["completed_actions"] == ["remove old@1.0", "install lib@1.0"]

    def test_new_transactions_refused(self, failed_store):
        """Test apply refuses to run before recovery"""
        with pytest.raises(RecoveryRequiredError):
            failed_store.apply(ChangePlan())


class TestRecoveryPass:
    """Test suite for the recovery pass"""

    def test_recover_replays_remaining_actions(self, harness, failed_store):
        """Test recovery finishes the interrupted transaction"""
        harness.filesystem.fail_paths.clear()

        transaction = failed_store.recover()

        assert transaction.status == TransactionStatus.RECOVERED
        assert transaction.id == failed_store.commit_error.transaction_id
        assert sorted(failed_store.installed()) == ["app", "lib"]
        assert harness.filesystem.files == {"usr/bin/app": b"app", "usr/lib/libfoo.so": b"lib"}
        assert not failed_store.needs_recovery
        assert list(failed_store.staging_root.iterdir()) == []

    def test_recover_after_restart(self, harness, failed_store):
        """Test a fresh store instance recovers from disk"""
        harness.filesystem.fail_paths.clear()
        restarted = harness.store()

        assert restarted.needs_recovery
        restarted.recover()

        assert restarted.query_package_version("app") == "1.0"
        assert restarted.list_transactions()[0]["status"] == "recovered"

    def test_recover_nothing_pending(self, harness):
        """Test recovery without a record is a no-op"""
        assert harness.store().recover() is None

    def test_missing_staging_data(self, harness, failed_store):
        """Test recovery fails when staged files are gone"""
        harness.filesystem.fail_paths.clear()
        shutil.rmtree(failed_store.staging_root)

        with pytest.raises(RecoveryError, match="Staging data missing"):
            failed_store.recover()

        assert failed_store.needs_recovery
        assert failed_store.list_transactions()[0]["status"] == "failed"

    def test_repeated_failure(self, failed_store):
        """Test recovery reports a failure that persists"""
        with pytest.raises(RecoveryError, match="Recovery of"):
            failed_store.recover()

        assert failed_store.needs_recovery

    def test_corrupt_recovery_record(self, harness):
        """Test an unreadable record raises RecoveryError"""
        store = harness.store()
        store.recovery_log.record_file.write_text("{not json")

        with pytest.raises(RecoveryError, match="Corrupt recovery record"):
            store.recover()
