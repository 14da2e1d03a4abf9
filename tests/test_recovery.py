"""Tests for cold-start reconciliation."""

import pytest

from receipt_inbox.transport import RestoredTransfer
from receipt_inbox.uploads import RecoveryService, TransferRegistry, UploadManager, UploadStatus


@pytest.fixture
def interrupted(store, transport, sample_jpeg):
    """A receipt that was uploading when the previous process died."""
    manager = UploadManager(store, transport)
    manager.restore_pending_tasks()
    record = manager.capture(sample_jpeg)
    assert store.get_record(record.id).status == UploadStatus.UPLOADING
    # No close(): the process is killed
    return record


class TestRecoveryService:
    """Reconciling uploading rows against restored transfers."""

    def test_no_transfer_marks_failed(self, store, make_transport, interrupted):
        transport = make_transport()
        registry = TransferRegistry()

        result = RecoveryService(store, transport, registry).reconcile()

        assert result.orphaned == [interrupted.id]
        record = store.get_record(interrupted.id)
        assert record.status == UploadStatus.FAILED
        assert record.upload_attempts == 1
        assert "no transfer" in record.last_error
        assert len(registry) == 0

    def test_restored_success(self, store, make_transport, interrupted):
        transport = make_transport(
            restored=[RestoredTransfer("transfer-1", interrupted.id, succeeded=True)]
        )

        result = RecoveryService(store, transport, TransferRegistry()).reconcile()

        assert result.uploaded == [interrupted.id]
        assert store.get_record(interrupted.id).status == UploadStatus.UPLOADED
        assert transport.acknowledged == ["transfer-1"]

    def test_restored_failure(self, store, make_transport, interrupted):
        transport = make_transport(
            restored=[
                RestoredTransfer("transfer-1", interrupted.id, succeeded=False, error="HTTP 500")
            ]
        )

        result = RecoveryService(store, transport, TransferRegistry()).reconcile()

        assert result.failed == [interrupted.id]
        record = store.get_record(interrupted.id)
        assert record.status == UploadStatus.FAILED
        assert record.last_error == "HTTP 500"

    def test_any_success_wins(self, store, make_transport, interrupted):
        transport = make_transport(
            restored=[
                RestoredTransfer("a", interrupted.id, succeeded=True),
                RestoredTransfer("b", interrupted.id, succeeded=False, error="dup"),
            ]
        )

        result = RecoveryService(store, transport, TransferRegistry()).reconcile()

        assert result.uploaded == [interrupted.id]
        assert sorted(transport.acknowledged) == ["a", "b"]

    def test_active_transfer_is_resumed(self, store, make_transport, interrupted):
        transport = make_transport(restored=[RestoredTransfer("bg-7", interrupted.id)])
        registry = TransferRegistry()

        result = RecoveryService(store, transport, registry).reconcile()

        assert result.resumed == [interrupted.id]
        assert registry.handle_for(interrupted.id) == "bg-7"
        assert store.get_record(interrupted.id).status == UploadStatus.UPLOADING
        assert transport.acknowledged == []

    def test_transfer_for_deleted_record(self, store, make_transport, interrupted):
        store.delete_record(interrupted.id)
        transport = make_transport(
            restored=[
                RestoredTransfer("running", interrupted.id),
                RestoredTransfer("done", interrupted.id, succeeded=True),
            ]
        )
        registry = TransferRegistry()

        result = RecoveryService(store, transport, registry).reconcile()

        assert sorted(result.discarded) == ["done", "running"]
        assert registry.get("running").orphaned is True
        assert transport.acknowledged == ["done"]
        assert store.get_record(interrupted.id) is None

    def test_transfer_for_settled_record(self, store, make_transport, interrupted):
        store.complete_transfer(interrupted.id, succeeded=True)
        transport = make_transport(
            restored=[RestoredTransfer("late", interrupted.id, succeeded=False, error="x")]
        )

        RecoveryService(store, transport, TransferRegistry()).reconcile()

        record = store.get_record(interrupted.id)
        assert record.status == UploadStatus.UPLOADED
        assert record.last_error is None
        assert transport.acknowledged == ["late"]

    def test_nothing_left_uploading(self, store, make_transport, sample_jpeg):
        for _ in range(3):
            record = store.create_record(sample_jpeg)
            store.begin_transfer(record.id)

        RecoveryService(store, make_transport(), TransferRegistry()).reconcile()

        assert store.list_by_status(UploadStatus.UPLOADING) == []


class TestRestart:
    """Full restart through the manager."""

    def test_crash_then_restart_resubmits(self, store, make_transport, interrupted):
        transport = make_transport()
        manager = UploadManager(store, transport)

        result = manager.restore_pending_tasks()
        assert result.orphaned == [interrupted.id]
        assert transport.submitted == []

        manager.enqueue_pending_uploads()
        transport.finish(interrupted.id)
        manager.process_events()

        record = store.get_record(interrupted.id)
        assert record.status == UploadStatus.UPLOADED
        assert record.upload_attempts == 2
        manager.close()

    def test_resumed_transfer_completes_after_restart(
        self, store, make_transport, interrupted
    ):
        transport = make_transport(restored=[RestoredTransfer("bg-9", interrupted.id)])
        manager = UploadManager(store, transport)
        manager.restore_pending_tasks()

        # Still in flight: not resubmitted
        assert manager.enqueue_pending_uploads().submitted == []

        transport.finish(interrupted.id, handle="bg-9")
        manager.process_events()

        record = store.get_record(interrupted.id)
        assert record.status == UploadStatus.UPLOADED
        assert record.upload_attempts == 1
        assert transport.acknowledged == ["bg-9"]
        manager.close()

    def test_orphaned_transfer_completion_discarded(self, store, make_transport, interrupted):
        store.delete_record(interrupted.id)
        transport = make_transport(restored=[RestoredTransfer("bg-3", interrupted.id)])
        manager = UploadManager(store, transport)
        manager.restore_pending_tasks()

        transport.finish(interrupted.id, handle="bg-3")
        manager.process_events()

        assert store.get_record(interrupted.id) is None
        assert transport.acknowledged == ["bg-3"]
        manager.close()
