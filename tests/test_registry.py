"""Tests for the in-memory transfer registry."""

import threading

import pytest

from receipt_inbox.uploads.registry import RegistryEntry, TransferRegistry


class TestTransferRegistry:
    """Tests for handle/record bookkeeping."""

    @pytest.fixture
    def registry(self) -> TransferRegistry:
        return TransferRegistry()

    def test_add_and_lookup(self, registry):
        registry.add("t1", "r1")

        assert registry.get("t1") == RegistryEntry("t1", "r1")
        assert registry.handle_for("r1") == "t1"
        assert registry.contains_record("r1")
        assert len(registry) == 1

    def test_pop_removes_both_directions(self, registry):
        registry.add("t1", "r1")

        entry = registry.pop("t1")

        assert entry.record_id == "r1"
        assert registry.get("t1") is None
        assert not registry.contains_record("r1")
        assert registry.pop("t1") is None

    def test_one_transfer_per_record(self, registry):
        registry.add("t1", "r1")

        with pytest.raises(ValueError):
            registry.add("t2", "r1")

    def test_mark_orphaned(self, registry):
        registry.add("t1", "r1")

        assert registry.mark_orphaned("r1") is True
        assert registry.get("t1").orphaned is True
        # Entry stays until the transport reports back
        assert registry.contains_record("r1")
        assert registry.mark_orphaned("unknown") is False

    def test_rebuild_replaces_everything(self, registry):
        registry.add("old", "r0")

        registry.rebuild([RegistryEntry("t1", "r1"), RegistryEntry("t2", "r2", orphaned=True)])

        assert registry.get("old") is None
        assert len(registry) == 2
        assert registry.get("t2").orphaned is True

    def test_snapshot_is_a_copy(self, registry):
        registry.add("t1", "r1")

        snapshot = registry.snapshot()
        snapshot[0].orphaned = True

        assert registry.get("t1").orphaned is False

    def test_concurrent_add_and_pop(self, registry):
        """Many writers never corrupt the two indexes."""

        def worker(n: int) -> None:
            for i in range(200):
                handle = f"t{n}-{i}"
                registry.add(handle, f"r{n}-{i}")
                registry.pop(handle)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry) == 0
        assert registry.snapshot() == []
