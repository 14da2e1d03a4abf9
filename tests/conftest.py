"""Test fixtures and utilities."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from receipt_inbox.errors import TransferSubmissionError
from receipt_inbox.state_store import StateStore
from receipt_inbox.transport import RestoredTransfer, TransferCompletion, Transport

# Smallest JPEG-looking payload: SOI marker, a few bytes, EOI marker
SAMPLE_JPEG = b"\xff\xd8\xff\xe0" + b"receipt-bytes" + b"\xff\xd9"


class StepClock:
    """Deterministic clock: every call is one second after the previous."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


class FakeTransport(Transport):
    """In-memory transport; tests decide when and how transfers finish."""

    session_id = "test-session"

    def __init__(self, restored: list[RestoredTransfer] | None = None):
        super().__init__()
        self.submitted: list[tuple[str, str, bytes, str]] = []
        self.reject_keys: set[str] = set()
        self.restored = list(restored or [])
        self.acknowledged: list[str] = []
        self.closed = False
        self._counter = 0

    def submit(self, key: str, payload: bytes, content_type: str) -> str:
        if self.closed:
            raise TransferSubmissionError(key, "transport is closed")
        if key in self.reject_keys:
            raise TransferSubmissionError(key, "offline")
        self._counter += 1
        handle = f"transfer-{self._counter}"
        self.submitted.append((handle, key, payload, content_type))
        return handle

    def submitted_keys(self) -> list[str]:
        return [key for _, key, _, _ in self.submitted]

    def handle_for(self, key: str) -> str:
        """Most recent handle submitted for a key."""
        for handle, submitted_key, _, _ in reversed(self.submitted):
            if submitted_key == key:
                return handle
        raise KeyError(key)

    def finish(
        self,
        key: str,
        succeeded: bool = True,
        error: str | None = None,
        status_code: int | None = None,
        handle: str | None = None,
    ) -> TransferCompletion:
        completion = TransferCompletion(
            transfer_handle=handle or self.handle_for(key),
            key=key,
            succeeded=succeeded,
            error=error,
            status_code=status_code,
            session_id=self.session_id,
        )
        self._notify(completion)
        return completion

    def restored_transfers(self) -> list[RestoredTransfer]:
        return list(self.restored)

    def acknowledge(self, transfer_handle: str) -> None:
        self.acknowledged.append(transfer_handle)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_receipts.db"


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def store(temp_db, clock) -> StateStore:
    """Fresh receipts store with a deterministic clock."""
    return StateStore(temp_db, clock=clock)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sample_jpeg() -> bytes:
    return SAMPLE_JPEG


@pytest.fixture
def make_transport():
    """Factory for additional transports, e.g. the one seen after a restart."""
    return FakeTransport
