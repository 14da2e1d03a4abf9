"""
Transport boundary consumed by the upload pipeline.

The pipeline only needs a transport that can:
- start a transfer of payload B for key K and hand back a transfer handle
- report, later and on any thread, that the transfer for a handle finished
- on a cold start, enumerate transfers it preserved across the restart
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from ..errors import TransferOutcomeFailure


@dataclass(frozen=True)
class TransferCompletion:
    """Outcome of one transfer, posted by the transport."""

    transfer_handle: str
    key: str
    succeeded: bool
    error: str | None = None
    status_code: int | None = None
    session_id: str | None = None

    def as_failure(self) -> TransferOutcomeFailure | None:
        """The failure this completion represents, if any."""
        if self.succeeded:
            return None
        return TransferOutcomeFailure(
            self.key, self.error or "transfer failed", status_code=self.status_code
        )


@dataclass(frozen=True)
class RestoredTransfer:
    """A transfer the transport preserved across a process restart."""

    transfer_handle: str
    key: str
    # None while the transfer is still running
    succeeded: bool | None = None
    error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.succeeded is None

    def as_completion(self, session_id: str | None = None) -> TransferCompletion:
        if self.succeeded is None:
            raise ValueError(f"Transfer {self.transfer_handle} has not finished")
        return TransferCompletion(
            transfer_handle=self.transfer_handle,
            key=self.key,
            succeeded=self.succeeded,
            error=self.error,
            session_id=session_id,
        )


CompletionListener = Callable[[TransferCompletion], None]


class Transport(ABC):
    """Abstract upload transport."""

    session_id: str = "default"

    def __init__(self) -> None:
        self._listener: CompletionListener | None = None

    def set_completion_listener(self, listener: CompletionListener) -> None:
        """Register where completions are delivered. Called once by the manager."""
        self._listener = listener

    def _notify(self, completion: TransferCompletion) -> None:
        if self._listener is None:
            raise RuntimeError("Transport has no completion listener")
        self._listener(completion)

    @abstractmethod
    def submit(self, key: str, payload: bytes, content_type: str) -> str:
        """
        Start a transfer and return its handle without waiting for it.

        Raises:
            TransferSubmissionError: If the transfer could not be started
        """

    @abstractmethod
    def restored_transfers(self) -> list[RestoredTransfer]:
        """Transfers that survived the last restart, finished or still running."""

    def acknowledge(self, transfer_handle: str) -> None:
        """The pipeline has persisted this transfer's outcome."""

    def close(self) -> None:
        """Release transport resources."""
