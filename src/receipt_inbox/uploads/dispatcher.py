"""
Upload dispatcher.

Scans the store for submittable receipts and hands each one to the transport
exactly once. Durable state is committed before the transport is touched, so
a crash right after submission leaves an uploading row with its attempt
counted, which recovery knows how to resolve.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..errors import TransferSubmissionError
from .state_machine import UploadStatus

if TYPE_CHECKING:
    from ..state_store import ReceiptRecord, StateStore
    from ..transport import Transport
    from .registry import TransferRegistry

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Outcome of one dispatch pass."""

    submitted: list[str] = field(default_factory=list)
    skipped_in_flight: list[str] = field(default_factory=list)
    rejected: dict[str, str] = field(default_factory=dict)
    # Lost a race: the row changed between listing and claiming
    skipped_stale: list[str] = field(default_factory=list)
    deferred: bool = False

    @property
    def submitted_count(self) -> int:
        return len(self.submitted)


class UploadDispatcher:
    """
    Submits pending and retryable failed receipts to the transport.

    Safe to call redundantly: records with a transfer in the registry are
    skipped, and claiming a record is a compare-and-set on its status.
    """

    def __init__(
        self,
        store: StateStore,
        transport: Transport,
        registry: TransferRegistry,
        max_attempts: int = 5,
        batch_size: int | None = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            store: Durable receipts store
            transport: Where transfers are started
            registry: In-flight transfer index
            max_attempts: Failed receipts at or above this many attempts are
                no longer resubmitted automatically
            batch_size: Maximum submissions per pass (None = no limit)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.transport = transport
        self.registry = registry
        self.max_attempts = max_attempts
        self.batch_size = batch_size
        self._lock = threading.Lock()

    def candidates(self) -> list[ReceiptRecord]:
        """Pending receipts, then failed receipts under the ceiling, oldest first."""
        pending = self.store.list_by_status(UploadStatus.PENDING, oldest_first=True)
        retryable = self.store.list_by_status(
            UploadStatus.FAILED, oldest_first=True, max_attempts=self.max_attempts
        )
        return pending + retryable

    def dispatch(self) -> DispatchResult:
        """
        Run one dispatch pass.

        Raises:
            PersistenceError: If the store cannot be read or written
        """
        result = DispatchResult()

        with self._lock:
            for record in self.candidates():
                if self.batch_size is not None and result.submitted_count >= self.batch_size:
                    break

                if self.registry.contains_record(record.id):
                    result.skipped_in_flight.append(record.id)
                    continue

                self._submit(record, result)

        if result.submitted or result.rejected:
            logger.info(
                f"Dispatch pass: {result.submitted_count} submitted, "
                f"{len(result.skipped_in_flight)} in flight, {len(result.rejected)} rejected"
            )
        return result

    def _submit(self, record: ReceiptRecord, result: DispatchResult) -> None:
        claimed = self.store.begin_transfer(record.id)
        if claimed is None:
            result.skipped_stale.append(record.id)
            return

        with self.registry.lock:
            try:
                handle = self.transport.submit(record.id, record.payload, record.content_type)
            except TransferSubmissionError as e:
                self.store.revert_transfer(record.id, record)
                result.rejected[record.id] = e.reason
                return
            except Exception as e:
                # Never leave a claimed row uploading with nothing in flight
                logger.exception(f"Transport failed submitting receipt {record.id}")
                self.store.revert_transfer(record.id, record)
                result.rejected[record.id] = f"{type(e).__name__}: {e}"
                return
            self.registry.add(handle, record.id)

        result.submitted.append(record.id)
        logger.info(
            f"Receipt {record.id}: {record.status.value} -> uploading "
            f"(attempt {claimed.upload_attempts}, transfer {handle})"
        )

