"""
Upload manager.

Facade the capture layer and the process lifecycle talk to. It owns the
transfer registry, the completion bridge and the event queue, and enforces
a two-phase startup:

1. INITIALIZING: dispatch requests are deferred, completions and
   background-session notifications are queued but not consumed
2. OPEN (after restore_pending_tasks): deferred dispatch is replayed and
   events are folded into the store by a single consumer

Transport completions and session-drained notifications travel through one
FIFO queue, so when a session's notification is consumed every completion
posted before it has already been persisted.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..errors import PersistenceError, PipelineClosedError
from ..transport.base import TransferCompletion
from .completion_bridge import CompletionBridge, CompletionCallback
from .dispatcher import DispatchResult, UploadDispatcher
from .recovery import RecoveryResult, RecoveryService
from .registry import TransferRegistry
from .state_machine import UploadStatus

if TYPE_CHECKING:
    from ..config import Config
    from ..state_store import ReceiptRecord, StateStore
    from ..transport import Transport

logger = logging.getLogger(__name__)


class ManagerPhase(str, Enum):
    """Lifecycle phase of the upload manager."""

    INITIALIZING = "INITIALIZING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class SessionDrained:
    """The host reported that every transfer of a session has finished."""

    session_id: str


_STOP = object()


class UploadManager:
    """
    Durable upload pipeline.

    Usage:
        manager = UploadManager(store, transport, max_attempts=5)
        manager.restore_pending_tasks()
        manager.start()
        manager.capture(jpeg_bytes)
    """

    def __init__(
        self,
        store: StateStore,
        transport: Transport,
        max_attempts: int = 5,
        batch_size: int | None = None,
    ) -> None:
        """
        Initialize the manager. Nothing is dispatched until restore_pending_tasks().

        Args:
            store: Durable receipts store
            transport: Upload transport; its completions are routed here
            max_attempts: Retry ceiling for failed receipts
            batch_size: Maximum submissions per dispatch pass
        """
        self.store = store
        self.transport = transport
        self.max_attempts = max_attempts
        self.registry = TransferRegistry()
        self.bridge = CompletionBridge()
        self.dispatcher = UploadDispatcher(
            store, transport, self.registry, max_attempts=max_attempts, batch_size=batch_size
        )
        self.recovery = RecoveryService(store, transport, self.registry)

        self._events: queue.Queue = queue.Queue()
        self._phase = ManagerPhase.INITIALIZING
        self._phase_lock = threading.Lock()
        self._opened = threading.Event()
        self._deferred_dispatch = False
        # Set once close() has drained the bridge for good
        self._bridge_drained = False
        self._consumer_lock = threading.Lock()
        self._worker: threading.Thread | None = None

        transport.set_completion_listener(self._post)

    @classmethod
    def from_config(cls, config: Config, store: StateStore, transport: Transport) -> UploadManager:
        return cls(
            store,
            transport,
            max_attempts=config.upload.max_attempts,
            batch_size=config.upload.batch_size,
        )

    @property
    def phase(self) -> ManagerPhase:
        return self._phase

    # Capture layer

    def capture(self, payload: bytes, content_type: str = "image/jpeg") -> ReceiptRecord:
        """
        Persist a captured receipt and trigger a dispatch pass.

        Raises:
            PersistenceError: If the receipt could not be saved
        """
        record = self.store.create_record(payload, content_type)
        self.enqueue_pending_uploads()
        return record

    def enqueue_pending_uploads(self) -> DispatchResult:
        """
        Submit every pending (and retryable failed) receipt not already in flight.

        Before startup reconciliation has finished the request is deferred and
        replayed afterwards.

        Raises:
            PipelineClosedError: If the manager is closed
            PersistenceError: If the store cannot be read or written
        """
        with self._phase_lock:
            if self._phase is ManagerPhase.CLOSED:
                raise PipelineClosedError("Upload manager is closed")
            if self._phase is ManagerPhase.INITIALIZING:
                self._deferred_dispatch = True
                logger.debug("Dispatch requested before recovery; deferred")
                return DispatchResult(deferred=True)

        return self.dispatcher.dispatch()

    def delete_record(self, record_id: str) -> bool:
        """
        Delete a receipt, even while it is uploading.

        A transfer still in flight is orphaned so its completion is discarded.
        """
        with self.registry.lock:
            deleted = self.store.delete_record(record_id)
            if deleted:
                self.registry.mark_orphaned(record_id)
        return deleted

    def retry_record(self, record_id: str) -> ReceiptRecord:
        """
        Re-arm a failed receipt (failed -> pending) and dispatch it.

        Works for receipts past the retry ceiling too.

        Raises:
            RecordNotFoundError: If the receipt does not exist
            InvalidTransitionError: If the receipt is not failed
        """
        record = self.store.update_status(record_id, UploadStatus.PENDING)
        self.enqueue_pending_uploads()
        return self.store.get_record(record_id) or record

    # Process lifecycle

    def restore_pending_tasks(self) -> RecoveryResult:
        """
        Reconcile durable state with the transport, then open the pipeline.

        Raises:
            PipelineClosedError: If the manager is closed
            PersistenceError: If reconciliation could not read or write the
                store; the manager stays INITIALIZING and may be retried
        """
        with self._phase_lock:
            if self._phase is ManagerPhase.CLOSED:
                raise PipelineClosedError("Upload manager is closed")
            if self._phase is ManagerPhase.OPEN:
                logger.warning("restore_pending_tasks called twice; ignoring")
                return RecoveryResult()

        result = self.recovery.reconcile()

        with self._phase_lock:
            self._phase = ManagerPhase.OPEN
            replay = self._deferred_dispatch
            self._deferred_dispatch = False
        self._opened.set()
        logger.info("Upload pipeline open")

        self.process_events()
        if replay:
            self.enqueue_pending_uploads()
        return result

    def attach_background_completion_handler(
        self, callback: CompletionCallback, session_id: str
    ) -> None:
        """
        Run callback once every completion of session_id so far is persisted.

        Safe to call before restore_pending_tasks(): the callback is held
        until reconciliation has finished.
        """
        with self._phase_lock:
            run_now = self._bridge_drained
            if not run_now:
                # A closing manager drains this after folding what is left
                self.bridge.hold(session_id, callback)
                if self._phase is not ManagerPhase.CLOSED:
                    self._post(SessionDrained(session_id))

        if run_now:
            # Everything was folded during close()
            self.bridge.hold(session_id, callback)
            self.bridge.release(session_id)

    def start(self) -> None:
        """Consume events on a background thread."""
        if self._worker is not None:
            return
        self._worker = threading.Thread(
            target=self._run, name="receipt-upload-events", daemon=True
        )
        self._worker.start()

    def close(self) -> None:
        """
        Shut down: stop the transport, fold what it reported, run held callbacks.
        """
        with self._phase_lock:
            if self._phase is ManagerPhase.CLOSED:
                return
            was_open = self._phase is ManagerPhase.OPEN
            self._phase = ManagerPhase.CLOSED

        self.transport.close()

        if self._worker is not None:
            self._events.put(_STOP)
            self._opened.set()
            self._worker.join()
            self._worker = None

        if was_open:
            self._consume_available()
        with self._phase_lock:
            self._bridge_drained = True
        self.bridge.drain()
        logger.info("Upload pipeline closed")

    # Event consumption

    def _post(self, message: object) -> None:
        self._events.put(message)

    def process_events(self) -> int:
        """
        Fold every queued event into the store. Returns how many were handled.

        A no-op before the pipeline is open, or while a background consumer
        thread owns the queue.
        """
        if self._phase is not ManagerPhase.OPEN or self._worker is not None:
            return 0
        return self._consume_available()

    def run_until_idle(self, timeout: float = 30.0) -> bool:
        """
        Consume events until no transfer is in flight.

        Returns False if transfers were still running at the timeout.
        """
        if self._phase is not ManagerPhase.OPEN or self._worker is not None:
            raise RuntimeError("run_until_idle needs an open manager without a worker thread")

        deadline = time.monotonic() + timeout
        while True:
            self._consume_available()
            if len(self.registry) == 0 and self._events.empty():
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            try:
                message = self._events.get(timeout=min(remaining, 0.1))
            except queue.Empty:
                continue
            with self._consumer_lock:
                self._handle(message)

    def _consume_available(self) -> int:
        handled = 0
        with self._consumer_lock:
            while True:
                try:
                    message = self._events.get_nowait()
                except queue.Empty:
                    return handled
                if message is _STOP:
                    continue
                self._handle(message)
                handled += 1

    def _run(self) -> None:
        self._opened.wait()
        while True:
            message = self._events.get()
            if message is _STOP:
                return
            with self._consumer_lock:
                try:
                    self._handle(message)
                except Exception:
                    logger.exception(f"Failed to handle event {message!r}")

    def _handle(self, message: object) -> None:
        if isinstance(message, TransferCompletion):
            self._fold_completion(message)
        elif isinstance(message, SessionDrained):
            if not self.bridge.release(message.session_id):
                logger.debug(f"No handler held for session '{message.session_id}'")
        else:
            logger.warning(f"Ignoring unexpected event {message!r}")

    def _fold_completion(self, completion: TransferCompletion) -> None:
        handle = completion.transfer_handle
        entry = self.registry.pop(handle)

        if entry is None:
            logger.debug(f"Completion for unknown or already handled transfer {handle}; ignored")
            return

        if entry.orphaned:
            logger.info(f"Discarding result of transfer {handle}: receipt {entry.record_id} deleted")
            self.transport.acknowledge(handle)
            return

        failure = completion.as_failure()
        try:
            applied = self.store.complete_transfer(
                entry.record_id, completion.succeeded, str(failure) if failure else None
            )
        except PersistenceError:
            # Unacknowledged: the outcome is restored on the next start
            logger.exception(f"Could not persist outcome of transfer {handle}")
            self.registry.add(handle, entry.record_id)
            return

        self.transport.acknowledge(handle)

        if not applied:
            logger.debug(f"Receipt {entry.record_id} is not uploading; completion ignored")
        elif failure is None:
            logger.info(f"Receipt {entry.record_id}: uploading -> uploaded")
        else:
            logger.error(f"Receipt {entry.record_id}: uploading -> failed ({failure})")
            self._check_exhausted(entry.record_id)

    def _check_exhausted(self, record_id: str) -> None:
        record = self.store.get_record(record_id)
        if record is not None and record.upload_attempts >= self.max_attempts:
            logger.warning(
                f"Receipt {record_id} failed {record.upload_attempts} times; "
                f"not retrying automatically"
            )
