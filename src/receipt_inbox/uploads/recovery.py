"""Cold-start reconciliation of durable upload state.

Runs once per process start, before the dispatcher is trusted. It:
- Asks the transport which transfers survived the restart
- Applies outcomes that finished while nobody was listening
- Fails uploading receipts the transport has never heard of
- Rebuilds the transfer registry from transfers still running

After a pass no receipt is left uploading without a live transfer behind it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..errors import OrphanedTransfer
from .registry import RegistryEntry
from .state_machine import UploadStatus

if TYPE_CHECKING:
    from ..state_store import StateStore
    from ..transport import RestoredTransfer, Transport
    from .registry import TransferRegistry

logger = logging.getLogger(__name__)


@dataclass
class RecoveryResult:
    """Result of a reconciliation pass."""

    uploaded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)
    resumed: list[str] = field(default_factory=list)
    # Restored transfers for receipts that are deleted or already settled
    discarded: list[str] = field(default_factory=list)

    @property
    def resolved_count(self) -> int:
        return len(self.uploaded) + len(self.failed) + len(self.orphaned)


class RecoveryService:
    """Reconciles the transfer registry against the receipts store.

    Usage:
        service = RecoveryService(store, transport, registry)
        result = service.reconcile()
    """

    def __init__(
        self,
        store: StateStore,
        transport: Transport,
        registry: TransferRegistry,
    ) -> None:
        self.store = store
        self.transport = transport
        self.registry = registry

    def reconcile(self) -> RecoveryResult:
        """Run one reconciliation pass.

        Raises:
            PersistenceError: If the store cannot be read or written
        """
        result = RecoveryResult()
        restored = self.transport.restored_transfers()
        by_key: dict[str, list[RestoredTransfer]] = {}
        for transfer in restored:
            by_key.setdefault(transfer.key, []).append(transfer)

        active_entries: list[RegistryEntry] = []
        uploading = self.store.list_by_status(UploadStatus.UPLOADING, oldest_first=True)
        uploading_ids = {record.id for record in uploading}

        for record in uploading:
            transfers = by_key.get(record.id, [])
            running = [t for t in transfers if t.is_active]
            finished = [t for t in transfers if not t.is_active]

            if running:
                # Newest submission wins; the rest cannot be distinguished
                active_entries.append(RegistryEntry(running[-1].transfer_handle, record.id))
                result.resumed.append(record.id)
                for transfer in running[:-1] + finished:
                    self._discard(transfer, result)
                continue

            if finished:
                outcome = self._pick_outcome(finished)
                self.store.complete_transfer(record.id, outcome.succeeded, outcome.error)
                (result.uploaded if outcome.succeeded else result.failed).append(record.id)
                logger.info(
                    f"Receipt {record.id}: outcome arrived while stopped, "
                    f"now {'uploaded' if outcome.succeeded else 'failed'}"
                )
                for transfer in finished:
                    self.transport.acknowledge(transfer.transfer_handle)
                continue

            orphan = OrphanedTransfer(record.id)
            self.store.complete_transfer(record.id, False, str(orphan))
            result.orphaned.append(record.id)
            logger.warning(f"{orphan}; marked failed")

        # Transfers for receipts that were deleted or settled before the restart
        for key, transfers in by_key.items():
            if key in uploading_ids:
                continue
            for transfer in transfers:
                if transfer.is_active:
                    active_entries.append(
                        RegistryEntry(transfer.transfer_handle, key, orphaned=True)
                    )
                    result.discarded.append(transfer.transfer_handle)
                else:
                    self._discard(transfer, result)

        self._rebuild(active_entries)

        logger.info(
            f"Recovery complete: {len(result.uploaded)} uploaded, {len(result.failed)} failed, "
            f"{len(result.orphaned)} orphaned, {len(result.resumed)} still in flight"
        )
        return result

    @staticmethod
    def _pick_outcome(finished: list[RestoredTransfer]) -> RestoredTransfer:
        """Any success means the endpoint has the receipt."""
        for transfer in finished:
            if transfer.succeeded:
                return transfer
        return finished[-1]

    def _discard(self, transfer: RestoredTransfer, result: RecoveryResult) -> None:
        logger.debug(f"Discarding restored transfer {transfer.transfer_handle} for {transfer.key}")
        result.discarded.append(transfer.transfer_handle)
        if not transfer.is_active:
            self.transport.acknowledge(transfer.transfer_handle)

    def _rebuild(self, entries: list[RegistryEntry]) -> None:
        # One entry per receipt; surplus transfers report unknown handles later
        seen: set[str] = set()
        unique = []
        for entry in entries:
            if entry.record_id in seen:
                continue
            seen.add(entry.record_id)
            unique.append(entry)
        self.registry.rebuild(unique)
