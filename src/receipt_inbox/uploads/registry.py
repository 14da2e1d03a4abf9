"""
Transfer registry.

Process-wide index from a transport-assigned transfer handle to the receipt
it serves. Completions are reported by handle, not by receipt id, so this is
how a result finds its record.

The registry is volatile and never authoritative: durability lives in the
store (status = uploading + upload_attempts). Recovery rebuilds it wholesale
on every start.
"""

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class RegistryEntry:
    """One in-flight transfer."""

    transfer_handle: str
    record_id: str
    # Record was deleted while in flight: discard the result on arrival
    orphaned: bool = False


class TransferRegistry:
    """
    In-memory handle -> record index.

    All reads and writes go through one re-entrant lock. The dispatcher holds
    the lock across "submit to transport, then add", so a completion racing in
    on another thread cannot look up a handle before it is registered.
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._by_handle: dict[str, RegistryEntry] = {}
        self._by_record: dict[str, str] = {}

    def add(self, transfer_handle: str, record_id: str, orphaned: bool = False) -> RegistryEntry:
        """Register an in-flight transfer. One transfer per record."""
        with self.lock:
            existing = self._by_record.get(record_id)
            if existing is not None and existing != transfer_handle:
                raise ValueError(
                    f"Record {record_id} already has transfer {existing} in flight"
                )
            entry = RegistryEntry(transfer_handle, record_id, orphaned)
            self._by_handle[transfer_handle] = entry
            self._by_record[record_id] = transfer_handle
            return entry

    def get(self, transfer_handle: str) -> RegistryEntry | None:
        with self.lock:
            return self._by_handle.get(transfer_handle)

    def pop(self, transfer_handle: str) -> RegistryEntry | None:
        """Remove and return the entry for a finished transfer."""
        with self.lock:
            entry = self._by_handle.pop(transfer_handle, None)
            if entry is not None and self._by_record.get(entry.record_id) == transfer_handle:
                del self._by_record[entry.record_id]
            return entry

    def handle_for(self, record_id: str) -> str | None:
        with self.lock:
            return self._by_record.get(record_id)

    def contains_record(self, record_id: str) -> bool:
        """True while a transfer for the record is in flight."""
        with self.lock:
            return record_id in self._by_record

    def mark_orphaned(self, record_id: str) -> bool:
        """
        Flag a record's in-flight transfer so its completion is discarded.

        The entry stays until the transport reports the transfer finished.
        Returns False when nothing is in flight for the record.
        """
        with self.lock:
            handle = self._by_record.get(record_id)
            if handle is None:
                return False
            self._by_handle[handle].orphaned = True
            logger.info(f"Transfer {handle} for receipt {record_id} orphaned")
            return True

    def clear(self) -> None:
        with self.lock:
            self._by_handle.clear()
            self._by_record.clear()

    def rebuild(self, entries: Iterable[RegistryEntry]) -> None:
        """Replace the whole index, e.g. after a cold start."""
        with self.lock:
            self.clear()
            for entry in entries:
                self.add(entry.transfer_handle, entry.record_id, entry.orphaned)
            logger.info(f"Transfer registry rebuilt with {len(self._by_handle)} entries")

    def snapshot(self) -> list[RegistryEntry]:
        """Copy of the current entries."""
        with self.lock:
            return [
                RegistryEntry(e.transfer_handle, e.record_id, e.orphaned)
                for e in self._by_handle.values()
            ]

    def __len__(self) -> int:
        with self.lock:
            return len(self._by_handle)
