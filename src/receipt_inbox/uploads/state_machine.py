"""
Transfer state machine.

    pending ──SUBMITTED──▶ uploading ──SUCCEEDED──▶ uploaded (terminal)
       ▲                      │
       │                      └────FAILED───────▶ failed
       └──────────REARMED─────────────────────────┘   │
                  uploading ◀──────SUBMITTED──────────┘

A record is never marked uploaded without passing through uploading.
"""

from enum import Enum

from ..errors import InvalidTransitionError


class UploadStatus(str, Enum):
    """Durable status of a receipt record."""

    PENDING = "pending"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is UploadStatus.UPLOADED


class TransferEvent(str, Enum):
    """Events that drive a record between statuses."""

    SUBMITTED = "SUBMITTED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REARMED = "REARMED"


_TRANSITIONS: dict[tuple[UploadStatus, TransferEvent], UploadStatus] = {
    (UploadStatus.PENDING, TransferEvent.SUBMITTED): UploadStatus.UPLOADING,
    (UploadStatus.FAILED, TransferEvent.SUBMITTED): UploadStatus.UPLOADING,
    (UploadStatus.UPLOADING, TransferEvent.SUCCEEDED): UploadStatus.UPLOADED,
    (UploadStatus.UPLOADING, TransferEvent.FAILED): UploadStatus.FAILED,
    (UploadStatus.FAILED, TransferEvent.REARMED): UploadStatus.PENDING,
}

# Statuses the dispatcher may submit from
SUBMITTABLE = frozenset({UploadStatus.PENDING, UploadStatus.FAILED})


def next_status(current: UploadStatus | str, event: TransferEvent | str) -> UploadStatus:
    """
    Resolve the status reached by applying an event.

    Raises:
        InvalidTransitionError: If the event is not legal from the current status
    """
    current = UploadStatus(current)
    event = TransferEvent(event)
    try:
        return _TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransitionError(current.value, event.value) from None


def can_transition(current: UploadStatus | str, event: TransferEvent | str) -> bool:
    """Check whether an event is legal from the current status."""
    return (UploadStatus(current), TransferEvent(event)) in _TRANSITIONS


def event_for(current: UploadStatus | str, target: UploadStatus | str) -> TransferEvent:
    """Find the event that moves a record from one status to another."""
    current = UploadStatus(current)
    target = UploadStatus(target)
    for (source, event), destination in _TRANSITIONS.items():
        if source is current and destination is target:
            return event
    raise InvalidTransitionError(current.value, f"-> {target.value}")
