"""Durable upload pipeline: state machine, dispatch, registry and recovery."""

from receipt_inbox.errors import (
    InvalidTransitionError,
    OrphanedTransfer,
    PersistenceError,
    PipelineClosedError,
    RecordNotFoundError,
    TransferOutcomeFailure,
    TransferSubmissionError,
    UploadPipelineError,
)
from receipt_inbox.uploads.state_machine import TransferEvent, UploadStatus, next_status
from receipt_inbox.uploads.registry import RegistryEntry, TransferRegistry
from receipt_inbox.uploads.completion_bridge import CompletionBridge
from receipt_inbox.uploads.dispatcher import DispatchResult, UploadDispatcher
from receipt_inbox.uploads.recovery import RecoveryResult, RecoveryService
from receipt_inbox.uploads.manager import ManagerPhase, UploadManager

__all__ = [
    "CompletionBridge",
    "DispatchResult",
    "InvalidTransitionError",
    "ManagerPhase",
    "OrphanedTransfer",
    "PersistenceError",
    "PipelineClosedError",
    "RecordNotFoundError",
    "RecoveryResult",
    "RecoveryService",
    "RegistryEntry",
    "TransferEvent",
    "TransferOutcomeFailure",
    "TransferRegistry",
    "TransferSubmissionError",
    "UploadDispatcher",
    "UploadManager",
    "UploadPipelineError",
    "UploadStatus",
    "next_status",
]
