"""
Error taxonomy for the upload pipeline.

Persistence and submission errors are raised synchronously to the immediate
caller. Transfer outcome failures are folded into durable record state and
never raised across the asynchronous completion boundary.
"""


class UploadPipelineError(Exception):
    """Base exception for upload pipeline errors."""

    pass


class PersistenceError(UploadPipelineError):
    """Record store I/O failed; the mutation was rolled back."""

    pass


class RecordNotFoundError(PersistenceError):
    """Record does not exist in the store."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Receipt record '{record_id}' not found")


class InvalidTransitionError(UploadPipelineError):
    """Requested status transition is not allowed."""

    def __init__(self, current: str, event: str):
        self.current = current
        self.event = event
        super().__init__(f"Cannot apply '{event}' to a record in status '{current}'")


class TransferSubmissionError(UploadPipelineError):
    """Transport rejected a submission before any bytes were sent."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Transfer for '{key}' rejected: {reason}")


class TransferOutcomeFailure(UploadPipelineError):
    """Remote endpoint rejected the transfer or the transfer broke mid-flight."""

    def __init__(self, key: str, reason: str, status_code: int | None = None):
        self.key = key
        self.reason = reason
        self.status_code = status_code
        detail = f"HTTP {status_code}: {reason}" if status_code else reason
        super().__init__(f"Transfer for '{key}' failed: {detail}")


class OrphanedTransfer(UploadPipelineError):
    """An uploading record has no transfer the transport knows about."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(
            f"Record '{record_id}' is uploading but the transport has no transfer for it"
        )


class PipelineClosedError(UploadPipelineError):
    """Upload manager has been closed."""

    pass
