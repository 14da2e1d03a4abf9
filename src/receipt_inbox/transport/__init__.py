"""
Upload transport.

Provides:
- The abstract transport boundary the pipeline consumes
- An HTTP implementation (PUT per receipt, idempotency key = receipt id)
- A journal that carries finished outcomes across restarts
"""

from .base import CompletionListener, RestoredTransfer, TransferCompletion, Transport
from .client import (
    HttpUploadTransport,
    TransportAPIError,
    TransportConnectionError,
    TransportError,
)
from .journal import TransferJournal

__all__ = [
    "CompletionListener",
    "HttpUploadTransport",
    "RestoredTransfer",
    "TransferCompletion",
    "TransferJournal",
    "Transport",
    "TransportAPIError",
    "TransportConnectionError",
    "TransportError",
]
