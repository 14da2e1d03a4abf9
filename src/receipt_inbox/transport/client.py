"""
HTTP upload transport implementation.
"""

import logging
import sqlite3
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import TransferSubmissionError
from .base import RestoredTransfer, TransferCompletion, Transport
from .journal import TransferJournal

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Base exception for upload endpoint errors."""

    pass


class TransportAPIError(TransportError):
    """Endpoint returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Upload endpoint error {status_code}: {message}")


class TransportConnectionError(TransportError):
    """Failed to reach the upload endpoint."""

    pass


class HttpUploadTransport(Transport):
    """
    Uploads receipts to an HTTP endpoint.

    Features:
    - PUT {base_url}/receipts/{key} with an Idempotency-Key header
    - Fire-and-forget submission on a worker pool
    - Automatic retry with backoff for transient failures
    - Optional journal so finished outcomes survive a restart
    """

    DEFAULT_TIMEOUT = 60

    def __init__(
        self,
        base_url: str,
        token: str = "",
        session_id: str = "receipt-uploads",
        journal: TransferJournal | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        max_workers: int = 2,
    ):
        """
        Initialize the transport.

        Args:
            base_url: Upload endpoint root (e.g., "https://api.example.com")
            token: Bearer token, sent when non-empty
            session_id: Name of the background session this transport serves
            journal: Where transfers and outcomes are recorded across restarts
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
            max_workers: Concurrent uploads
        """
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.session_id = session_id
        self.timeout = timeout
        self.journal = journal

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            # PUT is idempotent and the endpoint dedupes on Idempotency-Key
            allowed_methods=["GET", "PUT"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="receipt-upload"
        )
        self._closed = False
        self._close_lock = threading.Lock()

        # Read once, before any new submission can land in the journal
        self._restored: list[RestoredTransfer] = []
        if journal is not None:
            self._restored = [
                RestoredTransfer(
                    transfer_handle=row["transfer_handle"],
                    key=row["key"],
                    succeeded=bool(row["succeeded"]),
                    error=row["error"],
                )
                for row in journal.load_restorable(session_id)
            ]

    def _request(
        self,
        method: str,
        endpoint: str,
        data: bytes | None = None,
        headers: dict | None = None,
    ) -> requests.Response:
        """Make a request with error handling."""
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"Request: {method} {url}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise TransportConnectionError(
                f"Failed to connect to upload endpoint at {self.base_url}: {e}"
            ) from e
        except requests.exceptions.Timeout as e:
            raise TransportConnectionError(f"Upload request timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed: {e}") from e

        logger.debug(f"Response status: {response.status_code}")

        if not response.ok:
            try:
                message = response.json().get("message", response.reason)
            except ValueError:
                message = response.reason
            raise TransportAPIError(
                status_code=response.status_code,
                message=message or "",
                response_body=response.text,
            )

        return response

    def test_connection(self) -> bool:
        """Check the endpoint answers its health route."""
        try:
            self._request("GET", "/health")
            return True
        except TransportError:
            return False

    def submit(self, key: str, payload: bytes, content_type: str) -> str:
        """Queue an upload and return its handle immediately."""
        if not key:
            raise TransferSubmissionError(key, "empty key")
        if not payload:
            raise TransferSubmissionError(key, "empty payload")

        transfer_handle = uuid.uuid4().hex
        with self._close_lock:
            if self._closed:
                raise TransferSubmissionError(key, "transport is closed")
            if self.journal is not None:
                try:
                    self.journal.record_submitted(transfer_handle, self.session_id, key)
                except sqlite3.Error as e:
                    raise TransferSubmissionError(key, f"transfer journal unavailable: {e}") from e
            try:
                self._executor.submit(self._upload, transfer_handle, key, payload, content_type)
            except RuntimeError as e:
                if self.journal is not None:
                    # Unfinished entries are dropped on the next start anyway
                    try:
                        self.journal.forget(transfer_handle)
                    except sqlite3.Error:
                        logger.exception(f"Could not forget transfer {transfer_handle}")
                raise TransferSubmissionError(key, f"upload workers unavailable: {e}") from e

        logger.debug(f"Submitted transfer {transfer_handle} for {key}")
        return transfer_handle

    def _upload(self, transfer_handle: str, key: str, payload: bytes, content_type: str) -> None:
        """Worker body: perform the upload and report its outcome."""
        try:
            self._request(
                "PUT",
                f"/receipts/{key}",
                data=payload,
                headers={"Content-Type": content_type, "Idempotency-Key": key},
            )
            completion = TransferCompletion(
                transfer_handle, key, succeeded=True, session_id=self.session_id
            )
        except TransportAPIError as e:
            completion = TransferCompletion(
                transfer_handle,
                key,
                succeeded=False,
                error=e.message,
                status_code=e.status_code,
                session_id=self.session_id,
            )
        except TransportError as e:
            completion = TransferCompletion(
                transfer_handle, key, succeeded=False, error=str(e), session_id=self.session_id
            )

        if self.journal is not None:
            try:
                self.journal.record_outcome(transfer_handle, completion.succeeded, completion.error)
            except sqlite3.Error:
                # In-process delivery still happens; only restart recovery loses this outcome
                logger.exception(f"Could not journal outcome of transfer {transfer_handle}")

        try:
            self._notify(completion)
        except Exception:
            # Outcome stays in the journal and is restored on the next start
            logger.exception(f"Could not deliver completion for transfer {transfer_handle}")

    def restored_transfers(self) -> list[RestoredTransfer]:
        return list(self._restored)

    def acknowledge(self, transfer_handle: str) -> None:
        if self.journal is not None:
            self.journal.forget(transfer_handle)

    def close(self, wait: bool = True) -> None:
        """Stop accepting submissions; optionally wait for running uploads."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait)
        self.session.close()
