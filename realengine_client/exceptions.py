"""Errors surfaced through a ResultHandle.

Transport failures are not wrapped: the ``aiohttp.ClientError`` (or
``asyncio.TimeoutError``) raised by the session reaches the caller as-is.
"""

from typing import Optional

from realengine_client.models import ErrorInfo


class OperationError(Exception):
    def __init__(
        self,
        message: str,
        http_status: int,
        path: str,
        error_id: str = "",
    ):
        self.error_id = error_id
        self.error_message = message
        self.http_status = http_status
        self.path = path
        if error_id:
            text = (
                f"Error id: {error_id}, message: {message}, "
                f"http status: {http_status}, path: {path}"
            )
        else:
            text = f"{message} http status: {http_status}, path: {path}"
        super().__init__(text)

    @classmethod
    def from_error_info(
        cls, error: ErrorInfo, http_status: int, path: str
    ) -> "OperationError":
        return cls(error.message, http_status, path, error_id=error.id)


class ProtocolError(OperationError):
    """Response is missing metadata the protocol requires"""


class RemoteError(OperationError):
    """Server answered success=false with an error payload"""


class TransientError(OperationError):
    """Server answered 429 or 5xx"""


class RetryBudgetExhausted(TransientError):
    def __init__(self, http_status: int, path: str, message: Optional[str] = None):
        super().__init__(message or "Too many retries", http_status, path)
