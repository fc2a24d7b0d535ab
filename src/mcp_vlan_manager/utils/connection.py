"""Retry helpers and per-device operation results."""
import logging
from typing import Any, Callable, Optional

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

logger = logging.getLogger(__name__)


# Transport-level failures worth retrying. DeviceConnectionError and
# DeviceTimeoutError subclass the builtins, so they are covered too.
RETRYABLE_EXCEPTIONS = (
    ConnectionRefusedError,
    ConnectionResetError,
    ConnectionError,
    TimeoutError,
    EOFError,
)


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    exceptions: tuple = RETRYABLE_EXCEPTIONS,
) -> Callable:
    """Retry a sync or async callable with exponential backoff.

    The last exception is re-raised once ``max_attempts`` is exhausted.
    """
    # tenacity switches to AsyncRetrying for coroutine functions
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


class OperationResult:
    """Outcome of one operation on one device inside a fan-out."""

    def __init__(
        self,
        success: bool,
        data: Any = None,
        error: str = "",
        error_type: Optional[str] = None,
        device_id: str = "",
        operation: str = "",
    ):
        self.success = success
        self.data = data
        self.error = error
        self.error_type = error_type
        self.device_id = device_id
        self.operation = operation

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "data": self.data}
        return {
            "success": False,
            "error": self.error,
            "error_type": self.error_type,
        }

    def __repr__(self) -> str:
        status = "OK" if self.success else "FAILED"
        return f"OperationResult({status}, device={self.device_id}, op={self.operation})"
