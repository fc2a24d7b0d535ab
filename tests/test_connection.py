"""Tests for connection utilities."""
import pytest
from mcp_vlan_manager.errors import DeviceConnectionError, DeviceTimeoutError
from mcp_vlan_manager.utils.connection import (
    with_retry,
    OperationResult,
    RETRYABLE_EXCEPTIONS,
)


class TestWithRetry:
    """Tests for retry decorator."""

    @pytest.mark.asyncio
    async def test_async_success_no_retry(self):
        """Successful async function doesn't retry."""
        call_count = 0

        @with_retry(max_attempts=3)
        async def succeeding_func():
            nonlocal call_count
            call_count += 1
            return "success"

        result = await succeeding_func()
        assert result == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_async_retry_then_success(self):
        """Async function retries on failure then succeeds."""
        call_count = 0

        @with_retry(max_attempts=3, min_wait=0.01, max_wait=0.1)
        async def failing_then_succeeding():
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise ConnectionRefusedError("Connection refused")
            return "success"

        result = await failing_then_succeeding()
        assert result == "success"
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_async_max_retries_exceeded(self):
        """Async function raises after max retries."""
        call_count = 0

        @with_retry(max_attempts=3, min_wait=0.01, max_wait=0.1)
        async def always_failing():
            nonlocal call_count
            call_count += 1
            raise TimeoutError("Always times out")

        with pytest.raises(TimeoutError):
            await always_failing()
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_device_errors_are_retried(self):
        """Package connection/timeout errors count as transport failures."""
        call_count = 0

        @with_retry(max_attempts=2, min_wait=0.01, max_wait=0.1)
        async def flaky():
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise DeviceConnectionError("sw1: connection refused")
            raise DeviceTimeoutError("sw1: timed out")

        with pytest.raises(DeviceTimeoutError):
            await flaky()
        assert call_count == 2

    def test_sync_success_no_retry(self):
        """Successful sync function doesn't retry."""
        call_count = 0

        @with_retry(max_attempts=3)
        def succeeding_func():
            nonlocal call_count
            call_count += 1
            return "success"

        result = succeeding_func()
        assert result == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_non_retryable_exception(self):
        """Non-retryable exceptions are not retried."""
        call_count = 0

        @with_retry(max_attempts=3, exceptions=(ConnectionRefusedError,))
        async def raising_value_error():
            nonlocal call_count
            call_count += 1
            raise ValueError("Not retryable")

        with pytest.raises(ValueError):
            await raising_value_error()
        assert call_count == 1  # Only one attempt


class TestRetryableExceptions:
    """Tests for retryable exceptions list."""

    def test_connection_refused_is_retryable(self):
        assert ConnectionRefusedError in RETRYABLE_EXCEPTIONS

    def test_timeout_is_retryable(self):
        assert TimeoutError in RETRYABLE_EXCEPTIONS

    def test_connection_reset_is_retryable(self):
        assert ConnectionResetError in RETRYABLE_EXCEPTIONS

    def test_eof_error_is_retryable(self):
        assert EOFError in RETRYABLE_EXCEPTIONS

    def test_device_errors_subclass_retryable_builtins(self):
        assert issubclass(DeviceConnectionError, RETRYABLE_EXCEPTIONS)
        assert issubclass(DeviceTimeoutError, RETRYABLE_EXCEPTIONS)


class TestOperationResult:
    """Tests for OperationResult class."""

    def test_successful_result(self):
        result = OperationResult(
            success=True,
            data={"vlans": []},
            device_id="core1",
            operation="get_vlan_config",
        )
        assert result.success is True
        assert result.error == ""
        assert "OK" in repr(result)

    def test_failed_result(self):
        result = OperationResult(
            success=False,
            error="Connection refused",
            error_type="connection_error",
            device_id="core1",
            operation="create_vlan",
        )
        assert result.success is False
        assert "FAILED" in repr(result)

    def test_to_dict_success(self):
        result = OperationResult(success=True, data={"ok": 1}, device_id="core1")
        assert result.to_dict() == {"success": True, "data": {"ok": 1}}

    def test_to_dict_failure(self):
        result = OperationResult(success=False, error="boom", error_type="device_error")
        assert result.to_dict() == {
            "success": False,
            "error": "boom",
            "error_type": "device_error",
        }
