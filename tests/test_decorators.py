"""
Unit tests for decorators module.

Tests error mapping, timeout handling, and performance monitoring.
"""

import asyncio
import logging
import time
import pytest
from unittest.mock import Mock
from workitem_engine.decorators import (
    PerformanceMonitor,
    azure_devops_operation,
    handle_ado_error,
    with_timeout
)
from workitem_engine.errors import (
    AzureDevOpsError,
    AuthenticationError,
    BadRequestError,
    RateLimitError,
    TimeoutError as ADOTimeoutError,
    TransientError,
    WorkItemNotFoundError
)
from workitem_engine.validation import ValidationError


class SdkError(Exception):
    """Stand-in for an SDK exception that carries an HTTP response."""

    def __init__(self, message, status_code=None, headers=None):
        super().__init__(message)
        self.response = Mock(status_code=status_code, headers=headers or {})


class TestHandleAdoError:
    """Test handle_ado_error decorator."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self):
        @handle_ado_error
        async def operation():
            return 42

        assert await operation() == 42

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code,error_class", [
        (400, BadRequestError),
        (401, AuthenticationError),
        (404, WorkItemNotFoundError),
        (429, RateLimitError),
        (503, TransientError),
    ])
    async def test_status_codes_are_mapped(self, status_code, error_class):
        @handle_ado_error
        async def operation():
            raise SdkError("backend said no", status_code=status_code)

        with pytest.raises(error_class) as exc_info:
            await operation()
        assert exc_info.value.status_code == status_code
        assert isinstance(exc_info.value.original_error, SdkError)

    @pytest.mark.asyncio
    async def test_status_code_attribute(self):
        error = Exception("gone")
        error.status_code = 404

        @handle_ado_error
        async def operation():
            raise error

        with pytest.raises(WorkItemNotFoundError):
            await operation()

    @pytest.mark.asyncio
    async def test_retry_after_is_kept(self):
        @handle_ado_error
        async def operation():
            raise SdkError("throttled", status_code=429, headers={'Retry-After': '12'})

        with pytest.raises(RateLimitError) as exc_info:
            await operation()
        assert exc_info.value.retry_after == 12

    @pytest.mark.asyncio
    async def test_bad_request_details_are_sanitized(self):
        @handle_ado_error
        async def operation():
            raise SdkError("TF51005: invalid query, Authorization: Basic dXNlcjpwYXQ=", status_code=400)

        with pytest.raises(BadRequestError) as exc_info:
            await operation()
        assert "dXNlcjpwYXQ=" not in exc_info.value.details
        assert "TF51005" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_unknown_error_is_wrapped(self):
        @handle_ado_error
        async def operation():
            raise RuntimeError("socket closed")

        with pytest.raises(AzureDevOpsError) as exc_info:
            await operation()
        assert exc_info.value.status_code is None
        assert "operation" in exc_info.value.message
        assert "socket closed" in exc_info.value.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        WorkItemNotFoundError(work_item_id="7"),
        ValidationError("Query cannot be empty"),
    ])
    async def test_package_errors_pass_through(self, error):
        @handle_ado_error
        async def operation():
            raise error

        with pytest.raises(type(error)) as exc_info:
            await operation()
        assert exc_info.value is error


class TestTimeoutDecorator:
    """Test with_timeout decorator."""

    @pytest.mark.asyncio
    async def test_fast_call_returns(self):
        @with_timeout(timeout_seconds=1)
        async def operation():
            return "done"

        assert await operation() == "done"

    @pytest.mark.asyncio
    async def test_slow_call_times_out(self):
        @with_timeout(timeout_seconds=0.05)
        async def operation():
            await asyncio.sleep(1)

        with pytest.raises(ADOTimeoutError) as exc_info:
            await operation()
        assert exc_info.value.status_code == 408
        assert exc_info.value.details == {'timeout_seconds': 0.05}

    @pytest.mark.asyncio
    async def test_blocking_call_in_thread_times_out(self):
        @with_timeout(timeout_seconds=0.05)
        async def operation():
            await asyncio.to_thread(time.sleep, 0.3)

        with pytest.raises(ADOTimeoutError):
            await operation()


class TestAzureDevOpsOperation:
    """Test the combined decorator."""

    @pytest.mark.asyncio
    async def test_maps_errors(self):
        @azure_devops_operation(timeout_seconds=1)
        async def operation():
            raise SdkError("unauthorized", status_code=401)

        with pytest.raises(AuthenticationError):
            await operation()

    @pytest.mark.asyncio
    async def test_times_out(self):
        @azure_devops_operation(timeout_seconds=0.05)
        async def operation():
            await asyncio.sleep(1)

        with pytest.raises(ADOTimeoutError):
            await operation()

    def test_preserves_name(self):
        @azure_devops_operation()
        async def run_query():
            return None

        assert run_query.__name__ == "run_query"


class TestPerformanceMonitor:
    """Test PerformanceMonitor."""

    @pytest.mark.asyncio
    async def test_context_manager_records_duration(self):
        async with PerformanceMonitor("lookup") as monitor:
            await asyncio.sleep(0.01)
        assert monitor.duration_ms >= 5

    @pytest.mark.asyncio
    async def test_slow_operation_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="workitem_engine.decorators"):
            async with PerformanceMonitor("lookup", warn_threshold_ms=0):
                await asyncio.sleep(0.01)
        assert "Slow operation: lookup" in caplog.text

    @pytest.mark.asyncio
    async def test_as_decorator(self):
        @PerformanceMonitor("ignored")
        async def operation(value):
            return value * 2

        assert await operation(21) == 42
