"""
Decorators for backend error mapping, time bounds and timing.

Every call into the Azure DevOps SDK goes through these so that failures
surface as AzureDevOpsError subclasses. Failed calls are not retried;
callers decide whether a failure is fatal.
"""

import asyncio
import logging
from functools import wraps
from typing import Callable, TypeVar, Optional

from .errors import (
    AzureDevOpsError,
    map_status_code_to_error,
    TimeoutError as ADOTimeoutError
)
from .log_sanitizer import sanitize_log_message
from .validation import ValidationError

T = TypeVar('T')

logger = logging.getLogger(__name__)


def _status_code_of(error: Exception) -> Optional[int]:
    """Pull an HTTP status code off an SDK or msrest exception."""
    status_code = getattr(error, 'status_code', None)
    if not status_code:
        response = getattr(error, 'response', None)
        if response is not None:
            status_code = getattr(response, 'status_code', None)
    return status_code if isinstance(status_code, int) else None


def _retry_after_of(error: Exception) -> Optional[int]:
    response = getattr(error, 'response', None)
    headers = getattr(response, 'headers', None) if response is not None else None
    if not headers:
        return None

    value = headers.get('Retry-After') or headers.get('retry-after')
    if not value:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        # HTTP-date form
        logger.warning(f"Could not parse Retry-After header: {value}")
        return None


def handle_ado_error(func: Callable[..., T]) -> Callable[..., T]:
    """
    Map exceptions raised by an async backend call onto AzureDevOpsError.

    Input validation errors pass through untouched. Exceptions carrying an
    HTTP status code become the matching subclass; anything else becomes a
    plain AzureDevOpsError wrapping the original.

    Example:
        @handle_ado_error
        async def get_relations(self, work_item_id: str):
            return self.wit_client.get_work_item(int(work_item_id), expand='Relations')
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (AzureDevOpsError, ValidationError):
            raise
        except Exception as e:
            status_code = _status_code_of(e)
            message = sanitize_log_message(str(e))

            if status_code:
                kwargs_for_error = {}
                if status_code == 429:
                    kwargs_for_error['retry_after'] = _retry_after_of(e)
                elif status_code == 400:
                    kwargs_for_error['details'] = message

                error = map_status_code_to_error(status_code, original_error=e, **kwargs_for_error)
                logger.error(f"Azure DevOps API error in {func.__name__}: {error}")
                raise error from e

            logger.error(f"Unexpected error in {func.__name__}: {message}")
            raise AzureDevOpsError(
                message=f"Unexpected error in {func.__name__}: {message}",
                original_error=e
            ) from e

    return wrapper


def with_timeout(timeout_seconds: float = 30) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Bound an async operation in time.

    Raises:
        TimeoutError: (the package's, status 408) when the bound is exceeded
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout_seconds)
            except asyncio.TimeoutError as e:
                logger.error(f"Timeout after {timeout_seconds}s in {func.__name__}")
                raise ADOTimeoutError(timeout_seconds=timeout_seconds, original_error=e) from e

        return wrapper
    return decorator


def azure_devops_operation(timeout_seconds: float = 30) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Combine the time bound (outer) with error mapping (inner).

    Example:
        @azure_devops_operation(timeout_seconds=60)
        async def run_query(self, query: str):
            return self.wit_client.query_by_wiql(Wiql(query=query))
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        return with_timeout(timeout_seconds)(handle_ado_error(func))

    return decorator


class PerformanceMonitor:
    """
    Async context manager and decorator that logs slow operations.
    """

    def __init__(self, operation_name: str, warn_threshold_ms: float = 1000.0):
        self.operation_name = operation_name
        self.warn_threshold_ms = warn_threshold_ms
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[float] = None

    async def __aenter__(self):
        self.start_time = asyncio.get_running_loop().time()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (asyncio.get_running_loop().time() - self.start_time) * 1000

        if self.duration_ms > self.warn_threshold_ms:
            logger.warning(
                f"Slow operation: {self.operation_name} took {self.duration_ms:.1f}ms "
                f"(threshold: {self.warn_threshold_ms:.1f}ms)"
            )
        else:
            logger.debug(f"Operation {self.operation_name} completed in {self.duration_ms:.1f}ms")

    def __call__(self, func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            async with PerformanceMonitor(func.__name__, self.warn_threshold_ms):
                return await func(*args, **kwargs)
        return wrapper
