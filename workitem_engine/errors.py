"""
Exception classes for the work item query engine.

Backend failures raised by the Azure DevOps collaborators (query execution,
relation lookups, sprint listing) are mapped onto this hierarchy so callers
can surface them consistently.
"""

from typing import Optional, Any


class AzureDevOpsError(Exception):
    """
    Base exception for Azure DevOps backend errors.

    Attributes:
        status_code: HTTP status code from the API response
        message: Human-readable error message
        original_error: The original exception that was caught
        details: Additional error details
    """

    def __init__(
        self,
        message: str = "Azure DevOps API error",
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
        details: Optional[Any] = None
    ):
        self.status_code = status_code
        self.message = message
        self.original_error = original_error
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.status_code:
            return f"[{self.status_code}] {self.message}"
        return self.message

    def to_dict(self) -> dict:
        """Convert error to dictionary for tool responses."""
        return {
            'error': self.__class__.__name__,
            'status_code': self.status_code,
            'message': self.message,
            'details': str(self.details) if self.details else None
        }


class WorkItemNotFoundError(AzureDevOpsError):
    """Raised when a work item lookup returns HTTP 404."""

    def __init__(
        self,
        work_item_id: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        message = "Work item not found. Please verify the ID exists and you have access."
        if work_item_id:
            message = f"Work item {work_item_id} not found. Please verify it exists and you have access."

        super().__init__(
            message=message,
            status_code=404,
            original_error=original_error,
            details={'work_item_id': work_item_id} if work_item_id else None
        )


class AuthenticationError(AzureDevOpsError):
    """Raised when the backend rejects the configured credentials (HTTP 401)."""

    def __init__(
        self,
        message: str = "Authentication failed. Check that AZURE_DEVOPS_PAT is valid and not expired.",
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            status_code=401,
            original_error=original_error
        )


class PermissionDeniedError(AzureDevOpsError):
    """
    Raised when the credentials lack access to a project or area (HTTP 403).

    Relation lookups hit this when a linked item lives in a project the
    token cannot read.
    """

    def __init__(
        self,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        if operation:
            message = f"Permission denied for {operation}. Please check your project permissions."
        else:
            message = "Permission denied. Please check your credentials and project permissions."

        super().__init__(
            message=message,
            status_code=403,
            original_error=original_error,
            details={'operation': operation} if operation else None
        )


class RateLimitError(AzureDevOpsError):
    """Raised when the backend throttles requests (HTTP 429)."""

    def __init__(
        self,
        retry_after: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        if retry_after:
            message = f"Rate limit exceeded. Backend asked to retry after {retry_after} seconds."
        else:
            message = "Rate limit exceeded. Reduce concurrent lookups or retry later."

        super().__init__(
            message=message,
            status_code=429,
            original_error=original_error,
            details={'retry_after': retry_after}
        )
        self.retry_after = retry_after


class TransientError(AzureDevOpsError):
    """Raised for temporary service errors (HTTP 500, 502, 503, 504)."""

    def __init__(
        self,
        status_code: int,
        original_error: Optional[Exception] = None
    ):
        message = f"Azure DevOps service temporarily unavailable (HTTP {status_code})."

        super().__init__(
            message=message,
            status_code=status_code,
            original_error=original_error
        )


class BadRequestError(AzureDevOpsError):
    """
    Raised for malformed requests (HTTP 400).

    The WIQL endpoint answers 400 when a query breaks the grammar, for
    example a CONTAINS predicate on System.IterationPath.
    """

    def __init__(
        self,
        message: str = "Bad request. The backend rejected the query or input values.",
        original_error: Optional[Exception] = None,
        details: Optional[Any] = None
    ):
        super().__init__(
            message=message,
            status_code=400,
            original_error=original_error,
            details=details
        )


class TimeoutError(AzureDevOpsError):
    """Raised when a backend call exceeds the caller's time bound."""

    def __init__(
        self,
        timeout_seconds: float = 30,
        original_error: Optional[Exception] = None
    ):
        message = f"Request timeout after {timeout_seconds} seconds."

        super().__init__(
            message=message,
            status_code=408,
            original_error=original_error,
            details={'timeout_seconds': timeout_seconds}
        )


class QueryTooLargeError(AzureDevOpsError):
    """Raised when a query matches more items than the backend will return."""

    def __init__(
        self,
        result_count: Optional[int] = None,
        max_results: int = 20000,
        original_error: Optional[Exception] = None
    ):
        if result_count:
            message = (
                f"Query returned {result_count} results, exceeding maximum of {max_results}. "
                "Add filters to narrow the query."
            )
        else:
            message = f"Query result too large (max {max_results} items). Add filters to narrow the query."

        super().__init__(
            message=message,
            status_code=413,
            original_error=original_error,
            details={'result_count': result_count, 'max_results': max_results}
        )


def map_status_code_to_error(
    status_code: int,
    original_error: Optional[Exception] = None,
    **kwargs
) -> AzureDevOpsError:
    """
    Map an HTTP status code to the matching error class.

    Args:
        status_code: HTTP status code from the Azure DevOps API
        original_error: The original exception
        **kwargs: Error-specific parameters (e.g. retry_after, work_item_id)

    Returns:
        AzureDevOpsError subclass instance
    """
    if status_code == 400:
        return BadRequestError(original_error=original_error, **kwargs)
    elif status_code == 401:
        return AuthenticationError(original_error=original_error)
    elif status_code == 403:
        return PermissionDeniedError(original_error=original_error, **kwargs)
    elif status_code == 404:
        return WorkItemNotFoundError(original_error=original_error, **kwargs)
    elif status_code == 408:
        return TimeoutError(original_error=original_error, **kwargs)
    elif status_code == 413:
        return QueryTooLargeError(original_error=original_error, **kwargs)
    elif status_code == 429:
        return RateLimitError(original_error=original_error, **kwargs)
    elif status_code in (500, 502, 503, 504):
        return TransientError(status_code=status_code, original_error=original_error)
    else:
        return AzureDevOpsError(
            message=f"Azure DevOps API error: HTTP {status_code}",
            status_code=status_code,
            original_error=original_error
        )
