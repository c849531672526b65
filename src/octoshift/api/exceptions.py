"""Octoshift API exceptions."""

from typing import Any, Optional


class OctoshiftAPIError(Exception):
    """Base exception for terminal API client errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[Any] = None,
    ):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code of the last attempt, if any
            response_data: Response body of the last attempt, if any
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class AuthenticationError(OctoshiftAPIError):
    """The server rejected the token (HTTP 401). Never retried."""

    pass


class ClientRequestError(OctoshiftAPIError):
    """Any other non-success status. Never retried."""

    pass


class TransientNetworkError(OctoshiftAPIError):
    """Transport failures or 5xx responses that outlived the retry budget."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        cause: Optional[BaseException] = None,
        **kwargs,
    ):
        """Initialize transient error.

        Args:
            message: Error message
            attempts: Number of physical sends made
            cause: Transport exception of the last attempt, if any
            **kwargs: Additional arguments for base class
        """
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.cause = cause


class GraphQLServiceUnavailable(TransientNetworkError):
    """GraphQL service-level errors that outlived the retry budget."""

    pass


class SecondaryRateLimitExceeded(OctoshiftAPIError):
    """Secondary rate limit still in effect after the backoff ladder."""

    def __init__(self, max_retries: int, **kwargs):
        super().__init__(
            f'Secondary rate limit exceeded. Maximum retries ({max_retries}) '
            'reached. Please wait before retrying your request.',
            **kwargs,
        )
        self.max_retries = max_retries


class GraphQLApplicationError(OctoshiftAPIError):
    """GraphQL response carried a non-retryable error entry."""

    def __init__(self, message: str, errors: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []


class MalformedResponseError(OctoshiftAPIError, ValueError):
    """Response body could not be parsed.

    Raised ``from`` the original parse failure, whose message it keeps.
    """

    pass
