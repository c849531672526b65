"""API clients, retry policy and pagination."""

from .classifier import AttemptOutcome, FailureKind, classify
from .client import AdoClient, ApiClient, BbsClient, ClientFactory, GithubClient
from .exceptions import (
    AuthenticationError,
    ClientRequestError,
    GraphQLApplicationError,
    GraphQLServiceUnavailable,
    MalformedResponseError,
    OctoshiftAPIError,
    SecondaryRateLimitExceeded,
    TransientNetworkError,
)
from .pagination import path_selector
from .rate_limiter import RateLimitGate
from .retry import CapturedResult, RetryPolicy

__all__ = [
    'AdoClient',
    'ApiClient',
    'AttemptOutcome',
    'AuthenticationError',
    'BbsClient',
    'CapturedResult',
    'ClientFactory',
    'ClientRequestError',
    'FailureKind',
    'GithubClient',
    'GraphQLApplicationError',
    'GraphQLServiceUnavailable',
    'MalformedResponseError',
    'OctoshiftAPIError',
    'RateLimitGate',
    'RetryPolicy',
    'SecondaryRateLimitExceeded',
    'TransientNetworkError',
    'classify',
    'path_selector',
]
