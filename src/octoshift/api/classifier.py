"""Classification of a single request attempt into a failure kind."""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

RATE_LIMIT_REMAINING_HEADER = 'X-RateLimit-Remaining'
RATE_LIMIT_RESET_HEADER = 'X-RateLimit-Reset'
RETRY_AFTER_HEADER = 'Retry-After'

TRANSIENT_STATUS_CODES = frozenset({500, 502, 503})
RATE_LIMIT_STATUS_CODES = frozenset({403, 429})

SECONDARY_RATE_LIMIT_PHRASES = (
    'SECONDARY RATE LIMIT',
    'ABUSE DETECTION',
    'RATE LIMIT',
)
BAD_CREDENTIALS_PHRASE = 'BAD CREDENTIALS'


class FailureKind(str, Enum):
    """Outcome classes driving the retry policy."""

    SUCCESS = 'success'
    TRANSIENT_SERVER_ERROR = 'transient_server_error'
    PRIMARY_RATE_LIMITED = 'primary_rate_limited'
    SECONDARY_RATE_LIMITED = 'secondary_rate_limited'
    AUTH_FAILURE = 'auth_failure'
    CLIENT_ERROR = 'client_error'
    MALFORMED_RESPONSE = 'malformed_response'
    GRAPHQL_SERVICE_ERROR = 'graphql_service_error'
    GRAPHQL_APPLICATION_ERROR = 'graphql_application_error'


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


class RateLimitSignal(BaseModel):
    """Rate limit information carried by response headers."""

    remaining: Optional[int] = None
    reset_at: Optional[int] = None
    retry_after: Optional[int] = None

    @classmethod
    def from_headers(cls, headers: Dict[str, str]) -> 'RateLimitSignal':
        lowered = {key.lower(): value for key, value in headers.items()}
        return cls(
            remaining=_parse_int(lowered.get(RATE_LIMIT_REMAINING_HEADER.lower())),
            reset_at=_parse_int(lowered.get(RATE_LIMIT_RESET_HEADER.lower())),
            retry_after=_parse_int(lowered.get(RETRY_AFTER_HEADER.lower())),
        )

    @property
    def has_signal(self) -> bool:
        return (
            self.remaining is not None
            or self.reset_at is not None
            or self.retry_after is not None
        )

    @property
    def is_exhausted(self) -> bool:
        """Quota is used up and the server told us when it resets."""
        return (
            self.remaining is not None
            and self.remaining <= 0
            and self.reset_at is not None
        )

    def delay_seconds(self, now: float) -> float:
        """Seconds to wait before the next request, never negative."""
        if self.is_exhausted:
            return max(0.0, self.reset_at - now)
        if self.retry_after is not None:
            return float(max(0, self.retry_after))
        return 0.0


class AttemptOutcome(BaseModel):
    """Result of one physical send.

    Exactly one of three shapes: a transport failure (``exception`` set, no
    status), a response with the expected status, or any other response.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    method: str = 'GET'
    url: str = ''
    status_code: Optional[int] = None
    body: str = ''
    headers: Dict[str, str] = Field(default_factory=dict)
    exception: Optional[BaseException] = None
    expected_status: Optional[int] = None
    data: Any = None
    parse_error: Optional[Exception] = None

    @property
    def is_transport_failure(self) -> bool:
        return self.exception is not None

    @property
    def is_success(self) -> bool:
        """Status matches the expected one (any 2xx when none was given)."""
        if self.status_code is None:
            return False
        if self.expected_status is not None:
            return self.status_code == self.expected_status
        return 200 <= self.status_code < 300

    @property
    def is_http_failure(self) -> bool:
        return not self.is_transport_failure and not self.is_success

    @property
    def rate_limit(self) -> RateLimitSignal:
        return RateLimitSignal.from_headers(self.headers)

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None


Rule = Tuple[Callable[[AttemptOutcome], bool], FailureKind]


def _is_unauthorized(outcome: AttemptOutcome) -> bool:
    return outcome.status_code == 401


def _is_transport_failure(outcome: AttemptOutcome) -> bool:
    return outcome.is_transport_failure


def _is_transient_status(outcome: AttemptOutcome) -> bool:
    return outcome.status_code in TRANSIENT_STATUS_CODES


def _is_secondary_rate_limited(outcome: AttemptOutcome) -> bool:
    if outcome.status_code not in RATE_LIMIT_STATUS_CODES:
        return False

    # Structured primary headers win over body phrasing
    if outcome.rate_limit.is_exhausted:
        return False

    body = outcome.body.upper()
    if BAD_CREDENTIALS_PHRASE in body:
        return False

    return outcome.status_code == 429 or any(
        phrase in body for phrase in SECONDARY_RATE_LIMIT_PHRASES
    )


def _is_primary_rate_limited(outcome: AttemptOutcome) -> bool:
    signal = outcome.rate_limit
    if signal.is_exhausted:
        return outcome.is_success or outcome.status_code in RATE_LIMIT_STATUS_CODES

    # ADO sends Retry-After on successful responses while throttling
    return outcome.is_success and signal.retry_after is not None


def _is_client_error(outcome: AttemptOutcome) -> bool:
    return not outcome.is_success


def _is_malformed(outcome: AttemptOutcome) -> bool:
    return outcome.parse_error is not None


RULES: List[Rule] = [
    (_is_unauthorized, FailureKind.AUTH_FAILURE),
    (_is_transport_failure, FailureKind.TRANSIENT_SERVER_ERROR),
    (_is_transient_status, FailureKind.TRANSIENT_SERVER_ERROR),
    (_is_secondary_rate_limited, FailureKind.SECONDARY_RATE_LIMITED),
    (_is_primary_rate_limited, FailureKind.PRIMARY_RATE_LIMITED),
    (_is_client_error, FailureKind.CLIENT_ERROR),
    (_is_malformed, FailureKind.MALFORMED_RESPONSE),
]


def classify(outcome: AttemptOutcome) -> FailureKind:
    """Classify an attempt; the first matching rule wins.

    Args:
        outcome: Completed attempt

    Returns:
        Failure kind, ``FailureKind.SUCCESS`` when no rule matches
    """
    for predicate, kind in RULES:
        if predicate(outcome):
            return kind
    return FailureKind.SUCCESS
