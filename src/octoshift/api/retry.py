"""Retry policy wrapped around every physical send."""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

from ..config.config import ClientSettings
from ..utils.logging import OctoLogger
from .classifier import AttemptOutcome, FailureKind, classify
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
from .graphql import GraphQLInspection
from .rate_limiter import RateLimitGate

UNAUTHORIZED_MESSAGE = 'Unauthorized. Please check your token and try again'

SendOnce = Callable[[], Awaitable[AttemptOutcome]]
Inspector = Callable[[AttemptOutcome], GraphQLInspection]
T = TypeVar('T')
Operation = Callable[[], Awaitable[T]]


class RetryState(BaseModel):
    """Counters for one logical call."""

    attempt: int = 0
    retries: int = 0
    secondary_attempt: int = 0
    max_secondary_attempts: int = 3
    secondary_base_delay: float = 60.0

    def next_secondary_delay(self) -> float:
        return self.secondary_base_delay * (2**self.secondary_attempt)


class CapturedResult(BaseModel):
    """Final state of ``RetryPolicy.retry_on_result``; never raises."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    succeeded: bool
    attempts: int
    result: Any = None
    exception: Optional[BaseException] = None


def _is_unauthorized_error(error: BaseException) -> bool:
    if isinstance(error, AuthenticationError):
        return True
    # OctoshiftAPIError carries status_code, aiohttp.ClientResponseError carries status
    status = getattr(error, 'status_code', None) or getattr(error, 'status', None)
    return status == 401


class RetryPolicy:
    """Drives classify → wait → resend until a call succeeds or fails for good."""

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        logger: Optional[OctoLogger] = None,
        gate: Optional[RateLimitGate] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize retry policy.

        Args:
            settings: Retry delays and bounds
            logger: Logger collaborator for retry and wait messages
            gate: Primary rate limit gate shared by the owning client
            sleep: Awaitable sleep, replaced in tests
            clock: Unix time source, replaced in tests
        """
        self.settings = settings or ClientSettings()
        self.logger = logger
        self.sleep = sleep
        self.clock = clock
        self.gate = gate or RateLimitGate(logger=logger, sleep=sleep, clock=clock)

    async def execute(
        self, send_once: SendOnce, inspect: Optional[Inspector] = None
    ) -> AttemptOutcome:
        """Run ``send_once`` until it yields a usable outcome.

        Args:
            send_once: Coroutine factory performing one physical send
            inspect: Optional second-stage check of a successful body (GraphQL)

        Returns:
            The successful attempt

        Raises:
            OctoshiftAPIError: Terminal failure or exhausted retries
        """
        state = RetryState(
            max_secondary_attempts=self.settings.secondary_rate_limit_max_retries,
            secondary_base_delay=self.settings.secondary_rate_limit_base_delay,
        )

        while True:
            await self.gate.wait()
            outcome = await send_once()
            state.attempt += 1

            kind = classify(outcome)
            inspection = None

            if kind is FailureKind.PRIMARY_RATE_LIMITED:
                self.gate.defer(outcome.rate_limit.delay_seconds(self.clock()))
                if not outcome.is_success:
                    self._consume_retry(state, outcome, kind)
                    continue
                kind = (
                    FailureKind.MALFORMED_RESPONSE
                    if outcome.parse_error is not None
                    else FailureKind.SUCCESS
                )

            if kind is FailureKind.SUCCESS and inspect is not None:
                inspection = inspect(outcome)
                kind = inspection.kind

            if kind is FailureKind.SUCCESS:
                return outcome

            if kind in (
                FailureKind.TRANSIENT_SERVER_ERROR,
                FailureKind.GRAPHQL_SERVICE_ERROR,
            ):
                self._consume_retry(state, outcome, kind, inspection)
                self._log_transient(outcome, inspection)
                if self.settings.retry_delay > 0:
                    await self.sleep(self.settings.retry_delay)
                continue

            if kind is FailureKind.SECONDARY_RATE_LIMITED:
                await self._wait_secondary(state, outcome)
                continue

            raise self._terminal_error(kind, outcome, inspection)

    async def retry(self, func: Operation) -> T:
        """Re-run a whole operation while it raises.

        Waits ``operation_retry_interval * n`` before the n-th retry. A 401
        is never retried and surfaces as ``AuthenticationError``.

        Args:
            func: Coroutine factory for the operation

        Returns:
            Result of the first run that does not raise

        Raises:
            AuthenticationError: The operation failed with HTTP 401
            Exception: The last error once retries are used up
        """
        retries = 0
        while True:
            try:
                return await func()
            except Exception as e:
                if self.logger:
                    self.logger.log_verbose(repr(e))
                if _is_unauthorized_error(e):
                    raise AuthenticationError(UNAUTHORIZED_MESSAGE, status_code=401) from e
                if retries >= self.settings.operation_max_retries:
                    raise
                retries += 1
                if self.logger:
                    self.logger.log_verbose('Retrying...')
                await self._sleep_operation(retries)

    async def retry_on_result(
        self,
        func: Operation,
        predicate: Callable[[Any], bool],
        message: Optional[str] = None,
    ) -> CapturedResult:
        """Re-run an operation while ``predicate`` holds for its result.

        Used for polling. Errors raised by ``func`` are captured, not retried.

        Args:
            func: Coroutine factory for the operation
            predicate: True when the result calls for another run
            message: Verbose log line written before each retry

        Returns:
            The captured final result
        """
        attempts = 0
        while True:
            try:
                result = await func()
            except Exception as e:
                return CapturedResult(succeeded=False, attempts=attempts + 1, exception=e)
            attempts += 1

            if not predicate(result):
                return CapturedResult(succeeded=True, attempts=attempts, result=result)
            if attempts > self.settings.operation_max_retries:
                return CapturedResult(succeeded=False, attempts=attempts, result=result)

            if self.logger:
                self.logger.log_verbose(message or 'Retrying...')
            await self._sleep_operation(attempts)

    async def _sleep_operation(self, retry_number: int) -> None:
        delay = self.settings.operation_retry_interval * retry_number
        if delay > 0:
            await self.sleep(delay)

    def _consume_retry(
        self,
        state: RetryState,
        outcome: AttemptOutcome,
        kind: FailureKind,
        inspection: Optional[GraphQLInspection] = None,
    ) -> None:
        if state.retries >= self.settings.max_retries:
            raise self._exhausted_error(state, outcome, kind, inspection)
        state.retries += 1

    async def _wait_secondary(self, state: RetryState, outcome: AttemptOutcome) -> None:
        retry_after = outcome.rate_limit.retry_after
        if retry_after is not None and retry_after >= 0:
            if state.retries >= self.settings.max_retries:
                raise SecondaryRateLimitExceeded(
                    self.settings.max_retries,
                    status_code=outcome.status_code,
                    response_data=outcome.body,
                )
            state.retries += 1
            self._warn(
                f'Secondary rate limit detected. Waiting {retry_after} seconds '
                'as requested by the Retry-After header before retrying...'
            )
            await self.sleep(retry_after)
            return

        if state.secondary_attempt >= state.max_secondary_attempts:
            raise SecondaryRateLimitExceeded(
                state.max_secondary_attempts,
                status_code=outcome.status_code,
                response_data=outcome.body,
            )

        delay = state.next_secondary_delay()
        self._warn(
            f'Secondary rate limit detected (attempt {state.secondary_attempt + 1}/'
            f'{state.max_secondary_attempts}). Waiting {delay:g} seconds before retrying...'
        )
        state.secondary_attempt += 1
        await self.sleep(delay)

    def _log_transient(
        self, outcome: AttemptOutcome, inspection: Optional[GraphQLInspection]
    ) -> None:
        if not self.logger:
            return
        if inspection is not None:
            self.logger.log_verbose(
                f'GraphQL service error: {inspection.message}, retrying...'
            )
        elif outcome.is_transport_failure:
            self.logger.log_verbose(f'Call failed: {outcome.exception!r}, retrying...')
        else:
            self.logger.log_verbose(
                f'Call failed with HTTP {outcome.status_code}, retrying...'
            )

    def _warn(self, message: str) -> None:
        if self.logger:
            self.logger.log_warning(message)

    def _exhausted_error(
        self,
        state: RetryState,
        outcome: AttemptOutcome,
        kind: FailureKind,
        inspection: Optional[GraphQLInspection],
    ) -> OctoshiftAPIError:
        if inspection is not None:
            return GraphQLServiceUnavailable(
                f'GraphQL service unavailable after {state.attempt} attempts: '
                f'{inspection.message}',
                attempts=state.attempt,
                status_code=outcome.status_code,
                response_data=outcome.data,
            )
        if outcome.is_transport_failure:
            detail = repr(outcome.exception)
        else:
            detail = f'HTTP {outcome.status_code}: {outcome.body}'
        if kind is FailureKind.PRIMARY_RATE_LIMITED:
            detail = f'rate limit still exhausted ({detail})'
        return TransientNetworkError(
            f'{outcome.method} {outcome.url} failed after {state.attempt} attempts: {detail}',
            attempts=state.attempt,
            cause=outcome.exception,
            status_code=outcome.status_code,
            response_data=outcome.body or None,
        )

    def _terminal_error(
        self,
        kind: FailureKind,
        outcome: AttemptOutcome,
        inspection: Optional[GraphQLInspection],
    ) -> OctoshiftAPIError:
        if kind is FailureKind.AUTH_FAILURE:
            return AuthenticationError(
                UNAUTHORIZED_MESSAGE,
                status_code=outcome.status_code,
                response_data=outcome.body,
            )

        if kind is FailureKind.MALFORMED_RESPONSE:
            error = MalformedResponseError(
                str(outcome.parse_error),
                status_code=outcome.status_code,
                response_data=outcome.body,
            )
            error.__cause__ = outcome.parse_error
            return error

        if kind is FailureKind.GRAPHQL_APPLICATION_ERROR:
            return GraphQLApplicationError(
                inspection.message,
                errors=[entry.model_dump(exclude_none=True) for entry in inspection.errors],
                status_code=outcome.status_code,
                response_data=outcome.data,
            )

        if (
            outcome.expected_status is not None
            and outcome.status_code is not None
            and 200 <= outcome.status_code < 300
        ):
            message = (
                f'Expected status code {outcome.expected_status} '
                f'but got {outcome.status_code}'
            )
        else:
            message = f'API request failed with HTTP {outcome.status_code}: {outcome.body}'

        return ClientRequestError(
            message, status_code=outcome.status_code, response_data=outcome.body
        )
