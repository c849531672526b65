"""Deferred waiting for primary rate limits."""

import asyncio
import time
from typing import Awaitable, Callable, Optional

from ..utils.logging import OctoLogger

DEFAULT_WARNING = 'Rate limit exceeded. Waiting {delay} seconds before continuing'


class RateLimitGate:
    """Holds back the next request after a response exhausted the quota.

    A primary rate limit is reported on a response that still carries a
    usable body, so the wait applies to whatever request comes next rather
    than to the one that observed it. Callers waiting concurrently each
    sleep until the same resume time without blocking one another.
    """

    def __init__(
        self,
        logger: Optional[OctoLogger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        warning_template: str = DEFAULT_WARNING,
    ):
        """Initialize rate limit gate.

        Args:
            logger: Logger collaborator for the wait warning
            sleep: Awaitable sleep, replaced in tests
            clock: Unix time source, replaced in tests
            warning_template: Message logged before waiting, formatted with ``delay``
        """
        self.logger = logger
        self.sleep = sleep
        self.clock = clock
        self.warning_template = warning_template
        self._resume_at: Optional[float] = None

    def defer(self, delay_seconds: float) -> None:
        """Make the next request wait ``delay_seconds`` from now."""
        if delay_seconds <= 0:
            return
        resume_at = self.clock() + delay_seconds
        if self._resume_at is None or resume_at > self._resume_at:
            self._resume_at = resume_at

    @property
    def pending_delay(self) -> float:
        if self._resume_at is None:
            return 0.0
        return max(0.0, self._resume_at - self.clock())

    async def wait(self) -> None:
        """Sleep until the deferred delay has elapsed, if one is pending."""
        resume_at = self._resume_at
        if resume_at is None:
            return

        delay = resume_at - self.clock()
        if delay <= 0:
            self._clear(resume_at)
            return

        if self.logger:
            self.logger.log_warning(self.warning_template.format(delay=_format_seconds(delay)))
        await self.sleep(delay)
        self._clear(resume_at)

    def _clear(self, resume_at: float) -> None:
        # A later defer() while we slept must survive
        if self._resume_at == resume_at:
            self._resume_at = None


def _format_seconds(delay: float) -> str:
    return str(int(delay)) if float(delay).is_integer() else f'{delay:.1f}'
