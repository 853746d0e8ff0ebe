"""Bounded-retry startup for the search engine.

The first run may download the embedding model, so transient network failures
are expected. Attempts are strictly sequential with a fixed delay between them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from .errors import InitializationError

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait between tries.

    Attributes:
        max_attempts: Total attempts including the first
        delay: Fixed pause in seconds after each failed attempt but the last
    """

    max_attempts: int = 3
    delay: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must be non-negative, got {self.delay}")


class InitState(Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    READY = "ready"
    FAILED = "failed"


class RetryingInitializer:
    """Drive an initialization coroutine from pending to ready, or to failed.

    Args:
        initialize: Zero-argument coroutine function, e.g. `engine.initialize`
        policy: Attempt budget and delay
        sleep: Awaitable used for the delay; tests inject a fake clock here
    """

    def __init__(
        self,
        initialize: Callable[[], Awaitable[None]],
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._initialize = initialize
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self.state = InitState.PENDING
        self.attempt = 0

    async def run(self) -> None:
        """Attempt initialization until it succeeds or the budget is spent.

        Raises:
            InitializationError: After `max_attempts` failures, chained to the last one
            RuntimeError: If called again after the initializer has finished
        """
        if self.state is not InitState.PENDING:
            raise RuntimeError(f"Initializer already ran (state={self.state.value})")

        max_attempts = self.policy.max_attempts
        for attempt in range(1, max_attempts + 1):
            self.state = InitState.ATTEMPTING
            self.attempt = attempt
            logger.debug(f"[Init] Attempt {attempt}/{max_attempts}")
            try:
                await self._initialize()
            except Exception as exc:
                if attempt == max_attempts:
                    self.state = InitState.FAILED
                    logger.error(
                        f"[Init] Failed after {max_attempts} attempts. Internet access is "
                        f"required on first run to download the embedding model: {exc}"
                    )
                    raise InitializationError(max_attempts, exc) from exc
                logger.warning(f"[Init] Attempt {attempt} failed, retry in {self.policy.delay}s: {exc}")
                await self._sleep(self.policy.delay)
            else:
                self.state = InitState.READY
                logger.info(f"[Init] Engine ready after {attempt} attempt(s)")
                return


async def init_with_retry(
    initialize: Callable[[], Awaitable[None]],
    max_attempts: int = 3,
    delay: float = 2.0,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """Run `initialize` under a fixed-delay retry policy."""
    await RetryingInitializer(initialize, RetryPolicy(max_attempts, delay), sleep).run()
