"""Backoff and failure classification for external library loads.

Pure functions of the attempt index and deployment kind; no shared state.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from telebridge.config.settings import settings
from telebridge.embed.deployment import DeploymentKind
from telebridge.embed.errors import LoadExhausted, RateLimitExhausted

MAX_RETRIES = 4
GENERIC_BASE = 2.0
RATE_BASE = 10.0
MAX_DELAY = 30.0
GENERIC_JITTER = 0.2
RATE_JITTER = 0.3

HTTP_TOO_MANY_REQUESTS = 429


class LoadState(str, Enum):
    """Lifecycle of the external library within one coordinator."""

    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"
    RATE_LIMITED = "rate-limited"


@dataclass(frozen=True)
class LoadAttempt:
    """One scheduled retry: which attempt runs next and after how long."""

    attempt_index: int
    is_rate_limited: bool
    delay: float


@dataclass
class RetryPolicy:
    """Exponential backoff with jitter.

    Rate-limit cycles start from a larger base and carry more jitter so that
    many clients hitting the same limit spread out their retries.
    """

    max_retries: int = MAX_RETRIES
    generic_base: float = GENERIC_BASE
    rate_base: float = RATE_BASE
    max_delay: float = MAX_DELAY
    generic_jitter: float = GENERIC_JITTER
    rate_jitter: float = RATE_JITTER
    random: Callable[[], float] = field(default=random.random, repr=False)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.SCRIPT_MAX_RETRIES,
            generic_base=settings.SCRIPT_RETRY_BASE_SECONDS,
            rate_base=settings.SCRIPT_RATE_LIMIT_BASE_SECONDS,
            max_delay=settings.SCRIPT_MAX_RETRY_DELAY_SECONDS,
        )

    def classify(
        self,
        attempt_index: int,
        kind: DeploymentKind,
        prior_state: LoadState,
        status_code: int | None = None,
    ) -> bool:
        """Decide whether a failed attempt should be treated as rate limiting.

        A script failure on the hosted service cannot be introspected, and
        429 is by far its most common cause there, so every hosted failure
        counts as rate limiting, outages included. Elsewhere a failure is
        generic unless the response said 429 or an earlier attempt of the
        same cycle was already rate limited.
        """
        if kind is DeploymentKind.HOSTED:
            return True
        if status_code == HTTP_TOO_MANY_REQUESTS:
            return True
        if attempt_index == 0:
            return False
        return prior_state is LoadState.RATE_LIMITED

    def compute_delay(self, attempt_index: int, is_rate_limited: bool) -> float:
        base = self.rate_base if is_rate_limited else self.generic_base
        fraction = self.rate_jitter if is_rate_limited else self.generic_jitter
        raw = base * (2 ** attempt_index)
        jitter = raw * fraction * self.random()
        return min(raw + jitter, self.max_delay)

    def next_attempt(
        self,
        attempt_index: int,
        is_rate_limited: bool,
    ) -> LoadAttempt | RateLimitExhausted | LoadExhausted:
        """Plan attempt *attempt_index*, or return the terminal error.

        The delay is computed from the index of the attempt that just
        failed, so the first retry waits ``base * 2**0``.
        """
        if attempt_index > self.max_retries:
            if is_rate_limited:
                return RateLimitExhausted(
                    f"rate limited after {self.max_retries + 1} attempts"
                )
            return LoadExhausted(f"load failed after {self.max_retries + 1} attempts")
        return LoadAttempt(
            attempt_index=attempt_index,
            is_rate_limited=is_rate_limited,
            delay=self.compute_delay(max(attempt_index - 1, 0), is_rate_limited),
        )
