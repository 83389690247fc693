"""Process-wide loading of the external conferencing library.

:class:`ScriptLoadCoordinator` makes sure the library is fetched at most once
at a time no matter how many embeds ask for it. Concurrent callers share one
future; failed attempts are retried on the scheduler with the backoff chosen
by :class:`~telebridge.embed.retry.RetryPolicy`.

State transitions::

    IDLE --ensure_loaded--> LOADING --load+verify--> LOADED
    LOADING --failure, retries left--> LOADING | RATE_LIMITED (waiting)
    LOADING --failure, exhausted--> ERROR | RATE_LIMITED (cooldown)
    RATE_LIMITED --cooldown elapsed--> IDLE
    ERROR --ensure_loaded / reset--> LOADING / IDLE

All state changes happen synchronously inside tag listeners and scheduler
callbacks. Callbacks carry the cycle number they were created for and bail
out when a newer cycle has started.
"""

from __future__ import annotations

import asyncio
import logging

from telebridge.config.settings import settings
from telebridge.embed.deployment import DeploymentKind
from telebridge.embed.errors import (
    EmbedError,
    RateLimitExhausted,
    RateLimitedError,
    ScriptLoadError,
)
from telebridge.embed.host import ExternalLibrary, HttpScriptHost, ScriptHost, ScriptTag
from telebridge.embed.retry import LoadAttempt, LoadState, RetryPolicy
from telebridge.embed.scheduler import AsyncioScheduler, CancelToken, Scheduler

logger = logging.getLogger(__name__)

SETTLE_SECONDS = 0.1


def _consume_exception(future: asyncio.Future) -> None:
    # Every waiter may have gone away; don't let asyncio report the error.
    if not future.cancelled():
        future.exception()


class ScriptLoadCoordinator:
    """Loads the external library once and shares the outcome.

    Parameters
    ----------
    host:
        Where the library is loaded.
    scheduler:
        Timer source for settle delays, retries and the cooldown.
    policy:
        Backoff and classification rules.
    cooldown_seconds:
        How long the coordinator refuses fresh loads after exhausting
        retries under rate limiting.
    settle_seconds:
        Delay between a successful fetch and checking that the library
        actually materialized.
    """

    def __init__(
        self,
        host: ScriptHost,
        scheduler: Scheduler | None = None,
        policy: RetryPolicy | None = None,
        *,
        cooldown_seconds: float | None = None,
        settle_seconds: float = SETTLE_SECONDS,
    ) -> None:
        self._host = host
        self._scheduler = scheduler or AsyncioScheduler()
        self._policy = policy or RetryPolicy.from_settings()
        self._cooldown_seconds = (
            cooldown_seconds
            if cooldown_seconds is not None
            else settings.SCRIPT_RATE_LIMIT_COOLDOWN_SECONDS
        )
        self._settle_seconds = settle_seconds

        self._state = LoadState.IDLE
        self._attempt = 0
        self._cycle = 0
        self._cycle_rate_limited = False
        self._pending: asyncio.Future | None = None
        self._retry_token: CancelToken | None = None
        self._cooldown_until: float | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def is_rate_limited(self) -> bool:
        return self._state is LoadState.RATE_LIMITED

    @property
    def cooldown_remaining(self) -> float:
        """Seconds until the rate-limit cooldown ends; 0.0 outside a cooldown."""
        if self._cooldown_until is None:
            return 0.0
        return max(self._cooldown_until - self._scheduler.now(), 0.0)

    @property
    def host(self) -> ScriptHost:
        return self._host

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ensure_loaded(
        self,
        url: str,
        kind: DeploymentKind = DeploymentKind.FREE,
    ) -> ExternalLibrary:
        """Return the library, loading it from *url* if necessary.

        Raises
        ------
        RateLimitedError
            The cooldown after rate-limit exhaustion is still running.
        RateLimitExhausted, LoadExhausted
            All attempts of the shared load failed.
        """
        library = self._host.library()
        if library is not None:
            self._mark_loaded(library)
            return library

        if self._state is LoadState.RATE_LIMITED:
            raise RateLimitedError(
                f"rate-limited; cooldown ends in {self.cooldown_remaining:.1f}s"
                if self._cooldown_until is not None
                else "rate-limited; waiting on backoff"
            )

        pending = self._pending
        if pending is None or pending.done():
            pending = self._begin_cycle(url, kind)

        # Shielded so a cancelled caller never cancels the shared load.
        return await asyncio.shield(pending)

    def reset(self) -> bool:
        """Clear a generic failure so the next call starts fresh.

        Returns False while rate limited; the cooldown has to run out first.
        """
        if self._state is LoadState.RATE_LIMITED:
            return False
        if self._state is LoadState.ERROR:
            self._state = LoadState.IDLE
            self._attempt = 0
        return True

    # ------------------------------------------------------------------
    # Cycle handling
    # ------------------------------------------------------------------

    def _begin_cycle(self, url: str, kind: DeploymentKind) -> asyncio.Future:
        self._cycle += 1
        self._attempt = 0
        self._cycle_rate_limited = False
        pending = asyncio.get_running_loop().create_future()
        pending.add_done_callback(_consume_exception)
        self._pending = pending
        self._start_attempt(url, kind, self._cycle)
        return pending

    def _start_attempt(self, url: str, kind: DeploymentKind, cycle: int) -> None:
        self._state = LoadState.LOADING
        tag = self._host.find_tag(url)
        if tag is None:
            tag = self._host.insert_tag(url)
            logger.debug("Loading %s (attempt %d)", url, self._attempt + 1)
        else:
            logger.debug("Joining in-flight load of %s", url)

        tag.on_load(lambda: self._on_load(tag, kind, cycle))
        tag.on_error(lambda error: self._on_error(tag, error, kind, cycle))

    def _is_current(self, cycle: int) -> bool:
        return (
            cycle == self._cycle
            and self._pending is not None
            and not self._pending.done()
        )

    def _on_load(self, tag: ScriptTag, kind: DeploymentKind, cycle: int) -> None:
        if not self._is_current(cycle):
            return
        self._scheduler.schedule(self._settle_seconds, lambda: self._verify(tag, kind, cycle))

    def _verify(self, tag: ScriptTag, kind: DeploymentKind, cycle: int) -> None:
        if not self._is_current(cycle):
            return
        library = self._host.library()
        if library is None:
            self._on_error(
                tag,
                ScriptLoadError("library not available after script load"),
                kind,
                cycle,
            )
            return
        self._mark_loaded(library)

    def _on_error(
        self,
        tag: ScriptTag,
        error: ScriptLoadError,
        kind: DeploymentKind,
        cycle: int,
    ) -> None:
        if not self._is_current(cycle):
            return
        tag.remove()

        prior = LoadState.RATE_LIMITED if self._cycle_rate_limited else self._state
        rate_limited = self._policy.classify(self._attempt, kind, prior, error.status_code)
        self._cycle_rate_limited = self._cycle_rate_limited or rate_limited

        plan = self._policy.next_attempt(self._attempt + 1, rate_limited)
        if isinstance(plan, LoadAttempt):
            self._state = LoadState.RATE_LIMITED if rate_limited else LoadState.LOADING
            logger.warning(
                "External library load %s (attempt %d/%d): %s; retrying in %.1fs",
                "rate-limited" if rate_limited else "failed",
                self._attempt + 1,
                self._policy.max_retries + 1,
                error.detail,
                plan.delay,
            )
            self._retry_token = self._scheduler.schedule(
                plan.delay, lambda: self._retry(tag.url, kind, cycle, plan.attempt_index)
            )
            return

        self._fail(plan)

    def _retry(self, url: str, kind: DeploymentKind, cycle: int, attempt_index: int) -> None:
        self._retry_token = None
        if not self._is_current(cycle):
            return
        library = self._host.library()
        if library is not None:
            self._mark_loaded(library)
            return
        self._attempt = attempt_index
        self._start_attempt(url, kind, cycle)

    def _mark_loaded(self, library: ExternalLibrary) -> None:
        self._state = LoadState.LOADED
        self._attempt = 0
        self._cooldown_until = None
        if self._retry_token is not None:
            self._retry_token.cancel()
            self._retry_token = None
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.set_result(library)

    def _fail(self, error: EmbedError) -> None:
        rate_limited = isinstance(error, RateLimitExhausted)
        self._state = LoadState.RATE_LIMITED if rate_limited else LoadState.ERROR
        logger.error(
            "External library could not be loaded after %d attempts (%s)",
            self._attempt + 1,
            self._state.value,
        )

        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.set_exception(error)

        if rate_limited:
            cycle = self._cycle
            self._cooldown_until = self._scheduler.now() + self._cooldown_seconds
            logger.warning(
                "Rate-limit cooldown of %.0fs started; loads refused until t=%.1f",
                self._cooldown_seconds,
                self._cooldown_until,
            )
            self._scheduler.schedule(self._cooldown_seconds, lambda: self._end_cooldown(cycle))

    def _end_cooldown(self, cycle: int) -> None:
        if cycle != self._cycle or self._state is not LoadState.RATE_LIMITED:
            return
        self._cooldown_until = None
        logger.info("Rate-limit cooldown elapsed; external library loads allowed again")
        self._state = LoadState.IDLE
        self._attempt = 0


_coordinator: ScriptLoadCoordinator | None = None


def get_coordinator() -> ScriptLoadCoordinator:
    """The process-wide coordinator, backed by :class:`HttpScriptHost`."""
    global _coordinator
    if _coordinator is None:
        _coordinator = ScriptLoadCoordinator(
            HttpScriptHost(timeout=settings.SCRIPT_FETCH_TIMEOUT_SECONDS)
        )
    return _coordinator


async def close_coordinator() -> None:
    """Release the process-wide coordinator's HTTP client, if one was created."""
    global _coordinator
    coordinator, _coordinator = _coordinator, None
    if coordinator is not None and isinstance(coordinator.host, HttpScriptHost):
        await coordinator.host.aclose()
