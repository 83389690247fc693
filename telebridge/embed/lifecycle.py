"""Per-embed lifecycle: configure, authenticate, load, instantiate, monitor.

State machine::

    UNINITIALIZED -> INITIALIZING -> READY -> DISPOSED
                          |
                          +-> FAILED -> INITIALIZING (retry)

A manager owns at most one :class:`EmbedSession`. Moving to a different room
disposes the current session before anything is created for the new room,
and an initialization that was overtaken by a newer one never instantiates
its widget (each run carries a generation number).

Readiness is a race between three signals: the widget surface appearing in
the host container (then a short settle), the conference-joined event, and
a fallback timer so the loading overlay can never hang. The first one wins;
the others are ignored.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from telebridge.config.settings import settings
from telebridge.embed.credentials import (
    CredentialFeatures,
    CredentialIssuer,
    CredentialOptions,
    RemoteCredentialClient,
    get_remote_client,
)
from telebridge.embed.deployment import DeploymentConfig, RoomIdentity, resolve_deployment
from telebridge.embed.errors import (
    RETRY_REFUSED_MESSAGE,
    ContainerMissingError,
    CredentialConfigError,
    EmbedError,
    ScriptLoadError,
    WidgetRuntimeWarning,
)
from telebridge.embed.events import (
    ErrorCategory,
    EventRegistry,
    WidgetEvent,
    classify_widget_error,
    error_message,
)
from telebridge.embed.host import ExternalLibrary
from telebridge.embed.loader import ScriptLoadCoordinator
from telebridge.embed.readiness import ContainerSurfaceProbe, HostContainer, ReadinessProbe
from telebridge.embed.scheduler import AsyncioScheduler, CancelToken, Scheduler
from telebridge.embed.widget import (
    ExternalApiWidget,
    ExternalApiWidgetFactory,
    SessionKind,
    WidgetFactory,
    WidgetOptions,
)

logger = logging.getLogger(__name__)

SURFACE_RECHECK_SECONDS = 0.1
SURFACE_SETTLE_SECONDS = 0.5
MAX_SUPPRESSED_WARNINGS = 50


class EmbedState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"
    DISPOSED = "disposed"


@dataclass
class EmbedCallbacks:
    """Caller hooks. All optional."""

    on_ready: Callable[[], None] | None = None
    on_participant_joined: Callable[[Any], None] | None = None
    on_participant_left: Callable[[Any], None] | None = None
    on_ended: Callable[[], None] | None = None
    on_error: Callable[[str], None] | None = None


@dataclass
class EmbedSession:
    room: RoomIdentity
    deployment: DeploymentConfig
    handle: ExternalApiWidget
    credential: str | None = None
    is_disposed: bool = False


@dataclass
class _InitParams:
    room_name: str
    display_name: str
    user_id: str | None
    is_moderator: bool
    session_kind: SessionKind
    email: str | None
    avatar: str | None
    container: HostContainer | None
    overrides: dict[str, Any] | None


def _default_credentials(deployment: DeploymentConfig) -> CredentialIssuer | RemoteCredentialClient:
    if settings.CREDENTIAL_ENDPOINT:
        return get_remote_client(settings.CREDENTIAL_ENDPOINT)
    return CredentialIssuer(deployment=deployment)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class EmbedLifecycleManager:
    """Controls one embedded conferencing widget.

    Parameters
    ----------
    coordinator:
        Shared library loader.
    widget_factory:
        Creates widget handles. Defaults to :class:`ExternalApiWidgetFactory`.
    credentials:
        ``CredentialIssuer`` or ``RemoteCredentialClient``; anything with
        ``is_configured()`` and ``issue(options)``, sync or async. ``None``
        disables credentials entirely.
    deployment:
        Resolved deployment. Defaults to :func:`resolve_deployment`.
    scheduler:
        Timer source for the readiness checks.
    callbacks:
        Caller hooks.
    readiness_probe:
        Surface probe. Defaults to a :class:`ContainerSurfaceProbe` on the
        container passed to :meth:`initialize`.
    """

    def __init__(
        self,
        coordinator: ScriptLoadCoordinator,
        widget_factory: WidgetFactory | None = None,
        credentials: Any = ...,
        deployment: DeploymentConfig | None = None,
        scheduler: Scheduler | None = None,
        callbacks: EmbedCallbacks | None = None,
        readiness_probe: ReadinessProbe | None = None,
        *,
        fallback_seconds: float | None = None,
        token_ttl_seconds: int | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._factory = widget_factory or ExternalApiWidgetFactory()
        self._deployment = deployment or resolve_deployment()
        self._credentials = (
            _default_credentials(self._deployment) if credentials is ... else credentials
        )
        self._scheduler = scheduler or AsyncioScheduler()
        self._callbacks = callbacks or EmbedCallbacks()
        self._probe = readiness_probe
        self._fallback_seconds = (
            fallback_seconds if fallback_seconds is not None else settings.READINESS_FALLBACK_SECONDS
        )
        self._token_ttl = token_ttl_seconds or settings.JITSI_TOKEN_TTL_SECONDS

        self._state = EmbedState.UNINITIALIZED
        self._room: RoomIdentity | None = None
        self._session: EmbedSession | None = None
        self._registry: EventRegistry | None = None
        self._timers: list[CancelToken] = []
        self._generation = 0
        self._last_params: _InitParams | None = None
        self.error: str | None = None
        self.suppressed_warnings: list[WidgetRuntimeWarning] = []

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> EmbedState:
        return self._state

    @property
    def session(self) -> EmbedSession | None:
        return self._session

    @property
    def room(self) -> RoomIdentity | None:
        return self._room

    @property
    def deployment(self) -> DeploymentConfig:
        return self._deployment

    @property
    def registry(self) -> EventRegistry | None:
        return self._registry

    @property
    def credentials(self) -> Any:
        return self._credentials

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def initialize(
        self,
        room_name: str,
        display_name: str,
        user_id: str | None = None,
        is_moderator: bool = False,
        session_kind: SessionKind = SessionKind.VIDEO,
        *,
        email: str | None = None,
        avatar: str | None = None,
        container: HostContainer | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> EmbedState:
        """Bring up a widget for *room_name*.

        Returns the state after this call's own work is done: usually
        INITIALIZING (readiness still pending), FAILED, or unchanged when
        the call was a duplicate for the room already being set up.
        """
        if self._state is EmbedState.DISPOSED:
            logger.warning("initialize() called on a disposed embed; ignoring")
            return self._state

        room = self._deployment.room_identity(room_name)
        if room == self._room and self._state in (EmbedState.INITIALIZING, EmbedState.READY):
            logger.debug("Embed for %s already %s", room.formatted_name, self._state.value)
            return self._state

        if self._session is not None and self._session.room != room:
            logger.info(
                "Room changed from %s to %s; disposing previous session",
                self._session.room.formatted_name,
                room.formatted_name,
            )
        self._cancel_timers()
        self._dispose_session()

        self._generation += 1
        generation = self._generation
        self._room = room
        self._state = EmbedState.INITIALIZING
        self.error = None
        params = _InitParams(
            room_name=room_name,
            display_name=display_name,
            user_id=user_id,
            is_moderator=is_moderator,
            session_kind=session_kind,
            email=email,
            avatar=avatar,
            container=container,
            overrides=overrides,
        )
        self._last_params = params

        credential = await self._fetch_credential(params, room)
        if not self._is_current(generation):
            return self._state

        try:
            library = await self._coordinator.ensure_loaded(
                self._deployment.external_library_url(),
                self._deployment.kind,
            )
        except EmbedError as exc:
            if self._is_current(generation):
                self._fail(exc)
            return self._state
        except Exception as exc:  # noqa: BLE001
            if self._is_current(generation):
                logger.exception("Unexpected error loading the external library")
                self._fail(ScriptLoadError(f"unexpected load error: {exc!r}"))
            return self._state

        if not self._is_current(generation):
            return self._state

        try:
            self._instantiate(library, room, params, credential, generation)
        except ContainerMissingError as exc:
            self._fail(exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Widget creation failed for %s", room.formatted_name)
            self._cancel_timers()
            self._dispose_session()
            self._fail(EmbedError(f"widget creation failed: {exc!r}"))
        return self._state

    async def retry(self) -> EmbedState:
        """Re-run the last initialization from scratch.

        Refused while the shared loader is still rate limited.
        """
        if self._last_params is None:
            raise RuntimeError("retry() called before initialize()")
        if self._state is EmbedState.DISPOSED:
            return self._state
        if self._coordinator.is_rate_limited:
            self.error = RETRY_REFUSED_MESSAGE
            self._notify_error(RETRY_REFUSED_MESSAGE)
            return self._state

        self._coordinator.reset()
        self._cancel_timers()
        self._dispose_session()
        self._room = None
        self._state = EmbedState.UNINITIALIZED

        p = self._last_params
        return await self.initialize(
            p.room_name,
            p.display_name,
            p.user_id,
            p.is_moderator,
            p.session_kind,
            email=p.email,
            avatar=p.avatar,
            container=p.container,
            overrides=p.overrides,
        )

    def dispose(self) -> None:
        """Tear down the widget. Safe to call any number of times.

        An in-flight library load is shared with other embeds and keeps
        running; its result is simply ignored here.
        """
        self._generation += 1
        self._cancel_timers()
        self._dispose_session()
        self._room = None
        self._state = EmbedState.DISPOSED

    # ------------------------------------------------------------------
    # Initialization steps
    # ------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._state is EmbedState.INITIALIZING

    async def _fetch_credential(self, params: _InitParams, room: RoomIdentity) -> str | None:
        provider = self._credentials
        if provider is None:
            return None
        try:
            configured = await _resolve(provider.is_configured())
        except Exception as exc:  # noqa: BLE001
            logger.warning("Credential provider check failed for %s: %s", room.formatted_name, exc)
            return None
        if not configured:
            return None
        if not params.user_id:
            logger.warning("No user id provided; joining %s without a credential", room.formatted_name)
            return None

        options = CredentialOptions(
            user_id=params.user_id,
            user_name=params.display_name,
            room_name=room.formatted_name,
            user_email=params.email,
            user_avatar=params.avatar,
            is_moderator=params.is_moderator,
            ttl_seconds=self._token_ttl,
            features=CredentialFeatures(moderation=params.is_moderator),
        )
        try:
            return await _resolve(provider.issue(options))
        except CredentialConfigError as exc:
            logger.warning("Could not issue credential for %s: %s", room.formatted_name, exc.detail)
            return None
        except Exception as exc:  # noqa: BLE001
            logger.warning("Credential provider failed for %s: %r", room.formatted_name, exc)
            return None

    def _instantiate(
        self,
        library: ExternalLibrary,
        room: RoomIdentity,
        params: _InitParams,
        credential: str | None,
        generation: int,
    ) -> None:
        container = params.container
        if container is None or not container.attached:
            raise ContainerMissingError("host container not found")

        options = WidgetOptions.build(
            room_name=room.formatted_name,
            display_name=params.display_name,
            container=container,
            session_kind=params.session_kind,
            email=params.email,
            jwt=credential,
            overrides=params.overrides,
        )
        widget = self._factory.create(library, self._deployment.domain, options, container)
        self._session = EmbedSession(
            room=room,
            deployment=self._deployment,
            handle=widget,
            credential=credential,
        )
        self._registry = self._build_registry(generation)
        for event in WidgetEvent:
            widget.on(event.value, self._forwarder(event, generation))

        logger.info(
            "Widget created for %s (%s, %s)",
            room.formatted_name,
            self._deployment.kind.value,
            "with credential" if credential else "anonymous",
        )
        self._start_readiness(self._probe or ContainerSurfaceProbe(container), generation)

    def _build_registry(self, generation: int) -> EventRegistry:
        registry = EventRegistry()
        cb = self._callbacks
        registry.on(WidgetEvent.CONFERENCE_JOINED, lambda _: self._mark_ready(generation, "conference joined"))
        registry.on(WidgetEvent.PARTICIPANT_JOINED, lambda p: cb.on_participant_joined and cb.on_participant_joined(p))
        registry.on(WidgetEvent.PARTICIPANT_LEFT, lambda p: cb.on_participant_left and cb.on_participant_left(p))
        registry.on(WidgetEvent.READY_TO_CLOSE, lambda _: cb.on_ended and cb.on_ended())
        registry.on(WidgetEvent.CONFERENCE_LEFT, lambda _: cb.on_ended and cb.on_ended())
        registry.on(WidgetEvent.ERROR, self._handle_widget_error)
        return registry

    def _forwarder(self, event: WidgetEvent, generation: int) -> Callable[[Any], None]:
        def forward(payload: Any) -> None:
            # Late events from a disposed or replaced widget are dropped.
            if generation != self._generation or self._registry is None:
                return
            self._registry.dispatch(event, payload)

        return forward

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def _start_readiness(self, probe: ReadinessProbe, generation: int) -> None:
        def check_surface() -> None:
            if not self._is_current(generation):
                return
            if probe.surface_present():
                self._schedule(SURFACE_SETTLE_SECONDS, lambda: self._mark_ready(generation, "surface"))
            else:
                self._schedule(SURFACE_RECHECK_SECONDS, recheck_surface)

        def recheck_surface() -> None:
            if self._is_current(generation) and probe.surface_present():
                self._schedule(SURFACE_SETTLE_SECONDS, lambda: self._mark_ready(generation, "surface"))

        check_surface()
        self._schedule(self._fallback_seconds, lambda: self._mark_ready(generation, "fallback timeout"))

    def _mark_ready(self, generation: int, signal: str) -> None:
        if not self._is_current(generation):
            return
        self._state = EmbedState.READY
        self._cancel_timers()
        logger.debug("Embed ready for %s via %s", self._room.formatted_name if self._room else "?", signal)
        if self._callbacks.on_ready:
            self._callbacks.on_ready()

    # ------------------------------------------------------------------
    # Errors and teardown
    # ------------------------------------------------------------------

    def _handle_widget_error(self, payload: Any) -> None:
        message = error_message(payload)
        if classify_widget_error(payload) is ErrorCategory.EXPECTED:
            self.suppressed_warnings.append(WidgetRuntimeWarning(message))
            del self.suppressed_warnings[:-MAX_SUPPRESSED_WARNINGS]
            logger.debug("Suppressed widget warning: %s", message)
            return
        logger.warning("Widget reported an error: %s", message)

    def _fail(self, exc: EmbedError) -> None:
        self._state = EmbedState.FAILED
        self.error = exc.user_message
        self._cancel_timers()
        logger.error(
            "Embed initialization failed for %s: %s",
            self._room.formatted_name if self._room else "?",
            exc.detail,
        )
        self._notify_error(exc.user_message)

    def _notify_error(self, message: str) -> None:
        if self._callbacks.on_error:
            self._callbacks.on_error(message)

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        self._timers.append(self._scheduler.schedule(delay, callback))

    def _cancel_timers(self) -> None:
        timers, self._timers = self._timers, []
        for token in timers:
            token.cancel()

    def _dispose_session(self) -> None:
        registry, self._registry = self._registry, None
        if registry is not None:
            registry.clear()

        session, self._session = self._session, None
        if session is None or session.is_disposed:
            return
        session.is_disposed = True
        try:
            session.handle.dispose()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Error disposing widget for %s: %s", session.room.formatted_name, exc)
