"""Embed bootstrap for the conferencing widget.

Usage::

    coordinator = get_coordinator()
    manager = EmbedLifecycleManager(coordinator, callbacks=EmbedCallbacks(on_ready=show))
    await manager.initialize("session-42", "Dr. Lee", user_id="u-1",
                             container=HostContainer("video-root"))
    ...
    manager.dispose()
"""

from .credentials import (
    CredentialFeatures,
    CredentialIssuer,
    CredentialOptions,
    RemoteCredentialClient,
    close_remote_clients,
    get_remote_client,
)
from .deployment import (
    DeploymentConfig,
    DeploymentKind,
    RoomIdentity,
    classify_domain,
    resolve_deployment,
)
from .errors import (
    ContainerMissingError,
    CredentialConfigError,
    EmbedError,
    LoadExhausted,
    RateLimitedError,
    RateLimitExhausted,
    ScriptLoadError,
    WidgetRuntimeWarning,
)
from .events import ErrorCategory, EventRegistry, WidgetEvent, classify_widget_error
from .host import ExternalLibrary, HttpScriptHost, InMemoryScriptHost, ScriptHost
from .lifecycle import EmbedCallbacks, EmbedLifecycleManager, EmbedSession, EmbedState
from .loader import ScriptLoadCoordinator, close_coordinator, get_coordinator
from .readiness import ContainerSurfaceProbe, HostContainer, ManualReadinessProbe
from .retry import LoadAttempt, LoadState, RetryPolicy
from .scheduler import AsyncioScheduler, ManualScheduler, Scheduler
from .widget import ExternalApiWidget, SessionKind, WidgetOptions, generate_embed_code

__all__ = [
    "CredentialFeatures",
    "CredentialIssuer",
    "CredentialOptions",
    "RemoteCredentialClient",
    "close_remote_clients",
    "get_remote_client",
    "DeploymentConfig",
    "DeploymentKind",
    "RoomIdentity",
    "classify_domain",
    "resolve_deployment",
    "ContainerMissingError",
    "CredentialConfigError",
    "EmbedError",
    "LoadExhausted",
    "RateLimitedError",
    "RateLimitExhausted",
    "ScriptLoadError",
    "WidgetRuntimeWarning",
    "ErrorCategory",
    "EventRegistry",
    "WidgetEvent",
    "classify_widget_error",
    "ExternalLibrary",
    "HttpScriptHost",
    "InMemoryScriptHost",
    "ScriptHost",
    "EmbedCallbacks",
    "EmbedLifecycleManager",
    "EmbedSession",
    "EmbedState",
    "ScriptLoadCoordinator",
    "close_coordinator",
    "get_coordinator",
    "ContainerSurfaceProbe",
    "HostContainer",
    "ManualReadinessProbe",
    "LoadAttempt",
    "LoadState",
    "RetryPolicy",
    "AsyncioScheduler",
    "ManualScheduler",
    "Scheduler",
    "ExternalApiWidget",
    "SessionKind",
    "WidgetOptions",
    "generate_embed_code",
]
