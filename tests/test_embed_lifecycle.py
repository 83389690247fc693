"""Tests for telebridge.embed.lifecycle."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import httpx
import jwt
import pytest

from telebridge.config.settings import settings
from telebridge.embed.credentials import CredentialIssuer, RemoteCredentialClient, close_remote_clients
from telebridge.embed.deployment import DeploymentConfig, DeploymentKind
from telebridge.embed.errors import (
    RATE_LIMITED_MESSAGE,
    RETRY_REFUSED_MESSAGE,
    UNAVAILABLE_MESSAGE,
    CredentialConfigError,
)
from telebridge.embed.host import InMemoryScriptHost
from telebridge.embed.lifecycle import EmbedCallbacks, EmbedLifecycleManager, EmbedState
from telebridge.embed.loader import ScriptLoadCoordinator
from telebridge.embed.readiness import HostContainer, ManualReadinessProbe
from telebridge.embed.retry import RetryPolicy
from telebridge.embed.scheduler import ManualScheduler
from telebridge.embed.widget import ExternalApiWidget, SessionKind, WidgetFactory

FREE = DeploymentConfig(domain="meet.jit.si", app_id=None, kind=DeploymentKind.FREE)
HOSTED = DeploymentConfig(domain="8x8.vc", app_id="abc123", kind=DeploymentKind.HOSTED)
TENANT = "vpaas-magic-cookie-abc123"


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class RecordingWidget(ExternalApiWidget):
    def __init__(self, log, *args, fail_dispose=False):
        super().__init__(*args)
        self.log = log
        self.fail_dispose = fail_dispose
        self.dispose_calls = 0

    def dispose(self):
        self.dispose_calls += 1
        if not self.disposed:
            self.log.append(f"dispose:{self.options.room_name}")
        if self.fail_dispose:
            raise RuntimeError("widget frame already gone")
        super().dispose()


class RecordingFactory(WidgetFactory):
    def __init__(self, fail_dispose=False):
        self.log: list[str] = []
        self.created: list[RecordingWidget] = []
        self.fail_dispose = fail_dispose

    def create(self, library, domain, options, container):
        self.log.append(f"create:{options.room_name}")
        widget = RecordingWidget(self.log, library, domain, options, container, fail_dispose=self.fail_dispose)
        self.created.append(widget)
        return widget


class SyncCredentials:
    def __init__(self, configured=True, token="signed.token.value", error=None):
        self.configured = configured
        self.token = token
        self.error = error
        self.requests = []

    def is_configured(self):
        return self.configured

    def issue(self, options):
        self.requests.append(options)
        if self.error is not None:
            raise self.error
        return self.token


class AsyncCredentials(SyncCredentials):
    async def is_configured(self):
        return self.configured

    async def issue(self, options):
        return super().issue(options)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def host() -> InMemoryScriptHost:
    return InMemoryScriptHost()


@pytest.fixture
def coordinator(host, scheduler) -> ScriptLoadCoordinator:
    return ScriptLoadCoordinator(host, scheduler, RetryPolicy(max_retries=0), cooldown_seconds=60.0)


@pytest.fixture
def factory() -> RecordingFactory:
    return RecordingFactory()


@pytest.fixture
def callbacks() -> EmbedCallbacks:
    return EmbedCallbacks(
        on_ready=MagicMock(),
        on_participant_joined=MagicMock(),
        on_participant_left=MagicMock(),
        on_ended=MagicMock(),
        on_error=MagicMock(),
    )


@pytest.fixture
def container() -> HostContainer:
    return HostContainer("video-root")


def _manager(coordinator, factory, callbacks, scheduler, deployment=FREE, credentials=None, **kwargs):
    return EmbedLifecycleManager(
        coordinator,
        widget_factory=factory,
        credentials=credentials,
        deployment=deployment,
        scheduler=scheduler,
        callbacks=callbacks,
        fallback_seconds=1.0,
        **kwargs,
    )


@pytest.fixture
def manager(coordinator, factory, callbacks, scheduler, host):
    host.preload(FREE.external_library_url())
    return _manager(coordinator, factory, callbacks, scheduler)


# ---------------------------------------------------------------------------
# Initialization and readiness
# ---------------------------------------------------------------------------

class TestInitialize:
    @pytest.mark.asyncio
    async def test_creates_widget(self, manager, factory, container):
        state = await manager.initialize("room-1", "Dr. Lee", container=container)
        assert state is EmbedState.INITIALIZING
        assert factory.log == ["create:room-1"]
        widget = manager.session.handle
        assert widget.options.parent_node == "video-root"
        assert widget.options.to_dict()["userInfo"] == {"displayName": "Dr. Lee"}

    @pytest.mark.asyncio
    async def test_audio_session_starts_video_muted(self, manager, container):
        await manager.initialize("room-1", "Dr. Lee", session_kind=SessionKind.AUDIO, container=container)
        assert manager.session.handle.options.config_overwrite["startWithVideoMuted"] is True

    @pytest.mark.asyncio
    async def test_overrides_merged(self, manager, container):
        await manager.initialize(
            "room-1",
            "Dr. Lee",
            container=container,
            overrides={"configOverwrite": {"prejoinPageEnabled": False}},
        )
        cfg = manager.session.handle.options.config_overwrite
        assert cfg["prejoinPageEnabled"] is False
        assert cfg["disableThirdPartyRequests"] is True

    @pytest.mark.asyncio
    async def test_hosted_room_is_prefixed(self, coordinator, factory, callbacks, scheduler, host, container):
        host.preload(HOSTED.external_library_url())
        mgr = _manager(coordinator, factory, callbacks, scheduler, deployment=HOSTED)
        await mgr.initialize("room-1", "Dr. Lee", container=container)
        assert factory.log == [f"create:{TENANT}/room-1"]
        assert mgr.room.raw_name == "room-1"

    @pytest.mark.asyncio
    async def test_fallback_ready_fires_once(self, manager, callbacks, scheduler, container):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        scheduler.advance(0.9)
        assert manager.state is EmbedState.INITIALIZING

        scheduler.advance(0.5)
        assert manager.state is EmbedState.READY
        manager.session.handle.emit("videoConferenceJoined", {})
        scheduler.advance(5.0)
        callbacks.on_ready.assert_called_once()

    @pytest.mark.asyncio
    async def test_conference_joined_marks_ready(self, manager, callbacks, scheduler, container):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        manager.session.handle.emit("videoConferenceJoined", {"roomName": "room-1"})
        assert manager.state is EmbedState.READY
        scheduler.advance(5.0)
        callbacks.on_ready.assert_called_once()

    @pytest.mark.asyncio
    async def test_surface_on_recheck(self, manager, callbacks, scheduler, container):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        container.mark_surface_rendered()
        scheduler.advance(0.1)
        assert manager.state is EmbedState.INITIALIZING
        scheduler.advance(0.5)
        assert manager.state is EmbedState.READY
        scheduler.advance(5.0)
        callbacks.on_ready.assert_called_once()

    @pytest.mark.asyncio
    async def test_surface_present_immediately(self, coordinator, factory, callbacks, scheduler, host, container):
        host.preload(FREE.external_library_url())
        probe = ManualReadinessProbe(present=True)
        mgr = _manager(coordinator, factory, callbacks, scheduler, readiness_probe=probe)
        await mgr.initialize("room-1", "Dr. Lee", container=container)
        assert probe.checks == 1
        scheduler.advance(0.5)
        assert mgr.state is EmbedState.READY

    @pytest.mark.asyncio
    async def test_waits_for_library(self, coordinator, factory, callbacks, scheduler, host, container):
        mgr = _manager(coordinator, factory, callbacks, scheduler)
        task = asyncio.create_task(mgr.initialize("room-1", "Dr. Lee", container=container))
        await settle()
        assert mgr.state is EmbedState.INITIALIZING
        assert factory.log == []

        host.complete(FREE.external_library_url())
        scheduler.advance(0.1)
        assert await task is EmbedState.INITIALIZING
        assert factory.log == ["create:room-1"]


# ---------------------------------------------------------------------------
# Duplicate and room-change handling
# ---------------------------------------------------------------------------

class TestSessionOwnership:
    @pytest.mark.asyncio
    async def test_duplicate_initialize_creates_one_session(
        self, coordinator, factory, callbacks, scheduler, host, container
    ):
        mgr = _manager(coordinator, factory, callbacks, scheduler)
        first = asyncio.create_task(mgr.initialize("room-1", "Dr. Lee", container=container))
        second = asyncio.create_task(mgr.initialize("room-1", "Dr. Lee", container=container))
        await settle()

        host.complete(FREE.external_library_url())
        scheduler.advance(0.1)
        await asyncio.gather(first, second)
        assert factory.log == ["create:room-1"]
        assert len(host.insertions) == 1

    @pytest.mark.asyncio
    async def test_same_room_while_ready_is_noop(self, manager, factory, container):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        manager.session.handle.emit("videoConferenceJoined")
        assert await manager.initialize("room-1", "Dr. Lee", container=container) is EmbedState.READY
        assert factory.log == ["create:room-1"]

    @pytest.mark.asyncio
    async def test_room_change_disposes_before_create(self, manager, factory, container):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        await manager.initialize("room-2", "Dr. Lee", container=container)
        assert factory.log == ["create:room-1", "dispose:room-1", "create:room-2"]
        assert factory.created[0].disposed is True
        assert manager.session.room.raw_name == "room-2"

    @pytest.mark.asyncio
    async def test_superseded_initialize_does_not_create(
        self, coordinator, factory, callbacks, scheduler, host, container
    ):
        mgr = _manager(coordinator, factory, callbacks, scheduler)
        first = asyncio.create_task(mgr.initialize("room-1", "Dr. Lee", container=container))
        await settle()
        second = asyncio.create_task(mgr.initialize("room-2", "Dr. Lee", container=container))
        await settle()

        host.complete(FREE.external_library_url())
        scheduler.advance(0.1)
        await asyncio.gather(first, second)
        assert factory.log == ["create:room-2"]

    @pytest.mark.asyncio
    async def test_old_widget_silenced_after_room_change(self, manager, callbacks, container):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        old = manager.session.handle
        await manager.initialize("room-2", "Dr. Lee", container=container)
        old.emit("participantJoined", {"id": "p1"})
        callbacks.on_participant_joined.assert_not_called()


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class TestCredentials:
    @pytest.mark.asyncio
    async def test_credential_passed_to_widget(self, coordinator, factory, callbacks, scheduler, host, container):
        host.preload(HOSTED.external_library_url())
        creds = SyncCredentials()
        mgr = _manager(coordinator, factory, callbacks, scheduler, deployment=HOSTED, credentials=creds)
        await mgr.initialize("room-1", "Dr. Lee", user_id="u-1", is_moderator=True, container=container)

        assert mgr.session.credential == "signed.token.value"
        assert mgr.session.handle.options.to_dict()["jwt"] == "signed.token.value"
        request = creds.requests[0]
        assert request.room_name == f"{TENANT}/room-1"
        assert request.is_moderator is True
        assert request.features.moderation is True

    @pytest.mark.asyncio
    async def test_async_provider(self, coordinator, factory, callbacks, scheduler, host, container):
        host.preload(HOSTED.external_library_url())
        creds = AsyncCredentials(token="async.token")
        mgr = _manager(coordinator, factory, callbacks, scheduler, deployment=HOSTED, credentials=creds)
        await mgr.initialize("room-1", "Dr. Lee", user_id="u-1", container=container)
        assert mgr.session.credential == "async.token"

    @pytest.mark.asyncio
    async def test_missing_user_id_skips_credential(
        self, coordinator, factory, callbacks, scheduler, host, container, caplog
    ):
        host.preload(HOSTED.external_library_url())
        creds = SyncCredentials()
        mgr = _manager(coordinator, factory, callbacks, scheduler, deployment=HOSTED, credentials=creds)
        with caplog.at_level(logging.WARNING, logger="telebridge.embed.lifecycle"):
            await mgr.initialize("room-1", "Dr. Lee", container=container)
        assert creds.requests == []
        assert mgr.session.credential is None
        assert "without a credential" in caplog.text
        assert "jwt" not in mgr.session.handle.options.to_dict()

    @pytest.mark.asyncio
    async def test_not_configured_skips_credential(self, coordinator, factory, callbacks, scheduler, host, container):
        host.preload(FREE.external_library_url())
        creds = SyncCredentials(configured=False)
        mgr = _manager(coordinator, factory, callbacks, scheduler, credentials=creds)
        await mgr.initialize("room-1", "Dr. Lee", user_id="u-1", container=container)
        assert creds.requests == []
        assert mgr.session.credential is None

    @pytest.mark.asyncio
    async def test_issue_failure_proceeds_without_credential(
        self, coordinator, factory, callbacks, scheduler, host, container
    ):
        host.preload(HOSTED.external_library_url())
        creds = SyncCredentials(error=CredentialConfigError("key rejected"))
        mgr = _manager(coordinator, factory, callbacks, scheduler, deployment=HOSTED, credentials=creds)
        await mgr.initialize("room-1", "Dr. Lee", user_id="u-1", container=container)
        assert mgr.state is EmbedState.INITIALIZING
        assert mgr.session.credential is None

    @pytest.mark.asyncio
    async def test_provider_unexpected_error_proceeds_without_credential(
        self, coordinator, factory, callbacks, scheduler, host, container
    ):
        host.preload(HOSTED.external_library_url())
        creds = SyncCredentials(error=KeyError("token"))
        mgr = _manager(coordinator, factory, callbacks, scheduler, deployment=HOSTED, credentials=creds)
        assert await mgr.initialize("room-1", "Dr. Lee", user_id="u-1", container=container) is EmbedState.INITIALIZING
        assert mgr.session.credential is None

    @pytest.mark.asyncio
    async def test_provider_check_error_proceeds_without_credential(
        self, coordinator, factory, callbacks, scheduler, host, container
    ):
        class BrokenCheck(SyncCredentials):
            def is_configured(self):
                raise AttributeError("'list' object has no attribute 'get'")

        host.preload(HOSTED.external_library_url())
        creds = BrokenCheck()
        mgr = _manager(coordinator, factory, callbacks, scheduler, deployment=HOSTED, credentials=creds)
        await mgr.initialize("room-1", "Dr. Lee", user_id="u-1", container=container)
        assert creds.requests == []
        assert mgr.session.credential is None

    @pytest.mark.asyncio
    async def test_remote_endpoint_html_body(self, coordinator, factory, callbacks, scheduler, host, container):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json={"configured": True})
            return httpx.Response(200, text="<html>proxy</html>")

        host.preload(HOSTED.external_library_url())
        remote = RemoteCredentialClient(
            "https://app.example.org",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        mgr = _manager(coordinator, factory, callbacks, scheduler, deployment=HOSTED, credentials=remote)

        assert await mgr.initialize("room-1", "Dr. Lee", user_id="u-1", container=container) is EmbedState.INITIALIZING
        assert mgr.session is not None
        assert mgr.session.credential is None

        scheduler.advance(1.0)
        assert mgr.state is EmbedState.READY
        assert await mgr.initialize("room-1", "Dr. Lee", user_id="u-1", container=container) is EmbedState.READY
        assert factory.log == ["create:room-1"]
        await remote.aclose()

    @pytest.mark.asyncio
    async def test_default_provider_is_shared_remote_client(
        self, coordinator, scheduler, monkeypatch
    ):
        monkeypatch.setattr(settings, "CREDENTIAL_ENDPOINT", "https://app.example.org")
        first = EmbedLifecycleManager(coordinator, deployment=HOSTED, scheduler=scheduler)
        second = EmbedLifecycleManager(coordinator, deployment=HOSTED, scheduler=scheduler)
        assert isinstance(first.credentials, RemoteCredentialClient)
        assert first.credentials is second.credentials

        first.dispose()
        assert not second.credentials.is_closed

        await close_remote_clients()
        assert second.credentials.is_closed

    @pytest.mark.asyncio
    async def test_real_issuer(
        self, coordinator, factory, callbacks, scheduler, host, container, private_pem, public_pem
    ):
        host.preload(HOSTED.external_library_url())
        issuer = CredentialIssuer(deployment=HOSTED, private_key=private_pem, key_id="")
        mgr = _manager(coordinator, factory, callbacks, scheduler, deployment=HOSTED, credentials=issuer)
        await mgr.initialize("room-1", "Dr. Lee", user_id="u-1", container=container)

        claims = jwt.decode(mgr.session.credential, public_pem, algorithms=["RS256"], audience="jitsi")
        assert claims["room"] == f"{TENANT}/room-1"
        assert claims["context"]["features"]["moderation"] == "false"


# ---------------------------------------------------------------------------
# Failures and retry
# ---------------------------------------------------------------------------

class TestFailures:
    @pytest.mark.asyncio
    async def test_load_failure(self, coordinator, factory, callbacks, scheduler, host, container):
        mgr = _manager(coordinator, factory, callbacks, scheduler)
        task = asyncio.create_task(mgr.initialize("room-1", "Dr. Lee", container=container))
        await settle()
        host.fail(FREE.external_library_url())

        assert await task is EmbedState.FAILED
        assert mgr.error == UNAVAILABLE_MESSAGE
        callbacks.on_error.assert_called_once_with(UNAVAILABLE_MESSAGE)
        assert factory.log == []

    @pytest.mark.asyncio
    async def test_rate_limited_failure_and_refused_retry(
        self, coordinator, factory, callbacks, scheduler, host, container
    ):
        url = HOSTED.external_library_url()
        mgr = _manager(coordinator, factory, callbacks, scheduler, deployment=HOSTED)
        task = asyncio.create_task(mgr.initialize("room-1", "Dr. Lee", container=container))
        await settle()
        host.fail(url)
        assert await task is EmbedState.FAILED
        assert mgr.error == RATE_LIMITED_MESSAGE

        assert await mgr.retry() is EmbedState.FAILED
        assert mgr.error == RETRY_REFUSED_MESSAGE
        callbacks.on_error.assert_called_with(RETRY_REFUSED_MESSAGE)
        assert len(host.insertions) == 1

        scheduler.advance(60.0)
        retry = asyncio.create_task(mgr.retry())
        await settle()
        assert len(host.insertions) == 2
        host.complete(url)
        scheduler.advance(0.1)
        assert await retry is EmbedState.INITIALIZING
        assert factory.log == [f"create:{TENANT}/room-1"]

    @pytest.mark.asyncio
    async def test_retry_after_generic_failure(self, coordinator, factory, callbacks, scheduler, host, container):
        url = FREE.external_library_url()
        mgr = _manager(coordinator, factory, callbacks, scheduler)
        task = asyncio.create_task(mgr.initialize("room-1", "Dr. Lee", container=container))
        await settle()
        host.fail(url)
        await task

        retry = asyncio.create_task(mgr.retry())
        await settle()
        host.complete(url)
        scheduler.advance(0.1)
        assert await retry is EmbedState.INITIALIZING
        assert mgr.error is None
        assert factory.log == ["create:room-1"]

    @pytest.mark.asyncio
    async def test_retry_before_initialize(self, manager):
        with pytest.raises(RuntimeError):
            await manager.retry()

    @pytest.mark.asyncio
    async def test_missing_container(self, manager, callbacks, factory):
        assert await manager.initialize("room-1", "Dr. Lee") is EmbedState.FAILED
        callbacks.on_error.assert_called_once_with(UNAVAILABLE_MESSAGE)
        assert factory.log == []

    @pytest.mark.asyncio
    async def test_detached_container(self, manager, container):
        container.detach()
        assert await manager.initialize("room-1", "Dr. Lee", container=container) is EmbedState.FAILED

    @pytest.mark.asyncio
    async def test_widget_creation_error(self, coordinator, callbacks, scheduler, host, container):
        class FlakyFactory(RecordingFactory):
            broken = True

            def create(self, library, domain, options, container):
                if self.broken:
                    raise TypeError("constructor rejected options")
                return super().create(library, domain, options, container)

        host.preload(FREE.external_library_url())
        factory = FlakyFactory()
        mgr = _manager(coordinator, factory, callbacks, scheduler)
        assert await mgr.initialize("room-1", "Dr. Lee", container=container) is EmbedState.FAILED
        assert mgr.session is None
        assert mgr.error == UNAVAILABLE_MESSAGE
        callbacks.on_error.assert_called_once_with(UNAVAILABLE_MESSAGE)
        assert scheduler.pending == 0

        # The same room can be initialized again once creation works.
        factory.broken = False
        assert await mgr.initialize("room-1", "Dr. Lee", container=container) is EmbedState.INITIALIZING
        assert mgr.session is not None

    @pytest.mark.asyncio
    async def test_unexpected_load_error(self, factory, callbacks, scheduler, container):
        coordinator = MagicMock()
        coordinator.ensure_loaded = AsyncMock(side_effect=OSError("socket closed"))
        mgr = _manager(coordinator, factory, callbacks, scheduler)
        assert await mgr.initialize("room-1", "Dr. Lee", container=container) is EmbedState.FAILED
        assert mgr.error == UNAVAILABLE_MESSAGE
        assert factory.log == []


# ---------------------------------------------------------------------------
# Widget events
# ---------------------------------------------------------------------------

class TestWidgetEvents:
    @pytest.mark.asyncio
    async def test_participant_events(self, manager, callbacks, container):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        widget = manager.session.handle
        widget.emit("participantJoined", {"id": "p1", "displayName": "Client"})
        widget.emit("participantLeft", {"id": "p1"})
        callbacks.on_participant_joined.assert_called_once_with({"id": "p1", "displayName": "Client"})
        callbacks.on_participant_left.assert_called_once_with({"id": "p1"})

    @pytest.mark.asyncio
    async def test_end_events(self, manager, callbacks, container):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        manager.session.handle.emit("readyToClose")
        manager.session.handle.emit("videoConferenceLeft", {"roomName": "room-1"})
        assert callbacks.on_ended.call_count == 2

    @pytest.mark.asyncio
    async def test_noise_suppressed(self, manager, callbacks, container, caplog):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        manager.session.handle.emit("videoConferenceJoined")
        caplog.clear()
        with caplog.at_level(logging.WARNING, logger="telebridge.embed.lifecycle"):
            manager.session.handle.emit("error", {"name": "gum.permission_denied"})
            manager.session.handle.emit("error", {"message": "net::ERR_BLOCKED_BY_CLIENT amplitude"})
        assert len(manager.suppressed_warnings) == 2
        assert caplog.records == []
        assert manager.state is EmbedState.READY
        callbacks.on_error.assert_not_called()

    @pytest.mark.asyncio
    async def test_critical_error_logged_not_fatal(self, manager, callbacks, container, caplog):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        manager.session.handle.emit("videoConferenceJoined")
        with caplog.at_level(logging.WARNING, logger="telebridge.embed.lifecycle"):
            manager.session.handle.emit("error", {"message": "conference.connectionError"})
        assert "conference.connectionError" in caplog.text
        assert manager.state is EmbedState.READY
        callbacks.on_error.assert_not_called()


# ---------------------------------------------------------------------------
# Disposal
# ---------------------------------------------------------------------------

class TestDispose:
    @pytest.mark.asyncio
    async def test_idempotent(self, manager, factory, container):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        widget = manager.session.handle
        manager.dispose()
        manager.dispose()
        assert manager.state is EmbedState.DISPOSED
        assert widget.dispose_calls == 1
        assert manager.session is None

    @pytest.mark.asyncio
    async def test_cancels_readiness(self, manager, callbacks, scheduler, container):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        manager.dispose()
        scheduler.advance(5.0)
        callbacks.on_ready.assert_not_called()

    @pytest.mark.asyncio
    async def test_during_load_never_creates(self, coordinator, factory, callbacks, scheduler, host, container):
        mgr = _manager(coordinator, factory, callbacks, scheduler)
        task = asyncio.create_task(mgr.initialize("room-1", "Dr. Lee", container=container))
        await settle()
        mgr.dispose()

        host.complete(FREE.external_library_url())
        scheduler.advance(0.1)
        assert await task is EmbedState.DISPOSED
        assert factory.log == []

    @pytest.mark.asyncio
    async def test_initialize_after_dispose_ignored(self, manager, factory, container):
        manager.dispose()
        assert await manager.initialize("room-1", "Dr. Lee", container=container) is EmbedState.DISPOSED
        assert factory.log == []

    @pytest.mark.asyncio
    async def test_widget_dispose_error_logged(
        self, coordinator, callbacks, scheduler, host, container, caplog
    ):
        host.preload(FREE.external_library_url())
        factory = RecordingFactory(fail_dispose=True)
        mgr = _manager(coordinator, factory, callbacks, scheduler)
        await mgr.initialize("room-1", "Dr. Lee", container=container)
        with caplog.at_level(logging.WARNING, logger="telebridge.embed.lifecycle"):
            mgr.dispose()
        assert mgr.state is EmbedState.DISPOSED
        assert "widget frame already gone" in caplog.text

    @pytest.mark.asyncio
    async def test_registry_closed(self, manager, container):
        await manager.initialize("room-1", "Dr. Lee", container=container)
        registry = manager.registry
        manager.dispose()
        assert registry.closed
        assert manager.registry is None
