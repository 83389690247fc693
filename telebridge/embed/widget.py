"""Conferencing widget options, handle and embed snippet.

``ExternalApiWidget`` stands for one ``JitsiMeetExternalAPI`` instance on a
page. Events reported by the page are fed in through :meth:`emit`; the
snippet from :func:`generate_embed_code` is what the page runs to create
the real widget with the same options.
"""

from __future__ import annotations

import copy
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from telebridge.embed.host import LIBRARY_GLOBAL, ExternalLibrary
from telebridge.embed.readiness import HostContainer


class SessionKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


TOOLBAR_BUTTONS = [
    "microphone",
    "camera",
    "closedcaptions",
    "desktop",
    "fullscreen",
    "fodeviceselection",
    "hangup",
    "profile",
    "chat",
    "recording",
    "livestreaming",
    "settings",
    "raisehand",
    "videoquality",
    "filmstrip",
    "stats",
    "tileview",
    "videobackgroundblur",
    "help",
]


def default_config_overwrite(session_kind: SessionKind) -> dict[str, Any]:
    """Meeting settings for counseling sessions.

    The prejoin page stays on so device permissions are requested when the
    participant clicks join; analytics and third-party requests are off.
    """
    return {
        "startWithAudioMuted": False,
        "startWithVideoMuted": session_kind is SessionKind.AUDIO,
        "disableModeratorIndicator": False,
        "prejoinPageEnabled": True,
        "enableWelcomePage": False,
        "enableClosePage": False,
        "defaultLanguage": "en",
        "disableInviteFunctions": True,
        "doNotStoreRoom": True,
        "enableNoisyMicDetection": True,
        "requireDisplayName": False,
        "enableLayerSuspension": True,
        "disableThirdPartyRequests": True,
        "analytics": {"disabled": True},
        "constraints": {
            "video": {
                "height": {"ideal": 720, "max": 720, "min": 180},
                "width": {"ideal": 1280, "max": 1280, "min": 320},
                "frameRate": {"max": 30},
            },
            "audio": {
                "autoGainControl": True,
                "echoCancellation": True,
                "noiseSuppression": True,
            },
        },
    }


def default_interface_config_overwrite() -> dict[str, Any]:
    return {
        "TOOLBAR_BUTTONS": list(TOOLBAR_BUTTONS),
        "SHOW_JITSI_WATERMARK": False,
        "SHOW_WATERMARK_FOR_GUESTS": False,
        "SHOW_BRAND_WATERMARK": False,
        "SHOW_POWERED_BY": False,
        "DEFAULT_REMOTE_DISPLAY_NAME": "Participant",
        "MOBILE_APP_PROMO": False,
    }


@dataclass
class WidgetOptions:
    """Constructor options for one widget instance."""

    room_name: str
    display_name: str
    parent_node: str
    session_kind: SessionKind = SessionKind.VIDEO
    email: str | None = None
    jwt: str | None = None
    config_overwrite: dict[str, Any] = field(default_factory=dict)
    interface_config_overwrite: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        room_name: str,
        display_name: str,
        container: HostContainer,
        session_kind: SessionKind = SessionKind.VIDEO,
        email: str | None = None,
        jwt: str | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> "WidgetOptions":
        """Build options with the defaults, then apply caller *overrides*.

        *overrides* may carry ``configOverwrite`` / ``interfaceConfigOverwrite``
        sections, which are merged into the defaults; any other shape is
        treated as top-level constructor options.
        """
        overrides = copy.deepcopy(overrides or {})
        config_overwrite = default_config_overwrite(session_kind)
        interface_overwrite = default_interface_config_overwrite()
        extra: dict[str, Any] = {}

        if "configOverwrite" in overrides or "interfaceConfigOverwrite" in overrides:
            config_overwrite.update(overrides.get("configOverwrite") or {})
            interface_overwrite.update(overrides.get("interfaceConfigOverwrite") or {})
        else:
            extra = overrides

        return cls(
            room_name=room_name,
            display_name=display_name,
            parent_node=container.element_id,
            session_kind=session_kind,
            email=email,
            jwt=jwt,
            config_overwrite=config_overwrite,
            interface_config_overwrite=interface_overwrite,
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        user_info: dict[str, Any] = {"displayName": self.display_name}
        if self.email:
            user_info["email"] = self.email
        options: dict[str, Any] = {
            "roomName": self.room_name,
            "parentNode": self.parent_node,
            "userInfo": user_info,
            "configOverwrite": self.config_overwrite,
            "interfaceConfigOverwrite": self.interface_config_overwrite,
            **self.extra,
        }
        if self.jwt:
            options["jwt"] = self.jwt
        return options


class ExternalApiWidget:
    """Handle for one widget instance on a page."""

    def __init__(
        self,
        library: ExternalLibrary,
        domain: str,
        options: WidgetOptions,
        container: HostContainer,
    ) -> None:
        self.library = library
        self.domain = domain
        self.options = options
        self.container = container
        self.disposed = False
        self._listeners: dict[str, list[Callable[[Any], None]]] = {}

    def on(self, event_name: str, listener: Callable[[Any], None]) -> None:
        self._listeners.setdefault(event_name, []).append(listener)

    def emit(self, event_name: str, payload: Any = None) -> None:
        """Deliver an event reported by the page."""
        if self.disposed:
            return
        for listener in list(self._listeners.get(event_name, [])):
            listener(payload)

    def has_surface(self) -> bool:
        return self.container.attached and self.container.surface_rendered

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self._listeners.clear()
        self.container.surface_rendered = False

    def embed_code(self) -> str:
        return generate_embed_code(self.domain, self.library, self.options)


class WidgetFactory(ABC):
    @abstractmethod
    def create(
        self,
        library: ExternalLibrary,
        domain: str,
        options: WidgetOptions,
        container: HostContainer,
    ) -> ExternalApiWidget:
        """Instantiate a widget inside *container*."""


class ExternalApiWidgetFactory(WidgetFactory):
    def create(
        self,
        library: ExternalLibrary,
        domain: str,
        options: WidgetOptions,
        container: HostContainer,
    ) -> ExternalApiWidget:
        return ExternalApiWidget(library, domain, options, container)


def generate_embed_code(domain: str, library: ExternalLibrary, options: WidgetOptions) -> str:
    """HTML/JavaScript that loads the library and creates the widget.

    The script tag is pinned to the fetched copy with an ``integrity``
    attribute.
    """
    options_json = json.dumps(options.to_dict(), indent=2)
    return f'''<!-- Video Session Widget -->
<script src="{library.url}" integrity="{library.integrity}" crossorigin="anonymous"></script>
<script>
  (function() {{
    var options = {options_json};
    options.parentNode = document.getElementById(options.parentNode);
    window.telebridgeWidget = new window.{LIBRARY_GLOBAL}({json.dumps(domain)}, options);
  }})();
</script>
<!-- End Video Session Widget -->'''
