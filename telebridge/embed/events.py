"""Widget events and the observer registry the lifecycle manager fills.

The conferencing library reports events by name. :class:`EventRegistry`
keeps the handlers for one embed so they can all be dropped at once on
dispose, instead of leaving closures attached to a widget that is going
away.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class WidgetEvent(str, Enum):
    """Events emitted by the conferencing widget."""

    CONFERENCE_JOINED = "videoConferenceJoined"
    PARTICIPANT_JOINED = "participantJoined"
    PARTICIPANT_LEFT = "participantLeft"
    READY_TO_CLOSE = "readyToClose"
    CONFERENCE_LEFT = "videoConferenceLeft"
    ERROR = "error"


EventHandler = Callable[[Any], None]


@dataclass
class Subscription:
    event: WidgetEvent
    handler: EventHandler
    active: bool = True


class EventRegistry:
    """Typed handler registry for one embed instance."""

    def __init__(self) -> None:
        self._subscriptions: dict[WidgetEvent, list[Subscription]] = {}
        self._closed = False

    def on(self, event: WidgetEvent, handler: EventHandler) -> Subscription:
        if self._closed:
            raise RuntimeError("event registry is closed")
        sub = Subscription(event=event, handler=handler)
        self._subscriptions.setdefault(event, []).append(sub)
        return sub

    def off(self, subscription: Subscription) -> None:
        subscription.active = False
        subs = self._subscriptions.get(subscription.event, [])
        if subscription in subs:
            subs.remove(subscription)

    def dispatch(self, event: WidgetEvent, payload: Any = None) -> int:
        """Call every active handler for *event*; return how many ran."""
        if self._closed:
            return 0
        ran = 0
        for sub in list(self._subscriptions.get(event, [])):
            if not sub.active:
                continue
            sub.handler(payload)
            ran += 1
        return ran

    def handler_count(self, event: WidgetEvent | None = None) -> int:
        if event is not None:
            return len(self._subscriptions.get(event, []))
        return sum(len(subs) for subs in self._subscriptions.values())

    def clear(self) -> None:
        for subs in self._subscriptions.values():
            for sub in subs:
                sub.active = False
        self._subscriptions.clear()
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


# ---------------------------------------------------------------------------
# Runtime error classification
# ---------------------------------------------------------------------------

# Known noise from the widget: device permission prompts before the user
# clicks join, analytics beacons that ad blockers stop, missing UI sounds.
SUPPRESSED_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"permission",
        r"gum\.permission_denied",
        r"NotAllowedError",
        r"amplitude",
        r"analytics",
        r"Event rejected due to exceeded retry count",
        r"ERR_BLOCKED_BY_CLIENT",
        r"ERR_NAME_NOT_RESOLVED",
        r"Unrecognized feature",
        r"no sound found for id",
        r"PLAY_SOUND",
    )
]


class ErrorCategory(str, Enum):
    EXPECTED = "expected"
    CRITICAL = "critical"


def error_message(error: Any) -> str:
    if isinstance(error, dict):
        for key in ("message", "name", "type"):
            if error.get(key):
                return str(error[key])
        return str(error)
    message = getattr(error, "message", None)
    return str(message) if message else str(error)


def classify_widget_error(error: Any) -> ErrorCategory:
    """Sort a widget runtime error into expected noise or a real problem."""
    message = error_message(error)
    if any(pattern.search(message) for pattern in SUPPRESSED_PATTERNS):
        return ErrorCategory.EXPECTED
    return ErrorCategory.CRITICAL
