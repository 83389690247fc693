"""Environments the external conferencing library is loaded into.

A :class:`ScriptHost` plays the role a browser document plays for a script
tag: it can report whether the library is already available, find a load
that is already in progress for a URL, and start a new one. Tags notify
listeners exactly once with either a load or an error.

:class:`HttpScriptHost` fetches the library over HTTPS with httpx and keeps
the source, with its SRI hash, so pages can be served a pinned copy.
:class:`InMemoryScriptHost` lets the caller settle each tag by hand.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

import httpx

from telebridge.embed.errors import ScriptLoadError

logger = logging.getLogger(__name__)

LIBRARY_GLOBAL = "JitsiMeetExternalAPI"
STUB_SOURCE = f"window.{LIBRARY_GLOBAL} = function() {{}};"


def get_sri_hash(content: str) -> str:
    """Return the ``sha384-...`` Subresource Integrity hash of *content*."""
    hash_bytes = hashlib.sha384(content.encode("utf-8")).digest()
    return f"sha384-{base64.b64encode(hash_bytes).decode('utf-8')}"


@dataclass(frozen=True)
class ExternalLibrary:
    """A loaded copy of the conferencing library."""

    url: str
    source: str
    integrity: str

    @classmethod
    def from_source(cls, url: str, source: str) -> "ExternalLibrary":
        return cls(url=url, source=source, integrity=get_sri_hash(source))


class ScriptTag:
    """One load of the library from a URL.

    Listeners attached after the tag has settled are called immediately,
    so late joiners observe the same outcome as early ones.
    """

    def __init__(self, url: str, on_remove: Callable[["ScriptTag"], None] | None = None) -> None:
        self.url = url
        self._on_remove = on_remove
        self._load_listeners: list[Callable[[], None]] = []
        self._error_listeners: list[Callable[[ScriptLoadError], None]] = []
        self._outcome: ScriptLoadError | bool | None = None
        self.removed = False

    @property
    def settled(self) -> bool:
        return self._outcome is not None

    def on_load(self, listener: Callable[[], None]) -> None:
        if self._outcome is True:
            listener()
        elif self._outcome is None:
            self._load_listeners.append(listener)

    def on_error(self, listener: Callable[[ScriptLoadError], None]) -> None:
        if isinstance(self._outcome, ScriptLoadError):
            listener(self._outcome)
        elif self._outcome is None:
            self._error_listeners.append(listener)

    def succeed(self) -> None:
        if self._outcome is not None:
            return
        self._outcome = True
        listeners, self._load_listeners, self._error_listeners = self._load_listeners, [], []
        for listener in listeners:
            listener()

    def fail(self, error: ScriptLoadError) -> None:
        if self._outcome is not None:
            return
        self._outcome = error
        listeners, self._load_listeners, self._error_listeners = self._error_listeners, [], []
        for listener in listeners:
            listener(error)

    def remove(self) -> None:
        if self.removed:
            return
        self.removed = True
        if self._on_remove is not None:
            self._on_remove(self)


class ScriptHost(ABC):
    @abstractmethod
    def library(self) -> ExternalLibrary | None:
        """The library, if it is already available."""

    @abstractmethod
    def find_tag(self, url: str) -> ScriptTag | None:
        """A tag for *url* that has not been removed, if any."""

    @abstractmethod
    def insert_tag(self, url: str) -> ScriptTag:
        """Start loading *url* and return its tag."""


class InMemoryScriptHost(ScriptHost):
    """Host whose tags are settled by calling :meth:`complete` / :meth:`fail`."""

    def __init__(self) -> None:
        self.tags: list[ScriptTag] = []
        self.insertions: list[str] = []
        self._library: ExternalLibrary | None = None

    def library(self) -> ExternalLibrary | None:
        return self._library

    def find_tag(self, url: str) -> ScriptTag | None:
        for tag in self.tags:
            if tag.url == url:
                return tag
        return None

    def insert_tag(self, url: str) -> ScriptTag:
        tag = ScriptTag(url, on_remove=self.tags.remove)
        self.tags.append(tag)
        self.insertions.append(url)
        return tag

    def complete(self, url: str, source: str = STUB_SOURCE,
                 define_global: bool = True) -> None:
        """Finish the pending load of *url* successfully."""
        tag = self.find_tag(url)
        if tag is None:
            raise LookupError(f"no pending tag for {url}")
        if define_global:
            self._library = ExternalLibrary.from_source(url, source)
        tag.succeed()

    def fail(self, url: str, status_code: int | None = None) -> None:
        """Fail the pending load of *url*."""
        tag = self.find_tag(url)
        if tag is None:
            raise LookupError(f"no pending tag for {url}")
        tag.fail(ScriptLoadError(f"failed to load {url}", status_code=status_code))

    def preload(self, url: str, source: str = STUB_SOURCE) -> None:
        """Make the library available without any tag."""
        self._library = ExternalLibrary.from_source(url, source)


class HttpScriptHost(ScriptHost):
    """Loads the library over HTTP.

    Parameters
    ----------
    client:
        Shared ``httpx.AsyncClient``. One is created if omitted.
    timeout:
        Per-request timeout in seconds when creating the client.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 15.0) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._tags: dict[str, ScriptTag] = {}
        self._tasks: set[asyncio.Task] = set()
        self._library: ExternalLibrary | None = None

    def library(self) -> ExternalLibrary | None:
        return self._library

    def find_tag(self, url: str) -> ScriptTag | None:
        return self._tags.get(url)

    def insert_tag(self, url: str) -> ScriptTag:
        tag = ScriptTag(url, on_remove=self._forget)
        self._tags[url] = tag
        task = asyncio.get_running_loop().create_task(self._fetch(tag))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return tag

    def _forget(self, tag: ScriptTag) -> None:
        if self._tags.get(tag.url) is tag:
            del self._tags[tag.url]

    async def _fetch(self, tag: ScriptTag) -> None:
        try:
            resp = await self._client.get(tag.url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.debug("Library fetch %s returned %s", tag.url, status)
            tag.fail(ScriptLoadError(f"HTTP {status} from {tag.url}", status_code=status))
            return
        except httpx.HTTPError as exc:
            logger.debug("Library fetch %s failed: %s", tag.url, exc)
            tag.fail(ScriptLoadError(f"request to {tag.url} failed: {exc}"))
            return

        source = resp.text
        if LIBRARY_GLOBAL in source:
            self._library = ExternalLibrary.from_source(tag.url, source)
        else:
            logger.warning("Library fetched from %s does not define %s", tag.url, LIBRARY_GLOBAL)
        tag.succeed()

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self._client.aclose()
