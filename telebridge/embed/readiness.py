"""Probes for the widget's rendered surface.

The lifecycle manager checks a probe right after instantiating the widget
and once more shortly after. The container probe reads the host container's
surface flag, which the page reports once the widget frame is attached.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class HostContainer:
    """The page element the widget is mounted into.

    Attributes:
        element_id: DOM id of the container element.
        attached: Whether the element is currently in the document.
        surface_rendered: Set once the widget frame shows up inside it.
    """

    element_id: str
    attached: bool = True
    surface_rendered: bool = False

    def mark_surface_rendered(self) -> None:
        self.surface_rendered = True

    def detach(self) -> None:
        self.attached = False
        self.surface_rendered = False


class ReadinessProbe(ABC):
    @abstractmethod
    def surface_present(self) -> bool:
        """True once the widget's surface is visible in its container."""


class ContainerSurfaceProbe(ReadinessProbe):
    def __init__(self, container: HostContainer) -> None:
        self._container = container

    def surface_present(self) -> bool:
        return self._container.attached and self._container.surface_rendered


class ManualReadinessProbe(ReadinessProbe):
    """Probe flipped by hand."""

    def __init__(self, present: bool = False) -> None:
        self.present = present
        self.checks = 0

    def trigger(self) -> None:
        self.present = True

    def surface_present(self) -> bool:
        self.checks += 1
        return self.present
