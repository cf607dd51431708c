"""
Rendering surfaces that markers are attached to.
"""
import itertools
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from friendmap.geo.projection import Projection
from friendmap.markers.descriptor import MarkerDescriptor, MarkerHue

ProjectionListener = Callable[[Projection], None]


class RenderingSurface(Protocol):
    """What the marker manager needs from a map widget."""

    def current_projection(self) -> Optional[Projection]: ...
    def attach(self, descriptor: MarkerDescriptor) -> Any: ...
    def detach(self, handle: Any) -> None: ...
    def set_icon(self, handle: Any, image: Any) -> None: ...
    def on_projection_changed(self, callback: ProjectionListener) -> None: ...


@dataclass
class DrawnMarker:
    """A marker as the surface shows it."""
    lat: float
    lng: float
    title: str
    hue: MarkerHue
    icon: Optional[Any] = None


class InMemorySurface:
    """
    Headless surface that keeps attached markers in a dict.

    Used by the CLI and tests. Call `set_projection` to simulate a camera move;
    registered listeners are notified with the new projection.
    """

    def __init__(self, projection: Optional[Projection] = None):
        self._projection = projection
        self._listeners: List[ProjectionListener] = []
        self._handles = itertools.count(1)
        self.markers: Dict[int, DrawnMarker] = {}
        self.attach_count = 0
        self.detach_count = 0

    def current_projection(self) -> Optional[Projection]:
        return self._projection

    def set_projection(self, projection: Optional[Projection]) -> None:
        self._projection = projection
        if projection is None:
            return
        for listener in list(self._listeners):
            listener(projection)

    def on_projection_changed(self, callback: ProjectionListener) -> None:
        # a map widget holds a single camera listener
        self._listeners = [callback]

    def attach(self, descriptor: MarkerDescriptor) -> int:
        handle = next(self._handles)
        self.markers[handle] = DrawnMarker(
            lat=descriptor.position.lat,
            lng=descriptor.position.lng,
            title=descriptor.title,
            hue=descriptor.hue,
            icon=descriptor.icon,
        )
        self.attach_count += 1
        return handle

    def detach(self, handle: int) -> None:
        if self.markers.pop(handle, None) is not None:
            self.detach_count += 1

    def set_icon(self, handle: int, image: Any) -> None:
        marker = self.markers.get(handle)
        if marker is None:
            raise KeyError(f"No marker attached with handle {handle}")
        marker.icon = image
