"""
Projections between geographic coordinates and screen pixels.
"""
import math
from dataclasses import dataclass, field
from typing import Optional, Protocol

from friendmap.config import settings
from friendmap.core.exceptions import InvalidConfiguration, UnprojectableLocation
from friendmap.core.models import Coordinate

# Web Mercator is undefined at the poles; tiles stop at this latitude.
MAX_LATITUDE = 85.05112878


@dataclass(frozen=True)
class PixelPoint:
    x: float
    y: float


class Projection(Protocol):
    def to_pixel(self, coordinate: Coordinate) -> Optional[PixelPoint]: ...
    def to_coordinate(self, point: PixelPoint) -> Coordinate: ...
    def zoom_level(self) -> float: ...


def require_pixel(projection: Projection, coordinate: Coordinate) -> PixelPoint:
    """Project a coordinate, raising UnprojectableLocation if the projection can't."""
    point = projection.to_pixel(coordinate)
    if point is None or not (math.isfinite(point.x) and math.isfinite(point.y)):
        raise UnprojectableLocation(coordinate)
    return point


@dataclass(frozen=True)
class WebMercatorProjection:
    """
    Spherical Web Mercator as used by slippy-map tiles.

    Pixel space is the viewport: (0, 0) is the top-left corner and `center` sits
    at (width / 2, height / 2). The world is `tile_size * 2**zoom` pixels wide.
    """

    center: Coordinate
    zoom: float
    width: int = 1024
    height: int = 768
    tile_size: int = field(default_factory=lambda: settings.TILE_SIZE)

    def __post_init__(self):
        if self.tile_size <= 0:
            raise InvalidConfiguration(f"tile_size must be positive, got {self.tile_size}")
        if self.width <= 0 or self.height <= 0:
            raise InvalidConfiguration(
                f"Viewport must be positive, got {self.width}x{self.height}"
            )
        if not math.isfinite(self.zoom) or self.zoom < 0:
            raise InvalidConfiguration(f"zoom must be a non-negative number, got {self.zoom}")
        if abs(self.center.lat) > MAX_LATITUDE:
            raise InvalidConfiguration(f"Map center is outside the projection: {self.center}")
        object.__setattr__(self, "_world_size", self.tile_size * 2.0 ** self.zoom)
        object.__setattr__(self, "_origin", self._world_xy(self.center.lat, self.center.lng))

    def _world_xy(self, lat: float, lng: float):
        siny = math.sin(math.radians(lat))
        x = (lng + 180.0) / 360.0 * self._world_size
        y = (0.5 - math.log((1 + siny) / (1 - siny)) / (4 * math.pi)) * self._world_size
        return x, y

    def to_pixel(self, coordinate: Coordinate) -> Optional[PixelPoint]:
        if abs(coordinate.lat) > MAX_LATITUDE:
            return None
        x, y = self._world_xy(coordinate.lat, coordinate.lng)
        cx, cy = self._origin
        return PixelPoint(x - cx + self.width / 2.0, y - cy + self.height / 2.0)

    def to_coordinate(self, point: PixelPoint) -> Coordinate:
        cx, cy = self._origin
        wx = point.x - self.width / 2.0 + cx
        # clamp to the world so far-off pixels map to the latitude limit
        wy = min(max(point.y - self.height / 2.0 + cy, 0.0), self._world_size)
        lng = wx / self._world_size * 360.0 - 180.0
        # wrap into [-180, 180]
        lng = (lng + 180.0) % 360.0 - 180.0
        n = math.pi - 2.0 * math.pi * wy / self._world_size
        lat = math.degrees(math.atan(math.sinh(n)))
        return Coordinate(lat=lat, lng=lng)

    def zoom_level(self) -> float:
        return self.zoom
