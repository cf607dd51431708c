"""
Grid-based spatial bucketing of locations in pixel space.
Provides O(n) clustering that coarsens as the map zooms out.
"""
import math

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from friendmap.core.models import Coordinate, Location
from friendmap.core.exceptions import InvalidConfiguration, UnprojectableLocation
from friendmap.geo.projection import PixelPoint, Projection, require_pixel
from friendmap.utils.logger import logger


@dataclass
class ClusterResult:
    """Clusters keyed by their display coordinate, plus what was left out."""

    clusters: Dict[Coordinate, List[Location]] = field(default_factory=dict)
    skipped: int = 0

    @property
    def num_clusters(self) -> int:
        return len(self.clusters)

    @property
    def num_locations(self) -> int:
        return sum(len(locations) for locations in self.clusters.values())


class GridClusterizer:
    """
    Buckets locations into square pixel cells of side `radius`.

    This is not true nearest-neighbour clustering: two locations a few pixels
    apart can land on either side of a cell edge. The cell tiles are fixed in
    pixel space, so zooming out packs more ground into each cell and clusters
    grow, while zooming in splits them apart.

    Each cluster is labelled by the center of its cell, inverted back through
    the projection, so the key depends only on the cell and not on which
    locations happen to fall into it.
    """

    def __init__(self, radius: float, projection: Projection):
        """
        Initialize the clusterizer.

        Args:
            radius: Cell size in pixels. Must be positive.
            projection: Transform between coordinates and pixels for the current view.

        Raises:
            InvalidConfiguration: If radius is not positive
        """
        if radius is None or not math.isfinite(radius) or radius <= 0:
            raise InvalidConfiguration(f"Cluster radius must be positive, got {radius}")

        self.radius = float(radius)
        self.projection = projection

    def _project(self, locations: Sequence[Location]) -> Tuple[List[Location], np.ndarray, int]:
        """Project locations to pixels, dropping the ones the projection can't map."""
        kept: List[Location] = []
        points: List[Tuple[float, float]] = []
        skipped = 0

        for location in locations:
            try:
                point = require_pixel(self.projection, location.coordinate)
            except UnprojectableLocation as e:
                logger.warning("Skipping location", reason=str(e), friends=len(location))
                skipped += 1
                continue
            kept.append(location)
            points.append((point.x, point.y))

        return kept, np.array(points, dtype=np.float64).reshape(-1, 2), skipped

    def cell_of(self, point: PixelPoint) -> Tuple[int, int]:
        """Grid cell indices for a pixel point."""
        return (
            int(np.floor(point.x / self.radius)),
            int(np.floor(point.y / self.radius)),
        )

    def cell_key(self, cell: Tuple[int, int]) -> Coordinate:
        """Display coordinate for a grid cell (its center)."""
        cx, cy = cell
        center = PixelPoint((cx + 0.5) * self.radius, (cy + 0.5) * self.radius)
        return self.projection.to_coordinate(center)

    def find_clusters(self, locations: Sequence[Location]) -> ClusterResult:
        """
        Group locations by grid cell.

        Args:
            locations: Locations to cluster

        Returns:
            ClusterResult mapping cell-center coordinates to their locations,
            in order of each cell's first location
        """
        kept, points, skipped = self._project(locations)

        # floor division tiles negative pixel space without a gap at zero
        cells = np.floor(points / self.radius).astype(np.int64)

        by_cell: Dict[Tuple[int, int], List[Location]] = {}
        for location, (cx, cy) in zip(kept, cells):
            by_cell.setdefault((int(cx), int(cy)), []).append(location)

        result = ClusterResult(skipped=skipped)
        for cell, members in by_cell.items():
            key = self.cell_key(cell)
            # two cells can only share a key if the inverse projection collapses them
            result.clusters.setdefault(key, []).extend(members)

        logger.debug(
            "Grid clustering complete",
            num_locations=len(locations),
            num_clusters=result.num_clusters,
            skipped=skipped,
            radius=self.radius,
        )
        return result


def find_clusters(
    locations: Sequence[Location],
    projection: Projection,
    radius_pixels: float,
) -> ClusterResult:
    """Cluster locations with a one-off GridClusterizer."""
    return GridClusterizer(radius_pixels, projection).find_clusters(locations)
