"""
Marker manager: keeps a friends list and its markers in sync with the map.
"""
import math
import threading
from typing import Any, Dict, Iterable, List, MutableMapping, Optional, Set, Tuple

from friendmap.clustering.clusterizer import GridClusterizer
from friendmap.clustering.grouping import group_entities
from friendmap.config import settings
from friendmap.core.exceptions import (
    ImageLoadFailure,
    InvalidConfiguration,
    ProjectionUnavailable,
)
from friendmap.core.models import Friend
from friendmap.data.snapshot import friends_from_payload, friends_to_payload
from friendmap.geo.projection import Projection
from friendmap.markers.descriptor import MarkerDescriptor, MarkerKind
from friendmap.markers.dispatch import OwnerContext
from friendmap.markers.images import ImageLoader
from friendmap.markers.surface import RenderingSurface
from friendmap.utils.logger import logger


class MarkerManager:
    """
    Displays a friends list as clustered markers on a rendering surface.

    Friends at the same coordinate are grouped into a location, and locations
    that fall into the same pixel grid cell are merged into one marker. Every
    change of friends or zoom rebuilds the whole marker set: old markers are
    detached, then the new ones attached.

    Recomputation and every surface call run on the owner context. `set_entities`
    may be called from any thread; it swaps the friends list and posts a pass.
    While a pass is queued and not started, further triggers are folded into it,
    and the pass reads whatever friends list is current when it runs.

    Single-friend markers without a picture ask the image loader for one. The
    completion is posted back to the owner context and applied only if that
    marker is still attached.
    """

    def __init__(
        self,
        context: OwnerContext,
        cluster_radius: Optional[int] = None,
        image_loader: Optional[ImageLoader] = None,
    ):
        """
        Initialize the manager.

        Args:
            context: Owner context that runs recomputation and icon updates
            cluster_radius: Grid cell size in pixels (default: from settings)
            image_loader: Loader for profile pictures; None disables icon loading

        Raises:
            InvalidConfiguration: If cluster_radius is not positive
        """
        radius = settings.CLUSTER_RADIUS_PX if cluster_radius is None else cluster_radius
        if not math.isfinite(radius) or radius <= 0:
            raise InvalidConfiguration(f"Cluster radius must be positive, got {radius}")

        self.cluster_radius = radius
        self._context = context
        self._image_loader = image_loader

        self._lock = threading.Lock()
        self._friends: Tuple[Friend, ...] = ()
        self._generation = 0
        self._pass_queued = False

        self._surface: Optional[RenderingSurface] = None
        self._attached_surface: Optional[RenderingSurface] = None
        self._markers: List[MarkerDescriptor] = []
        self._last_zoom: Optional[float] = None
        self._deferred = False

        self._image_cache: Dict[str, Any] = {}
        self._failed_refs: Set[str] = set()
        self._failed_generation = 0

        self.last_skipped = 0
        self.image_requests = 0

        logger.debug(
            "Initialized MarkerManager",
            cluster_radius=radius,
            image_loading=image_loader is not None,
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def friends(self) -> Tuple[Friend, ...]:
        return self._friends

    @property
    def markers(self) -> Tuple[MarkerDescriptor, ...]:
        return tuple(self._markers)

    @property
    def surface(self) -> Optional[RenderingSurface]:
        return self._surface

    @property
    def last_zoom(self) -> Optional[float]:
        """Zoom of the last completed pass."""
        return self._last_zoom

    @property
    def is_deferred(self) -> bool:
        """True when the last pass found no projection and is waiting for a trigger."""
        return self._deferred

    def is_empty(self) -> bool:
        return not self._friends

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def bind_surface(self, surface: RenderingSurface) -> None:
        """
        Point this manager at a surface and listen for its camera changes.

        Binding the surface already in use does nothing.
        """
        if surface is None or surface is self._surface:
            return

        self._surface = surface

        def listener(projection: Projection) -> None:
            # a previously bound surface keeps its listener; ignore it
            if surface is self._surface:
                self.on_projection_changed(projection)

        surface.on_projection_changed(listener)
        logger.debug("Bound rendering surface", surface=type(surface).__name__)
        self._schedule()

    def set_entities(self, friends: Iterable[Friend]) -> None:
        """
        Replace the friends list and schedule a recomputation.

        Args:
            friends: The friends to display
        """
        snapshot = tuple(friends)
        with self._lock:
            self._friends = snapshot
            self._generation += 1

        logger.debug("Friends replaced", total=len(snapshot))
        self._schedule()

    def remove_all_markers(self) -> None:
        """Forget all friends; the next pass detaches every marker."""
        self.set_entities(())

    def on_projection_changed(self, projection: Projection) -> None:
        """Camera listener. Only a zoom change rebuilds markers; a pure pan doesn't."""
        zoom = projection.zoom_level()
        if not self._deferred and self._last_zoom is not None and zoom == self._last_zoom:
            return
        self._schedule()

    def save_to(self, state: MutableMapping[str, Any]) -> None:
        """Save the friends list into `state`."""
        state[settings.SNAPSHOT_KEY] = friends_to_payload(self._friends)

    def load_from(self, state: MutableMapping[str, Any]) -> None:
        """
        Restore a friends list saved by save_to.

        Raises:
            SnapshotError: If `state` holds no valid snapshot
        """
        self.set_entities(friends_from_payload(state.get(settings.SNAPSHOT_KEY)))

    # ------------------------------------------------------------------
    # Recomputation (owner context only)
    # ------------------------------------------------------------------

    def _schedule(self) -> None:
        with self._lock:
            if self._pass_queued:
                return
            self._pass_queued = True
        self._context.post(self._run_pass)

    def _require_projection(self) -> Projection:
        if self._surface is None:
            raise ProjectionUnavailable("No rendering surface bound")
        projection = self._surface.current_projection()
        if projection is None:
            raise ProjectionUnavailable("Rendering surface has no projection yet")
        return projection

    def _run_pass(self) -> None:
        with self._lock:
            self._pass_queued = False
            friends = self._friends
            generation = self._generation

        try:
            projection = self._require_projection()
        except ProjectionUnavailable as e:
            self._deferred = True
            logger.debug("Marker recomputation deferred", reason=str(e))
            return

        self._deferred = False
        if generation != self._failed_generation:
            self._failed_refs.clear()
            self._failed_generation = generation
            self._trim_image_cache(friends)

        self._recalculate_markers(self._surface, projection, friends)

    def _trim_image_cache(self, friends: Tuple[Friend, ...]) -> None:
        """Drop cached images no current friend refers to."""
        wanted = {friend.image_ref for friend in friends if friend.image_ref}
        for image_ref in [ref for ref in self._image_cache if ref not in wanted]:
            del self._image_cache[image_ref]

    def _detach_all(self) -> None:
        for marker in self._markers:
            if marker.handle is not None:
                self._attached_surface.detach(marker.handle)
                marker.handle = None
        self._markers.clear()

    def _recalculate_markers(
        self,
        surface: RenderingSurface,
        projection: Projection,
        friends: Tuple[Friend, ...],
    ) -> None:
        """
        Rebuild every marker for the given projection.

        Args:
            surface: Where the new markers go
            projection: Transform between lat/lng and pixel space for the current view
            friends: Friends snapshot for this pass
        """
        locations = group_entities(friends)
        clusterizer = GridClusterizer(self.cluster_radius, projection)
        result = clusterizer.find_clusters(locations)

        self._detach_all()
        self._attached_surface = surface

        for position, cluster_locations in result.clusters.items():
            marker = MarkerDescriptor.build(position, cluster_locations, self._image_cache)
            marker.handle = surface.attach(marker)
            self._markers.append(marker)

            if marker.kind is MarkerKind.SINGLET_PENDING:
                self._request_image(marker)

        self._last_zoom = projection.zoom_level()
        self.last_skipped = result.skipped

        if result.skipped:
            logger.warning("Some locations could not be projected", skipped=result.skipped)

        logger.info(
            "Recalculated markers",
            num_friends=len(friends),
            num_locations=len(locations),
            num_markers=len(self._markers),
            skipped=result.skipped,
            zoom=self._last_zoom,
        )

    # ------------------------------------------------------------------
    # Icons
    # ------------------------------------------------------------------

    def _is_current(self, marker: MarkerDescriptor) -> bool:
        return marker.is_attached and any(m is marker for m in self._markers)

    def _request_image(self, marker: MarkerDescriptor) -> None:
        image_ref = marker.first_friend.image_ref
        if self._image_loader is None or not image_ref:
            return
        if image_ref in self._failed_refs:
            logger.debug("Not retrying failed image", image_ref=image_ref)
            return

        def on_result(image: Any) -> None:
            self._context.post(lambda: self._apply_icon(marker, image_ref, image))

        def on_failure(error: ImageLoadFailure) -> None:
            self._context.post(lambda: self._image_failed(marker, error))

        self.image_requests += 1
        try:
            self._image_loader.load(image_ref, on_result, on_failure)
        except Exception as e:
            self._image_failed(marker, ImageLoadFailure(image_ref, e))

    def _apply_icon(self, marker: MarkerDescriptor, image_ref: str, image: Any) -> None:
        self._image_cache[image_ref] = image

        if not self._is_current(marker):
            logger.debug("Ignoring image for a superseded marker", image_ref=image_ref)
            return

        self._attached_surface.set_icon(marker.handle, image)
        marker.icon = image
        marker.kind = MarkerKind.SINGLET_RESOLVED

    def _image_failed(self, marker: MarkerDescriptor, error: ImageLoadFailure) -> None:
        self._failed_refs.add(error.image_ref)
        logger.warning(
            "Image load failed, keeping default icon",
            image_ref=error.image_ref,
            error=str(error.cause or error),
        )
