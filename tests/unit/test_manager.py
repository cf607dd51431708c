"""
Unit tests for MarkerManager.
"""
import random
import threading
from dataclasses import dataclass
from typing import Optional
from unittest.mock import Mock

import pytest

from friendmap.config import settings
from friendmap.core.exceptions import ImageLoadFailure, InvalidConfiguration, SnapshotError
from friendmap.core.models import Coordinate, Friend
from friendmap.geo.projection import PixelPoint, WebMercatorProjection
from friendmap.markers.descriptor import MarkerKind
from friendmap.markers.dispatch import OwnerContext
from friendmap.markers.images import ThreadedImageLoader
from friendmap.markers.manager import MarkerManager
from friendmap.markers.surface import InMemorySurface


@dataclass(frozen=True)
class LinearProjection:
    """x = lng * scale + offset, y = -lat * scale. Zoom is the scale."""

    scale: float = 1.0
    offset: float = 0.0

    def to_pixel(self, coordinate: Coordinate) -> Optional[PixelPoint]:
        if abs(coordinate.lat) > 80.0:
            return None
        return PixelPoint(coordinate.lng * self.scale + self.offset, -coordinate.lat * self.scale)

    def to_coordinate(self, point: PixelPoint) -> Coordinate:
        return Coordinate(lat=-point.y / self.scale, lng=(point.x - self.offset) / self.scale)

    def zoom_level(self) -> float:
        return self.scale


class RecordingSurface(InMemorySurface):
    """InMemorySurface that logs every attach/detach/set_icon call."""

    def __init__(self, projection=None):
        super().__init__(projection)
        self.events = []

    def attach(self, descriptor):
        handle = super().attach(descriptor)
        self.events.append(("attach", handle))
        return handle

    def detach(self, handle):
        super().detach(handle)
        self.events.append(("detach", handle))

    def set_icon(self, handle, image):
        super().set_icon(handle, image)
        self.events.append(("set_icon", handle))


def make_friend(friend_id: str, lat: float, lng: float, **kwargs) -> Friend:
    return Friend(friend_id=friend_id, name=friend_id, coordinate=Coordinate(lat=lat, lng=lng), **kwargs)


@pytest.fixture
def context():
    return OwnerContext()


@pytest.fixture
def surface():
    return RecordingSurface(LinearProjection())


@pytest.fixture
def loader():
    return Mock()


@pytest.fixture
def manager(context, surface, loader):
    manager = MarkerManager(context, cluster_radius=100, image_loader=loader)
    manager.bind_surface(surface)
    context.run_pending()
    return manager


@pytest.fixture
def clustered_friends():
    return [
        make_friend("A", 1.0, 1.0),
        make_friend("B", 1.0, 1.0),
        make_friend("C", 5.0, 5.0),
    ]


class TestMarkerManagerSetup:
    """Construction and binding."""

    @pytest.mark.parametrize("radius", [0, -10, float("nan"), float("inf")])
    def test_non_positive_radius_rejected(self, context, radius):
        with pytest.raises(InvalidConfiguration):
            MarkerManager(context, cluster_radius=radius)

    def test_default_radius_from_settings(self, context):
        manager = MarkerManager(context)

        assert manager.cluster_radius == settings.CLUSTER_RADIUS_PX
        assert manager.is_empty()
        assert manager.markers == ()

    def test_rebinding_same_surface_is_noop(self, manager, context, surface):
        manager.bind_surface(surface)

        assert context.pending() == 0

    def test_rebinding_new_surface_moves_markers(self, manager, context, surface, clustered_friends):
        manager.set_entities(clustered_friends)
        context.run_pending()
        other = InMemorySurface(LinearProjection())

        manager.bind_surface(other)
        context.run_pending()

        assert surface.markers == {}
        assert len(other.markers) == 1
        assert manager.surface is other

    def test_old_surface_camera_changes_are_ignored(self, manager, context, surface, clustered_friends):
        manager.set_entities(clustered_friends)
        context.run_pending()
        other = InMemorySurface(LinearProjection())
        manager.bind_surface(other)
        context.run_pending()

        surface.set_projection(LinearProjection(scale=40.0))

        assert context.pending() == 0
        assert manager.last_zoom == 1.0

    def test_pass_without_surface_is_deferred(self, context, clustered_friends):
        manager = MarkerManager(context, cluster_radius=100)
        manager.set_entities(clustered_friends)
        context.run_pending()

        assert manager.is_deferred
        assert manager.markers == ()

        surface = InMemorySurface(LinearProjection())
        manager.bind_surface(surface)
        context.run_pending()

        assert not manager.is_deferred
        assert len(surface.markers) == 1


class TestRecomputation:
    """Rebuilding markers from friends."""

    def test_scenario_one_cluster_of_three(self, manager, context, surface, clustered_friends):
        manager.set_entities(clustered_friends)
        context.run_pending()

        assert len(manager.markers) == 1
        marker = manager.markers[0]
        assert marker.num_friends == 3
        assert marker.kind is MarkerKind.AGGREGATE
        assert marker.title == "3 friends..."
        assert [m.title for m in surface.markers.values()] == ["3 friends..."]

    def test_scenario_resolved_singlet_skips_loading(self, manager, context, surface, loader):
        manager.set_entities([make_friend("D", 2.0, 2.0, image="d-pic", image_ref="http://img/d")])
        context.run_pending()

        (marker,) = manager.markers
        assert marker.kind is MarkerKind.SINGLET_RESOLVED
        assert marker.num_locations == 1
        assert marker.num_friends == 1
        assert surface.markers[marker.handle].icon == "d-pic"
        loader.load.assert_not_called()

    def test_scenario_empty(self, manager, context, surface):
        manager.set_entities([])
        context.run_pending()

        assert manager.markers == ()
        assert surface.markers == {}

    def test_scenario_remove_all_markers(self, manager, context, surface, clustered_friends):
        manager.set_entities(clustered_friends + [make_friend("Z", -40.0, 120.0)])
        context.run_pending()
        attached = len(surface.markers)
        assert attached == 2

        manager.remove_all_markers()
        context.run_pending()

        assert manager.is_empty()
        assert manager.friends == ()
        assert surface.markers == {}
        assert surface.detach_count == attached

    def test_total_friend_count_matches(self, context, loader):
        rng = random.Random(3)
        friends = [
            make_friend(f"f{i}", float(rng.randint(-50, 50)), float(rng.randint(-150, 150)))
            for i in range(250)
        ]
        surface = InMemorySurface(LinearProjection(scale=2.0))
        manager = MarkerManager(context, cluster_radius=40, image_loader=loader)
        manager.bind_surface(surface)
        manager.set_entities(friends)
        context.run_pending()

        assert sum(m.num_friends for m in manager.markers) == len(friends)
        assert len(surface.markers) == len(manager.markers)

    def test_unprojectable_friends_are_reported(self, manager, context, clustered_friends):
        manager.set_entities(clustered_friends + [make_friend("pole", 89.0, 0.0)])
        context.run_pending()

        assert manager.last_skipped == 1
        assert sum(m.num_friends for m in manager.markers) == 3

    def test_detach_precedes_attach(self, manager, context, surface, clustered_friends):
        manager.set_entities(clustered_friends)
        context.run_pending()
        surface.events.clear()

        manager.set_entities(clustered_friends + [make_friend("Z", -40.0, 120.0)])
        context.run_pending()

        kinds = [kind for kind, _ in surface.events]
        assert kinds == ["detach", "attach", "attach"]

    def test_triggers_coalesce_and_last_set_wins(self, manager, context, surface):
        manager.set_entities([make_friend("x", 1.0, 1.0)])
        manager.set_entities([make_friend("y", 1.0, 1.0), make_friend("z", 1.0, 1.0)])
        manager.set_entities([make_friend("w", -30.0, 60.0), make_friend("v", 1.0, 1.0)])

        assert context.pending() == 1
        context.run_pending()

        ids = sorted(f.friend_id for m in manager.markers for loc in m.locations for f in loc.friends)
        assert ids == ["v", "w"]
        assert surface.attach_count == 2

    def test_set_entities_from_worker_thread(self, manager, context, clustered_friends):
        worker = threading.Thread(target=manager.set_entities, args=(clustered_friends,))
        worker.start()
        worker.join()

        assert context.run_pending() == 1
        assert manager.markers[0].num_friends == 3


    def test_radius_wider_than_the_world(self, context, clustered_friends):
        surface = InMemorySurface(WebMercatorProjection(center=Coordinate(lat=0.0, lng=0.0), zoom=0))
        manager = MarkerManager(context, cluster_radius=100000)
        manager.bind_surface(surface)
        manager.set_entities(clustered_friends)
        context.run_pending()

        assert sum(m.num_friends for m in manager.markers) == 3
        assert len(surface.markers) == 1

    def test_failed_clustering_keeps_previous_markers(self, manager, context, surface, clustered_friends, monkeypatch):
        manager.set_entities(clustered_friends)
        context.run_pending()

        def broken(self, locations):
            raise RuntimeError("projection failed")

        monkeypatch.setattr("friendmap.markers.manager.GridClusterizer.find_clusters", broken)
        manager.set_entities(clustered_friends[:1])
        context.run_pending()

        assert len(surface.markers) == 1
        assert manager.markers[0].num_friends == 3


class TestProjectionChanges:
    """Camera listener behaviour."""

    def test_pan_does_not_rebuild(self, manager, context, surface, clustered_friends):
        manager.set_entities(clustered_friends)
        context.run_pending()

        surface.set_projection(LinearProjection(scale=1.0, offset=30.0))

        assert context.pending() == 0

    def test_zoom_rebuilds(self, manager, context, surface, clustered_friends):
        manager.set_entities(clustered_friends)
        context.run_pending()
        assert len(manager.markers) == 1

        surface.set_projection(LinearProjection(scale=40.0))
        assert context.pending() == 1
        context.run_pending()

        assert manager.last_zoom == 40.0
        assert len(manager.markers) == 2

    def test_deferred_pass_retried_on_projection(self, context, clustered_friends):
        surface = InMemorySurface()
        manager = MarkerManager(context, cluster_radius=100)
        manager.bind_surface(surface)
        manager.set_entities(clustered_friends)
        context.run_pending()

        assert manager.is_deferred
        assert surface.markers == {}

        surface.set_projection(LinearProjection())
        context.run_pending()

        assert len(surface.markers) == 1
        assert manager.last_zoom == 1.0


class TestImageLoading:
    """Async icon loading for single-friend markers."""

    @pytest.fixture
    def pending_friend(self):
        return make_friend("E", 3.0, 3.0, image_ref="http://img/e")

    def test_single_request_and_icon_update(self, manager, context, surface, loader, pending_friend):
        manager.set_entities([pending_friend])
        context.run_pending()

        assert loader.load.call_count == 1
        image_ref, on_result, on_failure = loader.load.call_args.args
        assert image_ref == "http://img/e"

        (marker,) = manager.markers
        assert marker.kind is MarkerKind.SINGLET_PENDING

        on_result("e-pic")
        context.run_pending()

        assert surface.markers[marker.handle].icon == "e-pic"
        assert marker.icon == "e-pic"
        assert marker.kind is MarkerKind.SINGLET_RESOLVED

    def test_completion_is_marshaled_to_owner(self, manager, context, surface, loader, pending_friend):
        manager.set_entities([pending_friend])
        context.run_pending()
        _, on_result, _ = loader.load.call_args.args

        worker = threading.Thread(target=on_result, args=("e-pic",))
        worker.start()
        worker.join()

        (marker,) = manager.markers
        assert surface.markers[marker.handle].icon is None
        context.run_pending()
        assert surface.markers[marker.handle].icon == "e-pic"

    def test_superseded_callback_is_ignored(self, manager, context, surface, loader, pending_friend):
        manager.set_entities([pending_friend])
        context.run_pending()
        _, on_result, _ = loader.load.call_args.args

        manager.set_entities([make_friend("F", 3.0, 3.0, image="f-pic")])
        context.run_pending()
        surface.events.clear()

        on_result("late-e-pic")
        context.run_pending()

        assert surface.events == []
        assert [m.icon for m in surface.markers.values()] == ["f-pic"]

    def test_loaded_image_is_reused(self, manager, context, surface, loader, pending_friend):
        manager.set_entities([pending_friend])
        context.run_pending()
        _, on_result, _ = loader.load.call_args.args
        on_result("e-pic")
        context.run_pending()

        surface.set_projection(LinearProjection(scale=2.0))
        context.run_pending()

        assert loader.load.call_count == 1
        (marker,) = manager.markers
        assert marker.kind is MarkerKind.SINGLET_RESOLVED
        assert surface.markers[marker.handle].icon == "e-pic"

    def test_cache_forgets_friends_no_longer_shown(self, manager, context, loader, pending_friend):
        manager.set_entities([pending_friend])
        context.run_pending()
        _, on_result, _ = loader.load.call_args.args
        on_result("e-pic")
        context.run_pending()

        manager.set_entities([make_friend("H", -40.0, 120.0)])
        context.run_pending()
        manager.set_entities([pending_friend])
        context.run_pending()

        assert loader.load.call_count == 2
        assert manager.markers[0].kind is MarkerKind.SINGLET_PENDING

    def test_failure_keeps_default_icon_without_retry(self, manager, context, surface, loader, pending_friend):
        manager.set_entities([pending_friend])
        context.run_pending()
        _, _, on_failure = loader.load.call_args.args

        on_failure(ImageLoadFailure("http://img/e", IOError("timeout")))
        context.run_pending()

        (marker,) = manager.markers
        assert marker.icon is None
        assert surface.markers[marker.handle].icon is None

        surface.set_projection(LinearProjection(scale=2.0))
        context.run_pending()
        assert loader.load.call_count == 1

        manager.set_entities([pending_friend])
        context.run_pending()
        assert loader.load.call_count == 2

    def test_loader_raising_does_not_break_pass(self, manager, context, surface, loader, pending_friend):
        loader.load.side_effect = RuntimeError("executor closed")

        manager.set_entities([pending_friend, make_friend("G", -40.0, 120.0)])
        context.run_pending()

        assert len(surface.markers) == 2

    def test_no_loader_means_no_requests(self, context, pending_friend):
        surface = InMemorySurface(LinearProjection())
        manager = MarkerManager(context, cluster_radius=100)
        manager.bind_surface(surface)
        manager.set_entities([pending_friend])
        context.run_pending()

        assert manager.image_requests == 0
        assert manager.markers[0].kind is MarkerKind.SINGLET_PENDING

    def test_threaded_loader_end_to_end(self, context, pending_friend):
        surface = InMemorySurface(LinearProjection())
        with ThreadedImageLoader(fetch=lambda ref: f"bitmap:{ref}", max_workers=2) as loader:
            manager = MarkerManager(context, cluster_radius=100, image_loader=loader)
            manager.bind_surface(surface)
            manager.set_entities([pending_friend])
            context.run_pending()

            (marker,) = manager.markers
            assert context.run_until(lambda: marker.icon is not None, timeout=2.0)

        assert surface.markers[marker.handle].icon == "bitmap:http://img/e"


class TestStateSnapshot:
    """save_to / load_from."""

    def test_round_trip_through_state(self, manager, context, clustered_friends):
        manager.set_entities(clustered_friends)
        state = {}
        manager.save_to(state)

        assert settings.SNAPSHOT_KEY in state

        restored = MarkerManager(context, cluster_radius=100)
        restored.load_from(state)

        assert [f.friend_id for f in restored.friends] == ["A", "B", "C"]
        assert restored.friends[2].coordinate == Coordinate(lat=5.0, lng=5.0)

    def test_load_from_missing_state(self, context):
        manager = MarkerManager(context, cluster_radius=100)

        with pytest.raises(SnapshotError):
            manager.load_from({})
