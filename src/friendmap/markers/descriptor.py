"""
Marker descriptors: one visual marker per cluster of locations.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional

from friendmap.core.models import Coordinate, Friend, Location


class MarkerKind(str, Enum):
    """How a marker gets its icon."""
    SINGLET_RESOLVED = "singlet_resolved"
    SINGLET_PENDING = "singlet_pending"
    AGGREGATE = "aggregate"


class MarkerHue(str, Enum):
    """Default pin colour used until (or instead of) a profile picture."""
    DEFAULT = "default"
    AZURE = "azure"
    ORANGE = "orange"


@dataclass(eq=False)
class MarkerDescriptor:
    """
    A cluster of locations shown as a single marker.

    Descriptors compare by identity: a completion callback holding an old
    descriptor must never match one built by a later pass.
    """

    position: Coordinate
    locations: List[Location]
    kind: MarkerKind = MarkerKind.AGGREGATE
    icon: Optional[Any] = None
    handle: Optional[Any] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.locations:
            raise ValueError("A marker must aggregate at least one location")

    @classmethod
    def build(
        cls,
        position: Coordinate,
        locations: List[Location],
        image_cache: Optional[Mapping[str, Any]] = None,
    ) -> "MarkerDescriptor":
        """
        Create a descriptor and decide its kind once.

        Args:
            position: Where the marker is drawn
            locations: Locations merged into this marker
            image_cache: Images already loaded, keyed by image reference
        """
        marker = cls(position=position, locations=list(locations))
        if marker.num_friends == 1:
            friend = marker.first_friend
            image = friend.image
            if image is None and image_cache and friend.image_ref:
                image = image_cache.get(friend.image_ref)
            if image is not None:
                marker.kind = MarkerKind.SINGLET_RESOLVED
                marker.icon = image
            else:
                marker.kind = MarkerKind.SINGLET_PENDING
        return marker

    @property
    def num_friends(self) -> int:
        """Sum of friends across all locations in this marker."""
        return sum(len(location) for location in self.locations)

    @property
    def num_locations(self) -> int:
        return len(self.locations)

    @property
    def first_friend(self) -> Optional[Friend]:
        """First friend of the first non-empty location."""
        for location in self.locations:
            if location.friends:
                return location.friends[0]
        return None

    @property
    def title(self) -> str:
        count = self.num_friends
        if count > 1:
            return f"{count} friends..."
        if count == 1:
            return self.first_friend.name
        return "?"

    @property
    def hue(self) -> MarkerHue:
        if self.num_locations > 1:
            return MarkerHue.ORANGE
        if self.num_friends > 1:
            return MarkerHue.AZURE
        return MarkerHue.DEFAULT

    @property
    def is_attached(self) -> bool:
        return self.handle is not None

    def to_dict(self) -> dict:
        """Plain representation for output files."""
        return {
            "lat": self.position.lat,
            "lng": self.position.lng,
            "title": self.title,
            "kind": self.kind.value,
            "hue": self.hue.value,
            "num_friends": self.num_friends,
            "num_locations": self.num_locations,
            "friend_ids": [f.friend_id for loc in self.locations for f in loc.friends],
        }
