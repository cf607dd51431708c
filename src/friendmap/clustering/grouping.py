"""
Grouping of friends that share an exact coordinate.
"""
from typing import Dict, Iterable, List

from friendmap.core.models import Coordinate, Friend, Location


def group_entities(friends: Iterable[Friend]) -> List[Location]:
    """
    Partition friends into locations by exact coordinate equality.

    Locations come out in order of the first appearance of their coordinate, and
    friends within a location keep their input order.

    Args:
        friends: Friends to group

    Returns:
        One Location per distinct coordinate (empty for empty input)
    """
    buckets: Dict[Coordinate, List[Friend]] = {}
    for friend in friends:
        buckets.setdefault(friend.coordinate, []).append(friend)

    return [
        Location(coordinate=coordinate, friends=tuple(members))
        for coordinate, members in buckets.items()
    ]
