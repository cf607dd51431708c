"""
FriendMap - zoom-aware marker clustering for friends on a map.

Friends sharing a coordinate are grouped into locations, and locations that land
in the same pixel grid cell are merged into a single marker.
"""

__version__ = "0.1.0"

from friendmap.config import settings

__all__ = [
    "settings",
    "__version__",
]
