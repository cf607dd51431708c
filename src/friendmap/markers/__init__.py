"""
Map markers: descriptors, surfaces, image loading and the manager that ties them together.
"""

from friendmap.markers.descriptor import MarkerDescriptor, MarkerHue, MarkerKind
from friendmap.markers.dispatch import OwnerContext
from friendmap.markers.images import ImageLoader, ThreadedImageLoader
from friendmap.markers.manager import MarkerManager
from friendmap.markers.surface import InMemorySurface, RenderingSurface

__all__ = [
    "MarkerDescriptor",
    "MarkerHue",
    "MarkerKind",
    "OwnerContext",
    "ImageLoader",
    "ThreadedImageLoader",
    "MarkerManager",
    "InMemorySurface",
    "RenderingSurface",
]
