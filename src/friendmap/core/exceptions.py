"""
Custom exceptions for the FriendMap application.
"""


class FriendMapError(Exception):
    """Base exception for all FriendMap errors."""
    pass


class InvalidConfiguration(FriendMapError):
    """Raised when a component is constructed with unusable parameters."""
    pass


class ProjectionUnavailable(FriendMapError):
    """Raised when no projection is available yet (e.g. before first layout)."""
    pass


class UnprojectableLocation(FriendMapError):
    """Raised when a coordinate cannot be mapped into pixel space."""

    def __init__(self, coordinate):
        self.coordinate = coordinate
        super().__init__(f"Coordinate cannot be projected: {coordinate}")


class ImageLoadFailure(FriendMapError):
    """Raised when a marker image could not be loaded."""

    def __init__(self, image_ref: str, cause: Exception = None):
        self.image_ref = image_ref
        self.cause = cause
        message = f"Failed to load image {image_ref}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class SnapshotError(FriendMapError):
    """Raised when a saved friends snapshot cannot be read."""
    pass
