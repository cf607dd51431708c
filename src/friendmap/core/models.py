"""
Data models for friends, coordinates and the locations they are grouped into.
Pydantic models validate external data; Location is an internal immutable value.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Tuple, Any
from pydantic import BaseModel, Field, field_validator, ConfigDict


class Coordinate(BaseModel):
    """A geographic coordinate. Equality is exact on both components."""

    lat: float = Field(..., ge=-90.0, le=90.0, description="Latitude in degrees")
    lng: float = Field(..., ge=-180.0, le=180.0, description="Longitude in degrees")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"({self.lat:.6f}, {self.lng:.6f})"


class Friend(BaseModel):
    """
    A person to be shown on the map.

    The profile image is resolved lazily: `image_ref` points at the picture and
    `image` holds the decoded bitmap once some collaborator has produced it.
    """

    friend_id: str = Field(..., min_length=1, description="Stable identifier")
    name: str = Field(..., description="Display name")
    coordinate: Coordinate = Field(..., description="Where the friend is")
    image_ref: Optional[str] = Field(None, description="Profile picture reference (e.g. URL)")
    image: Optional[Any] = Field(None, exclude=True, description="Resolved bitmap, if any")

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
    )

    @field_validator("friend_id")
    @classmethod
    def validate_friend_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Friend id cannot be blank")
        return v

    @property
    def image_loaded(self) -> bool:
        """Whether the profile picture is already available as a bitmap."""
        return self.image is not None


@dataclass(frozen=True)
class Location:
    """
    All friends that share one exact coordinate.

    Built fresh on every recomputation and never mutated afterwards.
    """

    coordinate: Coordinate
    friends: Tuple[Friend, ...]

    def __post_init__(self):
        if not self.friends:
            raise ValueError("A location must hold at least one friend")

    def __len__(self) -> int:
        return len(self.friends)

    @property
    def first_friend(self) -> Friend:
        return self.friends[0]


class FriendSnapshot(BaseModel):
    """
    Saved friends list.
    Used for saving/loading manager state with validation.
    """

    friends: List[Friend] = Field(default_factory=list, description="Saved friends")
    saved_at: datetime = Field(default_factory=datetime.utcnow)
    format_version: str = Field(default="1.0", description="Snapshot format version")

    model_config = ConfigDict(validate_assignment=True)

    @property
    def total_friends(self) -> int:
        return len(self.friends)
