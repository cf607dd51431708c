"""
Saving and restoring the friends list.
"""
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List

from pydantic import ValidationError

from friendmap.core.exceptions import SnapshotError
from friendmap.core.models import Friend, FriendSnapshot
from friendmap.utils.logger import logger


def friends_to_payload(friends: Iterable[Friend]) -> Dict[str, Any]:
    """Serialize friends into a JSON-compatible dict. Resolved images are not kept."""
    snapshot = FriendSnapshot(friends=list(friends))
    return snapshot.model_dump(mode="json")


def friends_from_payload(payload: Any) -> List[Friend]:
    """
    Rebuild friends from a saved payload.

    Accepts either a snapshot document or a bare list of friend dicts.

    Raises:
        SnapshotError: If the payload doesn't validate
    """
    if payload is None:
        raise SnapshotError("No saved friends found")

    try:
        if isinstance(payload, list):
            return [Friend.model_validate(item) for item in payload]
        return FriendSnapshot.model_validate(payload).friends
    except ValidationError as e:
        raise SnapshotError(f"Invalid friends snapshot: {e}") from e


def save_snapshot(path: Path, friends: Iterable[Friend]) -> Path:
    """Write friends to a JSON file."""
    payload = friends_to_payload(friends)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(payload, f, indent=2)

    logger.info("Saved friends snapshot", path=str(path), total=len(payload["friends"]))
    return path


def load_snapshot(path: Path) -> List[Friend]:
    """
    Load friends from a JSON file written by save_snapshot.

    Raises:
        SnapshotError: If the file is missing, not JSON, or doesn't validate
    """
    try:
        with open(path, "r") as f:
            payload = json.load(f)
    except FileNotFoundError as e:
        raise SnapshotError(f"Snapshot file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise SnapshotError(f"Snapshot file is not valid JSON: {path}: {e}") from e

    friends = friends_from_payload(payload)
    logger.info("Loaded friends snapshot", path=str(path), total=len(friends))
    return friends
