"""Group command - Show which friends share a location."""
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from friendmap.clustering.grouping import group_entities
from friendmap.core.exceptions import SnapshotError
from friendmap.data.snapshot import load_snapshot
from friendmap.utils.logger import logger

console = Console()


def group(
    friends_file: Path = typer.Argument(
        ...,
        help="Friends snapshot JSON file",
    ),
) -> None:
    """List the distinct locations in a friends snapshot."""
    console.print("[bold blue]FriendMap[/bold blue] - Locations")
    console.print()

    if not friends_file.exists():
        console.print(f"[red]Error:[/red] Friends file not found: {friends_file}")
        raise typer.Exit(1)

    try:
        friends = load_snapshot(friends_file)
    except SnapshotError as e:
        console.print(f"[red]Error loading friends:[/red] {e}")
        raise typer.Exit(1)

    locations = group_entities(friends)
    logger.info("Grouped friends", friends=len(friends), locations=len(locations))

    table = Table(title=f"{len(locations)} locations, {len(friends)} friends")
    table.add_column("Latitude", style="cyan", justify="right")
    table.add_column("Longitude", style="cyan", justify="right")
    table.add_column("Friends", style="green", justify="right")
    table.add_column("Names")

    for location in locations:
        table.add_row(
            f"{location.coordinate.lat:.6f}",
            f"{location.coordinate.lng:.6f}",
            str(len(location)),
            ", ".join(friend.name for friend in location.friends),
        )

    console.print(table)
