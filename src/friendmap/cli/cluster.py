"""Cluster command - Compute the markers a map view would show."""
import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from friendmap.core.exceptions import InvalidConfiguration, SnapshotError
from friendmap.core.models import Coordinate
from friendmap.data.snapshot import load_snapshot
from friendmap.geo.projection import WebMercatorProjection
from friendmap.markers.dispatch import OwnerContext
from friendmap.markers.manager import MarkerManager
from friendmap.markers.surface import InMemorySurface
from friendmap.utils.logger import logger

console = Console()


def cluster(
    friends_file: Path = typer.Argument(
        ...,
        help="Friends snapshot JSON file",
    ),
    lat: float = typer.Option(
        0.0,
        "--lat",
        help="Latitude of the map center",
    ),
    lng: float = typer.Option(
        0.0,
        "--lng",
        help="Longitude of the map center",
    ),
    zoom: float = typer.Option(
        2.0,
        "--zoom", "-z",
        help="Map zoom level (0 = whole world in one tile)",
    ),
    radius: Optional[int] = typer.Option(
        None,
        "--radius", "-r",
        help="Cluster cell size in pixels (default: from config)",
    ),
    width: int = typer.Option(
        1024,
        "--width",
        help="Viewport width in pixels",
    ),
    height: int = typer.Option(
        768,
        "--height",
        help="Viewport height in pixels",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Write the markers to this JSON file",
    ),
) -> None:
    """Cluster friends into markers for one map view."""
    console.print("[bold blue]FriendMap[/bold blue] - Clustering")
    console.print()

    if not friends_file.exists():
        console.print(f"[red]Error:[/red] Friends file not found: {friends_file}")
        raise typer.Exit(1)

    try:
        friends = load_snapshot(friends_file)
    except SnapshotError as e:
        console.print(f"[red]Error loading friends:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]Loaded {len(friends)} friends[/green]")

    try:
        projection = WebMercatorProjection(
            center=Coordinate(lat=lat, lng=lng),
            zoom=zoom,
            width=width,
            height=height,
        )
        context = OwnerContext()
        manager = MarkerManager(context, cluster_radius=radius)
    except (InvalidConfiguration, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    surface = InMemorySurface(projection)
    manager.bind_surface(surface)
    manager.set_entities(friends)
    context.run_pending()

    logger.info(
        "Clustering complete",
        num_markers=len(manager.markers),
        skipped=manager.last_skipped,
        zoom=zoom,
    )

    table = Table(title=f"Markers at zoom {zoom:g} (radius {manager.cluster_radius}px)")
    table.add_column("Latitude", style="cyan", justify="right")
    table.add_column("Longitude", style="cyan", justify="right")
    table.add_column("Title", style="green")
    table.add_column("Kind")
    table.add_column("Friends", justify="right")
    table.add_column("Locations", justify="right")

    for marker in manager.markers:
        table.add_row(
            f"{marker.position.lat:.6f}",
            f"{marker.position.lng:.6f}",
            marker.title,
            marker.kind.value,
            str(marker.num_friends),
            str(marker.num_locations),
        )

    console.print(table)

    if manager.last_skipped:
        console.print(
            f"[yellow]Warning:[/yellow] {manager.last_skipped} locations are outside the projection and were skipped"
        )

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output_data = {
            "center": {"lat": lat, "lng": lng},
            "zoom": zoom,
            "radius": manager.cluster_radius,
            "skipped": manager.last_skipped,
            "markers": [marker.to_dict() for marker in manager.markers],
            "source_friends_file": str(friends_file),
            "created_at": datetime.now().isoformat(),
        }
        with open(output, "w") as f:
            json.dump(output_data, f, indent=2, default=str)
        console.print(f"\nSaved markers to: {output}")
