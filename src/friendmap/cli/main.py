"""Main CLI application."""
import typer

from friendmap.cli.group import group
from friendmap.cli.cluster import cluster

app = typer.Typer(
    name="friendmap",
    help="Group friends by location and cluster them into map markers.",
    add_completion=False,
)

app.command()(group)
app.command()(cluster)


if __name__ == "__main__":
    app()
