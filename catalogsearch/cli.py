"""CLI interface for catalog search."""

import json

import typer

from .catalog.orchestrator import build_orchestrator
from .config import get_settings, setup_logging
from .errors import CatalogSearchError, FilterValidationError
from .model import Availability, SortBy

app = typer.Typer(help="Storefront catalog search")


@app.command()
def search(
    query: str | None = typer.Argument(None, help="Free-text query"),
    category: str | None = typer.Option(
        None,
        "--category",
        "-c",
        help="Category handle; the category and all of its descendants match.",
    ),
    category_id: str | None = typer.Option(
        None, "--category-id", help="Category id (wins over --category)"
    ),
    availability: Availability = typer.Option(
        Availability.all, "--availability", "-a", help="Stock filter"
    ),
    price_min: float | None = typer.Option(None, "--price-min", help="Minimum price"),
    price_max: float | None = typer.Option(None, "--price-max", help="Maximum price"),
    tag: list[str] = typer.Option(
        [], "--tag", "-t", help="Tag filter; repeat for any-of matching."
    ),
    collection_id: str | None = typer.Option(None, "--collection-id"),
    sort_by: SortBy = typer.Option(SortBy.created_at, "--sort", "-s"),
    page: int = typer.Option(1, "--page", "-p", min=1),
    limit: int | None = typer.Option(None, "--limit", "-l", min=1),
    country_code: str | None = typer.Option(None, "--country", help="Country code"),
    fallback_only: bool = typer.Option(
        False,
        "--fallback-only",
        help="Skip the search index and query the relational store directly.",
    ),
    trace: bool = typer.Option(
        False, "--trace", help="Report which path served the request on stderr."
    ),
    output: str | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file path. If not specified, prints to stdout.",
    ),
):
    """Search the catalog and output the response as JSON."""
    settings = get_settings()
    setup_logging(settings)

    orchestrator = build_orchestrator(settings, use_index=not fallback_only)

    try:
        result = orchestrator.search_with_trace(
            {
                "query": query,
                "category_id": category_id,
                "category_handle": category,
                "availability": availability,
                "price_min": price_min,
                "price_max": price_max,
                "tags": tag,
                "collection_id": collection_id,
                "sort_by": sort_by,
                "page": page,
                "limit": limit or settings.default_page_size,
                "country_code": country_code,
            }
        )
    except FilterValidationError as e:
        typer.echo(f"Error: Invalid search: {e}", err=True)
        raise typer.Exit(2)

    if trace:
        states = " -> ".join(state.value for state in result.states)
        typer.echo(f"Served by {result.served_by} ({states})", err=True)
        for error in result.errors:
            typer.echo(f"  {error}", err=True)

    json_output = json.dumps(
        result.response.model_dump(mode="json", by_alias=True),
        indent=2,
        ensure_ascii=False,
    )

    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(json_output)
        typer.echo(
            f"Wrote {len(result.response.products)} of "
            f"{result.response.total_count} products to {output}"
        )
    else:
        typer.echo(json_output)


@app.command()
def categories(
    category: str | None = typer.Argument(
        None,
        help="Category handle or id. If not specified, shows the category tree.",
    ),
):
    """Show the category tree, or every category id below a category."""
    settings = get_settings()
    setup_logging(settings)

    orchestrator = build_orchestrator(settings)

    if category is None:

        def show(nodes, indent: int = 0) -> None:
            for node in nodes:
                typer.echo(f"{'  ' * indent}- {node.name} ({node.total_count})")
                show(node.children, indent + 1)

        show(orchestrator.category_tree())
        return

    try:
        resolved = orchestrator.resolver.resolve(category)
    except CatalogSearchError as e:
        typer.echo(f"Error: Could not resolve category '{category}': {e}", err=True)
        raise typer.Exit(1)

    if not resolved:
        typer.echo(f"Error: Unknown category '{category}'", err=True)
        raise typer.Exit(1)

    for category_id in sorted(resolved.ids):
        record = resolved.records.get(category_id)
        typer.echo(f"{category_id}\t{record.name if record else ''}")

    if resolved.truncated:
        typer.echo("Warning: category tree was truncated", err=True)


@app.command()
def serve():
    """Run the HTTP server."""
    from .server.main import run_server

    run_server()


if __name__ == "__main__":
    app()
