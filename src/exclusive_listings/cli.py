"""CLI interface for exclusive-listings."""

import json
import logging
import mimetypes
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from exclusive_listings import __version__
from exclusive_listings.config import Settings, load_settings
from exclusive_listings.database.engine import get_session, get_session_factory, init_db
from exclusive_listings.models.pydantic_models import (
    AssetRecord,
    ListingCreate,
    OptimizeResult,
    UploadRequest,
)
from exclusive_listings.services.errors import ExclusiveListingsError
from exclusive_listings.services.listing_service import ListingService
from exclusive_listings.services.media_service import MediaService, register_deletion_handler
from exclusive_listings.services.reconciler import Reconciler
from exclusive_listings.services.summary_service import SummaryService
from exclusive_listings.storage.blob_store import LocalBlobStore, create_blob_store

app = typer.Typer(
    name="exclusive-listings",
    help="Exclusive real-estate listings: id allocation and photo management",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)

# Options given to the top-level callback
_state: dict[str, Any] = {"config": None}


def output_json(data: Any) -> None:
    """Output JSON to stdout (for LLM consumption)."""
    print(json.dumps(data, indent=2, ensure_ascii=False))


def photo_to_dict(photo: AssetRecord) -> dict[str, Any]:
    """Convert an AssetRecord to a JSON-serializable dict."""
    return {
        "id": photo.id,
        "url": photo.url,
        "sort_order": photo.order_index,
        "is_primary": photo.is_primary,
        "mime_type": photo.mime_type,
        "width": photo.width,
        "height": photo.height,
        "title": photo.title,
        "alt_text": photo.alt_text,
    }


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"exclusive-listings version {__version__}")
        raise typer.Exit()


def _settings() -> Settings:
    return load_settings(_state["config"])


def _blob_store(settings: Settings) -> LocalBlobStore:
    """Build the configured blob store with the out-of-band deletion handler attached."""
    store = create_blob_store(settings.storage)
    register_deletion_handler(store, get_session_factory(), settings)
    return store


def _fail(error: Exception, json_output: bool) -> NoReturn:
    """Report a service error and exit with status 1."""
    if json_output:
        output_json({"error": str(error), "code": getattr(error, "code", None)})
    else:
        console.print(f"[red]Error: {error}[/red]")
    raise typer.Exit(1) from error


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to settings YAML (default: config/settings.yaml).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Log service activity to stderr.",
    ),
) -> None:
    """Exclusive listings: id allocation and photo management."""
    _state["config"] = config
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
            force=True,
        )


@app.command()
def init_database(
    db_path: Path | None = typer.Option(
        None,
        "--db",
        "-d",
        help="Path to SQLite database file.",
    ),
    echo: bool = typer.Option(
        False,
        "--echo",
        help="Show SQL statements.",
    ),
) -> None:
    """Initialize the database, creating all tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")

    try:
        engine = init_db(db_path, echo=echo)
        console.print(f"[green]Database initialized at: {engine.url.database or engine.url}[/green]")
    except Exception as e:
        console.print(f"[red]Error initializing database: {e}[/red]")
        raise typer.Exit(1) from e


@app.command()
def create_listing(
    street_number: str | None = typer.Option(None, "--street-number", help="House number."),
    street_name: str | None = typer.Option(None, "--street-name", help="Street name."),
    unit_number: str | None = typer.Option(None, "--unit", help="Unit number."),
    city: str | None = typer.Option(None, "--city", help="City."),
    state: str | None = typer.Option(None, "--state", help="State or province."),
    postal_code: str | None = typer.Option(None, "--postal-code", help="Postal code."),
    property_type: str | None = typer.Option(None, "--type", help="Property type."),
    price: int | None = typer.Option(None, "--price", help="List price in USD."),
    beds: int | None = typer.Option(None, "--beds", help="Bedrooms."),
    baths: float | None = typer.Option(None, "--baths", help="Bathrooms."),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for LLM/programmatic consumption).",
    ),
) -> None:
    """Create an exclusive listing under a newly allocated id."""
    init_db()
    settings = _settings()
    data = ListingCreate(
        street_number=street_number,
        street_name=street_name,
        unit_number=unit_number,
        city=city,
        state_or_province=state,
        postal_code=postal_code,
        property_type=property_type,
        list_price=price,
        bedrooms_total=beds,
        bathrooms_total=baths,
    )

    with get_session() as session:
        service = ListingService(session, _blob_store(settings), settings)
        try:
            listing = service.create_listing(data)
        except ExclusiveListingsError as e:
            _fail(e, json_output)

    if json_output:
        output_json(listing.model_dump(mode="json"))
        return
    console.print(f"[green]Created listing #{listing.id}[/green] (key {listing.listing_key})")


@app.command()
def next_id(
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for LLM/programmatic consumption).",
    ),
) -> None:
    """Preview the next listing id without consuming it."""
    init_db()
    settings = _settings()
    with get_session() as session:
        value = ListingService(session, _blob_store(settings), settings).peek_next_id()

    if json_output:
        output_json({"next_id": value})
        return
    console.print(f"Next listing id: [cyan]{value}[/cyan]")


@app.command()
def upload(
    listing_id: int = typer.Argument(..., help="Listing to add photos to."),
    files: list[Path] = typer.Argument(..., help="Image files to upload."),
    position: int | None = typer.Option(
        None,
        "--position",
        "-p",
        min=1,
        help="Insert the first file at this position, the rest after it.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for LLM/programmatic consumption).",
    ),
) -> None:
    """Upload photos to a listing."""
    init_db()
    settings = _settings()

    requests: list[UploadRequest] = []
    for offset, file in enumerate(files):
        if not file.is_file():
            console.print(f"[red]File not found: {file}[/red]")
            raise typer.Exit(1)
        mime_type, _ = mimetypes.guess_type(file.name)
        requests.append(
            UploadRequest.from_bytes(
                filename=file.name,
                data=file.read_bytes(),
                mime_type=mime_type or "application/octet-stream",
                explicit_order=position + offset if position is not None else None,
            )
        )

    with get_session() as session:
        service = MediaService(session, _blob_store(settings), settings)
        results = service.upload_batch(listing_id, requests)

    uploaded = sum(1 for r in results if r.success)
    failed = len(results) - uploaded

    if json_output:
        output_json({
            "results": [
                {
                    "filename": r.filename,
                    "success": r.success,
                    "data": photo_to_dict(r.asset) if r.asset else None,
                    "error": r.error,
                    "error_code": r.error_code,
                }
                for r in results
            ],
            "uploaded": uploaded,
            "failed": failed,
        })
    else:
        for r in results:
            if r.success and r.asset:
                console.print(
                    f"[green]OK[/green] {r.filename} -> #{r.asset.id} "
                    f"(position {r.asset.order_index}) {r.asset.url}"
                )
            else:
                console.print(f"[red]FAILED[/red] {r.filename}: {r.error}")
        console.print(f"[bold]{uploaded} uploaded, {failed} failed[/bold]")

    if failed:
        raise typer.Exit(1)


@app.command()
def photos(
    listing_id: int = typer.Argument(..., help="Listing ID."),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for LLM/programmatic consumption).",
    ),
) -> None:
    """Show a listing's photos in display order."""
    init_db()
    settings = _settings()
    with get_session() as session:
        service = MediaService(session, _blob_store(settings), settings)
        try:
            records = service.get_photos(listing_id)
        except ExclusiveListingsError as e:
            _fail(e, json_output)

    if json_output:
        output_json({
            "listing_id": listing_id,
            "photos": [photo_to_dict(p) for p in records],
            "count": len(records),
        })
        return

    if not records:
        console.print("[yellow]No photos found.[/yellow]")
        return

    table = Table(title=f"Photos of listing #{listing_id} ({len(records)})")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("ID", style="white", justify="right")
    table.add_column("Type", style="magenta")
    table.add_column("Size", style="blue", justify="right")
    table.add_column("URL", style="green")

    for photo in records:
        size_str = f"{photo.width}x{photo.height}" if photo.width and photo.height else "-"
        table.add_row(
            f"{photo.order_index}{'*' if photo.is_primary else ''}",
            str(photo.id),
            photo.mime_type or "-",
            size_str,
            photo.url,
        )
    console.print(table)


@app.command()
def delete_photo(
    listing_id: int = typer.Argument(..., help="Listing ID."),
    asset_id: int = typer.Argument(..., help="Photo ID to delete."),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for LLM/programmatic consumption).",
    ),
) -> None:
    """Delete a photo and its file."""
    init_db()
    settings = _settings()
    with get_session() as session:
        service = MediaService(session, _blob_store(settings), settings)
        try:
            service.delete(listing_id, asset_id)
        except ExclusiveListingsError as e:
            _fail(e, json_output)

    if json_output:
        output_json({"success": True, "message": f"Photo {asset_id} deleted"})
        return
    console.print(f"[green]Deleted photo #{asset_id} from listing #{listing_id}[/green]")


@app.command()
def reorder(
    listing_id: int = typer.Argument(..., help="Listing ID."),
    asset_ids: list[int] = typer.Argument(..., help="Every photo ID, first photo first."),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for LLM/programmatic consumption).",
    ),
) -> None:
    """Set the display order of a listing's photos."""
    init_db()
    settings = _settings()
    with get_session() as session:
        service = MediaService(session, _blob_store(settings), settings)
        try:
            records = service.reorder(listing_id, asset_ids)
        except ExclusiveListingsError as e:
            _fail(e, json_output)

    if json_output:
        output_json({"listing_id": listing_id, "photos": [photo_to_dict(p) for p in records]})
        return
    console.print(f"[green]Reordered {len(records)} photos of listing #{listing_id}[/green]")


@app.command()
def reconcile(
    listing_id: int | None = typer.Option(
        None,
        "--listing",
        "-l",
        help="Only check this listing (default: all exclusive listings).",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for LLM/programmatic consumption).",
    ),
) -> None:
    """Remove photos whose stored files have disappeared."""
    init_db()
    settings = _settings()
    with get_session() as session:
        reconciler = Reconciler(session, _blob_store(settings), settings)
        try:
            result = reconciler.reconcile(listing_id)
        except ExclusiveListingsError as e:
            _fail(e, json_output)

    if json_output:
        output_json(result.model_dump(mode="json"))
        return

    details = [
        f"[bold]Checked:[/bold] {result.checked}",
        f"[bold]Orphaned:[/bold] {result.orphaned}",
        f"[bold]Cleaned:[/bold] {result.cleaned}",
        f"[bold]Errors:[/bold] {len(result.errors)}",
    ]
    if result.affected_listings:
        details.append(
            f"[bold]Listings fixed:[/bold] {', '.join(str(i) for i in result.affected_listings)}"
        )
    for error in result.errors:
        details.append(f"[red]{error}[/red]")
    console.print(Panel("\n".join(details), title="[bold blue]Reconciliation[/bold blue]", expand=False))


@app.command()
def blob_deleted(
    url: str = typer.Argument(..., help="Public URL of the removed file."),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for LLM/programmatic consumption).",
    ),
) -> None:
    """Report a file deleted outside the application and repair its listings."""
    init_db()
    handled = _blob_store(_settings()).notify_deleted(url)

    if json_output:
        output_json({"url": url, "handled": handled})
        return
    if handled:
        console.print(f"[green]Reconciled listings referencing {url}[/green]")
    else:
        console.print(f"[yellow]{url} is not managed by this store; nothing to do.[/yellow]")


@app.command()
def refresh_summaries(
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for LLM/programmatic consumption).",
    ),
) -> None:
    """Recompute the photo count and primary photo of every exclusive listing."""
    init_db()
    settings = _settings()
    with get_session() as session:
        fixed = SummaryService(session, settings.allocator).refresh_all()

    if json_output:
        output_json({"listings_fixed": fixed})
        return
    console.print(f"[green]Fixed photo summaries of {fixed} listings[/green]")


@app.command()
def stats(
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for LLM/programmatic consumption).",
    ),
) -> None:
    """Show how many exclusive listing photos are stored as WebP."""
    init_db()
    settings = _settings()
    with get_session() as session:
        photo_stats = MediaService(session, _blob_store(settings), settings).optimization_stats()

    if json_output:
        output_json(photo_stats.model_dump(mode="json"))
        return

    table = Table(title="Photo optimization")
    table.add_column("Total", style="cyan", justify="right")
    table.add_column("WebP", style="green", justify="right")
    table.add_column("Other", style="yellow", justify="right")
    table.add_column("Optimized", style="magenta", justify="right")
    table.add_row(
        str(photo_stats.total_photos),
        str(photo_stats.webp_photos),
        str(photo_stats.non_webp_photos),
        f"{photo_stats.percent_optimized}%",
    )
    console.print(table)


@app.command()
def optimize_photos(
    batch_size: int | None = typer.Option(
        None,
        "--batch-size",
        "-b",
        min=1,
        max=500,
        help="Photos per batch (default: media.optimize_batch_size).",
    ),
    offset: int = typer.Option(0, "--offset", min=0, help="Non-WebP photos to pass over first."),
    run_all: bool = typer.Option(
        False,
        "--all",
        help="Keep running batches until no photos are left to visit.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for LLM/programmatic consumption).",
    ),
) -> None:
    """Convert stored non-WebP photos of exclusive listings to WebP."""
    init_db()
    settings = _settings()
    batches: list[OptimizeResult] = []
    with get_session() as session:
        service = MediaService(session, _blob_store(settings), settings)
        while True:
            result = service.optimize_existing(batch_size=batch_size, offset=offset)
            batches.append(result)
            offset = result.next_offset
            if not run_all or result.processed == 0 or result.remaining == 0:
                break

    if json_output:
        output_json(
            batches[0].model_dump(mode="json")
            if not run_all
            else {"batches": [b.model_dump(mode="json") for b in batches]}
        )
        return

    table = Table(title="Photo re-optimization")
    table.add_column("Processed", style="cyan", justify="right")
    table.add_column("Optimized", style="green", justify="right")
    table.add_column("Skipped", style="yellow", justify="right")
    table.add_column("Errors", style="red", justify="right")
    table.add_column("Saved", style="magenta", justify="right")
    table.add_column("Remaining", justify="right")
    for b in batches:
        table.add_row(
            str(b.processed),
            str(b.optimized),
            str(b.skipped),
            str(b.errors),
            f"{b.bytes_saved / 1024:.1f} KB",
            str(b.remaining),
        )
    console.print(table)
    for b in batches:
        for message in b.messages:
            console.print(f"[dim]{message}[/dim]")
    if batches[-1].remaining and not run_all:
        console.print(f"[bold]Next batch:[/bold] --offset {batches[-1].next_offset}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind."),
    port: int = typer.Option(8000, "--port", help="Port to listen on."),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes."),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("exclusive_listings.api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
