"""Shelf import command line interface."""

from __future__ import annotations

from pathlib import Path

import typer

app = typer.Typer(help="Shelf photo to catalog import CLI", no_args_is_help=True)

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp"}
CONTENT_TYPES = {".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".png": "image/png", ".webp": "image/webp"}


def _runtime(config: Path, db_path: Path | None):
    from shelfimport.config import load_settings
    from shelfimport.errors import ConfigurationError
    from shelfimport.logging_config import setup_logging
    from shelfimport.pipeline.runtime import build_runtime

    settings = load_settings(config)
    setup_logging(settings.logging.level, settings.logging.file)
    try:
        return build_runtime(settings, db_path=db_path)
    except ConfigurationError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=2) from exc


def _catalog(config: Path, db_path: Path | None):
    from shelfimport.config import load_settings
    from shelfimport.storage.catalog import CatalogStore

    settings = load_settings(config)
    return CatalogStore(db_path or settings.storage.db_path)


@app.command("import")
def import_photos(
    folder: Path = typer.Argument(..., exists=True, file_okay=False, help="Folder of shelf photos"),
    config: Path = typer.Option(Path("configs/default.yaml"), help="App config yaml"),
    db_path: Path | None = typer.Option(None, help="SQLite path (overrides config)"),
) -> None:
    """Import every photo in a folder as one batch and wait for it to finish."""
    from shelfimport.errors import IntakeError
    from shelfimport.pipeline.intake import Upload

    paths = sorted(p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES)
    if not paths:
        typer.echo(f"No images found in {folder}", err=True)
        raise typer.Exit(code=1)

    uploads = [
        Upload(filename=p.name, data=p.read_bytes(), content_type=CONTENT_TYPES[p.suffix.lower()])
        for p in paths
    ]

    runtime = _runtime(config, db_path)
    try:
        try:
            ticket = runtime.importer.submit_batch(uploads)
        except IntakeError as exc:
            typer.echo(f"Rejected: {exc}", err=True)
            raise typer.Exit(code=1) from exc

        typer.echo(f"Batch {ticket.batch_id}: {ticket.total_images} images queued")
        runtime.queue.run_until_idle(include_delayed=True)
        progress = runtime.importer.get_progress(ticket.batch_id) or {}
    finally:
        runtime.close()

    typer.echo(
        "Done: {processed}/{total} images, {failed} failed, {products} products "
        "({verified} verified, {review} needs review)".format(
            processed=progress.get("processed_images", 0),
            total=progress.get("total_images", 0),
            failed=progress.get("failed_images", 0),
            products=progress.get("total_products", 0),
            verified=progress.get("verified_products", 0),
            review=progress.get("review_products", 0),
        )
    )


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind host"),
    port: int = typer.Option(8000, help="Bind port"),
    db_path: Path | None = typer.Option(None, help="SQLite path (overrides config)"),
    config: Path = typer.Option(Path("configs/default.yaml"), help="App config yaml"),
) -> None:
    """Start the import API server."""
    from shelfimport.api.app import serve as serve_api
    from shelfimport.errors import ConfigurationError

    try:
        serve_api(host=host, port=port, db_path=db_path, config_path=config)
    except ConfigurationError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=2) from exc


@app.command("status")
def status(
    batch_id: str = typer.Argument(..., help="Batch identifier"),
    config: Path = typer.Option(Path("configs/default.yaml"), help="App config yaml"),
    db_path: Path | None = typer.Option(None, help="SQLite path (overrides config)"),
) -> None:
    """Print progress counters for a batch."""
    from shelfimport.config import load_settings
    from shelfimport.storage.progress import ProgressStore

    settings = load_settings(config)
    store = ProgressStore(db_path or settings.storage.db_path, ttl_seconds=settings.batch.progress_ttl_seconds)
    row = store.get(batch_id)
    if row is None:
        typer.echo(f"Unknown or expired batch: {batch_id}", err=True)
        raise typer.Exit(code=1)
    for key in (
        "status",
        "total_images",
        "processed_images",
        "failed_images",
        "total_products",
        "verified_products",
        "review_products",
        "current_image",
    ):
        typer.echo(f"{key}: {row[key]}")


@app.command("products")
def products(
    status: str | None = typer.Option(None, help="Filter by verified or needs_review"),
    batch_id: str | None = typer.Option(None, help="Filter by batch"),
    limit: int = typer.Option(50, help="Maximum rows"),
    config: Path = typer.Option(Path("configs/default.yaml"), help="App config yaml"),
    db_path: Path | None = typer.Option(None, help="SQLite path (overrides config)"),
) -> None:
    """List draft products."""
    catalog = _catalog(config, db_path)
    rows = catalog.list_products(status=status, batch_id=batch_id, limit=limit)
    for row in rows:
        upc = row.get("upc") or "-"
        typer.echo(f"{row['sku']}\t{row['status']}\t{row['price']:.2f}\t{upc}\t{row['name']}")
    stats = catalog.stats(batch_id=batch_id)
    typer.echo(f"{stats['total']} total, {stats['verified']} verified, {stats['needs_review']} needs review")


@app.command("export-csv")
def export_csv(
    out: Path = typer.Option(Path("products.csv"), help="Output CSV path"),
    status: str | None = typer.Option(None, help="Filter by verified or needs_review"),
    batch_id: str | None = typer.Option(None, help="Filter by batch"),
    image_base_url: str | None = typer.Option(None, help="Public URL prefix for product images"),
    config: Path = typer.Option(Path("configs/default.yaml"), help="App config yaml"),
    db_path: Path | None = typer.Option(None, help="SQLite path (overrides config)"),
) -> None:
    """Write draft products as a storefront import CSV."""
    from shelfimport.catalog.export import write_products_csv

    catalog = _catalog(config, db_path)
    rows = catalog.list_products(status=status, batch_id=batch_id, limit=100000)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8", newline="") as f:
        count = write_products_csv(rows, f, image_base_url=image_base_url)
    typer.echo(f"Wrote {count} products to {out}")


@app.command("clear-image")
def clear_image(
    target: str = typer.Argument(..., help="Content hash, or path to the photo itself"),
    config: Path = typer.Option(Path("configs/default.yaml"), help="App config yaml"),
    db_path: Path | None = typer.Option(None, help="SQLite path (overrides config)"),
    image_root: Path | None = typer.Option(None, help="Image store root (overrides config)"),
) -> None:
    """Forget that a photo was processed so the next import runs it again."""
    from shelfimport.config import load_settings
    from shelfimport.storage.images import ImageStore, content_hash

    path = Path(target)
    digest = content_hash(path.read_bytes()) if path.is_file() else target.strip()

    settings = load_settings(config)
    store = ImageStore(image_root or settings.storage.image_root, db_path or settings.storage.db_path)
    marker = store.get_marker(digest)
    if marker is None or not store.clear_marker(digest):
        typer.echo(f"No processed marker for {digest}", err=True)
        raise typer.Exit(code=1)
    typer.echo(
        f"Cleared {digest} ({marker['original_filename']}, batch {marker['batch_id']}, "
        f"{marker['products_created']} products created); the photo can be imported again"
    )


@app.command("reprice")
def reprice(
    include_review: bool = typer.Option(False, help="Also look up prices for every needs_review draft"),
    limit: int = typer.Option(500, help="Maximum drafts to check"),
    config: Path = typer.Option(Path("configs/default.yaml"), help="App config yaml"),
    db_path: Path | None = typer.Option(None, help="SQLite path (overrides config)"),
) -> None:
    """Fill in prices for drafts stored without one."""
    runtime = _runtime(config, db_path)
    try:
        report = runtime.repricer.refresh(include_review=include_review, limit=limit)
    finally:
        runtime.close()
    typer.echo(
        f"Checked {report.checked}: {report.from_lookup} from UPCitemdb, "
        f"{report.from_estimate} estimated, {report.unchanged} unchanged, {report.upcs_added} UPCs added"
    )


if __name__ == "__main__":
    app()
