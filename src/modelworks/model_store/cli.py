"""
Command-line interface for the model store.

Scan and classify local model folders, acquire new models, and reclaim
resources from a terminal.
"""

import time
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from modelworks.logging_utils import configure_logging

from .classifier import candidate_roots, classify_folder, resolve_resource_root
from .config import get_config
from .errors import ModelStoreError
from .models import TransferState
from .service import ModelStore
from .snapshot import purge_hf_cache

app = typer.Typer(
    name="modelworks-store",
    help="Modelworks Model Store - discover, download and manage local models",
    no_args_is_help=True,
)
console = Console()
LOG_PATH = configure_logging("model_store")


def _store() -> ModelStore:
    return ModelStore(get_config())


def _fail(message: str) -> None:
    rprint(f"[red]❌ {message}[/red]")
    raise typer.Exit(1)


@app.command()
def scan(
    sizes: bool = typer.Option(
        True, "--sizes/--no-sizes", help="Wait for exact on-disk sizes"
    ),
):
    """List classified models under the models root."""
    store = _store()
    try:
        store.scan_now()
        if sizes:
            store.scanner.wait_for_sizes()
        result = store.models()

        table = Table(title=f"Models in {store.config.models_root}")
        table.add_column("Name", style="cyan")
        table.add_column("Variant", style="magenta")
        table.add_column("Size (GB)", justify="right")
        for entry in result.all_entries():
            table.add_row(
                entry.display_name,
                entry.variant.value,
                f"{entry.size_gb:.2f}",
            )
        console.print(table)
        if not result.names():
            rprint("[yellow]No recognized models found.[/yellow]")
    finally:
        store.close()


@app.command()
def classify(path: Path = typer.Argument(..., help="Model folder to inspect")):
    """Show how a single folder classifies and where its resources live."""
    if not path.is_dir():
        _fail(f"Not a directory: {path}")
    result = classify_folder(path)
    rprint(f"[bold]Variant:[/bold] {result.variant.value}")
    if result.root is not None:
        rprint(f"[bold]Matched root:[/bold] {result.root}")
    rprint(f"[bold]Resource root:[/bold] {resolve_resource_root(path)}")
    for candidate in candidate_roots(path):
        rprint(f"  [dim]candidate[/dim] {candidate}")


@app.command()
def download(
    name: str = typer.Argument(..., help="Folder name to install under"),
    source: str = typer.Argument(..., help="Archive URL (.zip) or hub repository URL"),
):
    """Download a model and wait until it is installed."""
    store = _store()
    try:
        job_id = store.download(name, source)
        if job_id is None:
            rprint(f"[yellow]⚠️ {name} is already installed or downloading[/yellow]")
            raise typer.Exit(0)

        with Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=console,
        ) as progress:
            task = progress.add_task(name, total=1.0)
            final = None
            while final is None:
                job = store.transfers.get(job_id)
                if job is None or job.state.is_terminal:
                    final = job
                    break
                progress.update(
                    task, completed=job.progress, description=f"{name} ({job.state.value})"
                )
                time.sleep(0.2)

        installed = store.config.model_dir(name).is_dir()
        if (final is None and installed) or (
            final is not None and final.state is TransferState.FINISHED
        ):
            rprint(f"[green]✅ Installed {name} into {store.config.model_dir(name)}[/green]")
        elif final is not None and final.state is TransferState.FAILED:
            _fail(f"Download failed: {final.error}")
        else:
            _fail("Download cancelled")
    except KeyboardInterrupt:
        store.transfers.cancel_all()
        _fail("Download interrupted")
    finally:
        store.close()


@app.command()
def delete(
    name: str = typer.Argument(..., help="Model folder name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete an installed model folder."""
    if not yes and not typer.confirm(f"Delete {name}?"):
        raise typer.Exit(0)
    store = _store()
    try:
        store.delete_model(name)
    except ModelStoreError as exc:
        _fail(str(exc))
    finally:
        store.close()
    rprint(f"[green]✅ Deleted {name}[/green]")


@app.command()
def estop():
    """Emergency stop: cancel transfers, unload, sweep leftovers, scrub memory."""
    store = _store()
    try:
        report = store.emergency_stop()
        if report.background is not None:
            report.background.result()
    finally:
        store.close()
    rprint(f"[bold red]Emergency stop[/bold red] cancelled {len(report.cancelled)} transfer(s)")
    for failure in report.cleanup_failures:
        rprint(f"[yellow]⚠️ {failure}[/yellow]")


@app.command("purge-hf-cache")
def purge_hf_cache_command(
    location: Optional[Path] = typer.Option(
        None, "--location", help="Purge only this cache directory"
    ),
):
    """Delete Hugging Face cache directories."""
    locations = [location] if location else get_config().hf_cache_locations
    freed = purge_hf_cache(locations)
    rprint(f"[green]Freed {freed / 1e6:.1f} MB[/green]")


if __name__ == "__main__":
    app()
