"""CLI interface for Image Resizer using Typer.

Main entry point for the application. Runs the web service, and offers
local access to the transform pipeline, the mask preview, the artifact
store and the retention sweeper.
"""

import mimetypes
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import ConfigError, load_server_config
from .errors import ImageResizerError
from .mask import build_mask, encode_mask
from .models import ArtifactKind, ServerConfig, TransformSpec, UploadRequest
from .parser import parse_format
from .process import decode_image, transform
from .storage import ArtifactStore
from .sweeper import RetentionSweeper
from .utils import (
    copy_to_clipboard,
    format_age,
    format_file_size,
    print_error,
    print_success,
    print_warning,
    setup_logging,
)


app = typer.Typer(
    name="image-resizer",
    help="Resize, convert and strip light backgrounds from images",
    add_completion=False,
)
console = Console()

config_option = typer.Option(
    None,
    "--config",
    help="Path to config.json",
    exists=True,
    dir_okay=False,
)


def load_or_exit(config_path: Optional[Path]) -> ServerConfig:
    """Load configuration, exiting with an error message if invalid."""
    try:
        config = load_server_config(config_path)
    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)
    setup_logging(config.log_level)
    return config


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
    config_path: Optional[Path] = config_option,
) -> None:
    """Run the HTTP service."""
    import uvicorn

    config = load_or_exit(config_path)
    host = host or config.host
    port = port or config.port

    console.print(f"[bold green]Image Resizer running on http://{host}:{port}[/bold green]")
    uvicorn.run(
        "image_resizer.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=config.log_level.lower(),
    )


@app.command()
def resize(
    file: Path = typer.Argument(..., help="Image to transform", exists=True, dir_okay=False),
    width: Optional[int] = typer.Option(None, "--width", "-w", help="Target width", min=1),
    height: Optional[int] = typer.Option(None, "--height", "-h", help="Target height", min=1),
    quality: int = typer.Option(80, "--quality", "-q", help="Quality 0-100", min=0, max=100),
    output_format: str = typer.Option("jpeg", "--format", "-f", help="jpeg|png|webp|gif"),
    no_aspect: bool = typer.Option(
        False,
        "--no-aspect",
        help="Stretch to exactly width x height instead of fitting inside",
    ),
    transparent: bool = typer.Option(
        False,
        "--transparent",
        "-t",
        help="Make near-white background transparent (forces png for jpeg/gif)",
    ),
    config_path: Optional[Path] = config_option,
) -> None:
    """Transform a local image into the processed store."""
    config = load_or_exit(config_path)
    store = ArtifactStore(config.data_dir)

    try:
        spec = TransformSpec(
            width=width,
            height=height,
            quality=quality,
            output_format=parse_format(output_format),
            maintain_aspect_ratio=not no_aspect,
            transparent_background=transparent,
        )
        data = file.read_bytes()
        content_type = mimetypes.guess_type(file.name)[0] or f"image/{file.suffix.lstrip('.').lower()}"
        upload = UploadRequest.from_bytes(data, content_type, file.name)

        with console.status(f"[bold green]Resizing {file.name}..."):
            result = transform(
                upload,
                spec,
                store,
                max_bytes=config.max_upload_bytes,
                max_pixels=config.max_image_pixels,
            )
    except ImageResizerError as e:
        print_error(f"Resize failed: {e}")
        raise typer.Exit(1)

    if spec.effective_format != spec.output_format:
        print_warning(f"{spec.output_format.value} has no alpha channel, wrote png instead")

    out_width, out_height = result.dimensions
    print_success(
        f"{file.name} → {result.artifact.name} "
        f"({out_width}x{out_height}, {format_file_size(result.artifact.size)})"
    )
    console.print(f"  {result.artifact.path}")

    if copy_to_clipboard(str(result.artifact.path)):
        console.print("\n[dim]Path copied to clipboard[/dim]")


@app.command()
def mask(
    file: Path = typer.Argument(..., help="Image to build the mask from", exists=True, dir_okay=False),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Where to write the mask (default: <name>_mask.png)",
    ),
) -> None:
    """Write the transparency mask for an image as a PNG.

    White areas stay opaque, black areas become transparent.
    """
    try:
        image = decode_image(file.read_bytes())
    except ImageResizerError as e:
        print_error(f"Could not read {file.name}: {e}")
        raise typer.Exit(1)

    if output is None:
        output = file.with_name(f"{file.stem}_mask.png")

    output.write_bytes(encode_mask(build_mask(image)))
    print_success(f"Mask written to {output}")


@app.command("list")
def list_cmd(
    kind: Optional[ArtifactKind] = typer.Option(
        None,
        "--kind",
        "-k",
        help="Only list one namespace",
        case_sensitive=False,
    ),
    config_path: Optional[Path] = config_option,
) -> None:
    """List stored artifacts with size and age."""
    config = load_or_exit(config_path)
    store = ArtifactStore(config.data_dir)
    kinds = [kind] if kind else list(ArtifactKind)

    now = time.time()
    table = Table(title="Stored Artifacts")
    table.add_column("Kind", style="dim")
    table.add_column("File", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Age", justify="right")

    count = 0
    for artifact_kind in kinds:
        for artifact in store.list(artifact_kind):
            age = artifact.age(now)
            age_text = format_age(age)
            if age > config.retention_seconds:
                age_text = f"[yellow]{age_text}[/yellow]"
            table.add_row(artifact_kind.value, artifact.name, format_file_size(artifact.size), age_text)
            count += 1

    if count == 0:
        console.print("[yellow]No artifacts stored[/yellow]")
        return

    console.print(table)


@app.command()
def sweep(config_path: Optional[Path] = config_option) -> None:
    """Delete artifacts older than the retention period."""
    config = load_or_exit(config_path)
    store = ArtifactStore(config.data_dir)
    sweeper = RetentionSweeper(store, retention_seconds=config.retention_seconds)

    with console.status("[bold green]Sweeping expired artifacts..."):
        report = sweeper.sweep_once()

    if report.failed:
        console.print(
            f"[yellow]Deleted {len(report.deleted)} of {report.scanned} files, "
            f"{len(report.failed)} failed[/yellow]"
        )
        raise typer.Exit(1)

    print_success(f"Deleted {len(report.deleted)} of {report.scanned} files")


@app.command("config")
def config_cmd(config_path: Optional[Path] = config_option) -> None:
    """Validate and show the active configuration."""
    config = load_or_exit(config_path)

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("host", config.host)
    table.add_row("port", str(config.port))
    table.add_row("data_dir", str(config.data_dir))
    table.add_row("max_upload_bytes", format_file_size(config.max_upload_bytes))
    table.add_row("max_image_pixels", f"{config.max_image_pixels:,}")
    table.add_row("retention_seconds", f"{config.retention_seconds:g}")
    table.add_row("sweep_interval_seconds", f"{config.sweep_interval_seconds:g}")
    table.add_row("log_level", config.log_level)
    table.add_row("cors_origins", ", ".join(config.cors_origins))

    console.print(table)
    print_success("Configuration valid")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
