"""Thin CLI wrapper for apptodmg.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from apptodmg import __version__
from apptodmg.config import get_settings, print_settings_json

app = typer.Typer(
    name="apptodmg",
    help="AppToDmg - package macOS application bundles into DMG installers",
    no_args_is_help=True,
)
console = Console()


def _print_json(data: Any) -> None:
    console.print_json(json.dumps(data))


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"apptodmg version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override the configured log level"),
    ] = None,
) -> None:
    """AppToDmg - package macOS application bundles into DMG installers."""
    level = (log_level or get_settings().log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print_json(print_settings_json(settings))
        return

    tmp_dir_display = str(settings.tmp_dir) if settings.tmp_dir else "(system default)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Temp directory:      {tmp_dir_display}")
    console.print(f"  Install directory:   {settings.install_dir}")
    console.print(f"  Shortcut name:       {settings.shortcut_name}")
    console.print()
    console.print("[bold]Tools:[/bold]")
    console.print(f"  hdiutil:             {settings.hdiutil_path}")
    console.print(f"  osascript:           {settings.osascript_path}")
    console.print(f"  lipo:                {settings.lipo_path}")
    console.print()
    console.print("[bold]Image:[/bold]")
    console.print(f"  Compressed format:   {settings.compressed_format}")
    console.print(f"  zlib level:          {settings.zlib_level}")
    console.print(f"  Read-write format:   {settings.rw_format}")
    console.print(f"  Filesystem:          {settings.filesystem}")
    console.print(f"  Size headroom (MB):  {settings.size_headroom_mb}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Finder settle (s):   {settings.finder_settle_seconds}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Tool timeout:        {settings.tool_timeout}")
    console.print(f"  Styling timeout:     {settings.styling_timeout}")


@app.command()
def info(
    app_path: Annotated[Path, typer.Argument(help="Application bundle (.app)")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show bundle metadata and the generated system requirements."""
    from apptodmg.bundles.metadata import extract_metadata
    from apptodmg.bundles.validator import validate_bundle
    from apptodmg.errors import InvalidBundleError

    settings = get_settings()

    try:
        validate_bundle(app_path)
    except InvalidBundleError as e:
        if json_output:
            _print_json({"error": e.to_dict()})
        else:
            console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    metadata = extract_metadata(app_path, lipo=settings.lipo_path)
    if metadata is None:
        if json_output:
            _print_json({"app_name": app_path.stem, "metadata": None})
        else:
            console.print(f"[yellow]No readable Info.plist in {escape(str(app_path))}[/yellow]")
        return

    if json_output:
        output = metadata.to_dict()
        output["system_requirements"] = metadata.generate_system_requirements_text()
        _print_json(output)
        return

    console.print(f"[bold]{escape(metadata.app_name)}[/bold]")
    console.print(f"  Identifier:   {metadata.bundle_identifier or 'N/A'}")
    console.print(f"  Version:      {metadata.bundle_version or 'N/A'}")
    console.print(f"  Build:        {metadata.build_number or 'N/A'}")
    console.print(f"  Min macOS:    {metadata.minimum_system_version or 'N/A'}")
    console.print(f"  Arch:         {metadata.short_architecture_description}")
    console.print()
    console.print(escape(metadata.generate_system_requirements_text()))


@app.command()
def build(
    app_path: Annotated[
        Path | None,
        typer.Argument(help="Application bundle (.app); optional with --request"),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Disk image to write (default: <App>.dmg)"),
    ] = None,
    volume_name: Annotated[
        str | None,
        typer.Option("--volume-name", help="Volume name (default: bundle name)"),
    ] = None,
    shortcut: Annotated[
        bool,
        typer.Option("--shortcut/--no-shortcut", help="Include Applications shortcut"),
    ] = True,
    system_requirements: Annotated[
        bool,
        typer.Option("--system-requirements", help="Include a system requirements file"),
    ] = False,
    readme_file: Annotated[
        Path | None,
        typer.Option("--readme-file", help="Text file to include as README.txt"),
    ] = None,
    readme_text: Annotated[
        str | None,
        typer.Option("--readme-text", help="Literal README.txt content"),
    ] = None,
    styled: Annotated[
        bool,
        typer.Option("--styled", help="Add background, window layout and icon positions"),
    ] = False,
    request_file: Annotated[
        Path | None,
        typer.Option("--request", "-r", help="Load the build request from YAML/JSON"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build a DMG installer from an application bundle."""
    from apptodmg.builds.io import load_request_file
    from apptodmg.builds.models import BuildRequest, ReadmeSource
    from apptodmg.builds.progress import ProgressEvent
    from apptodmg.builds.service import build_sync

    if readme_file is not None and readme_text is not None:
        console.print("[red]Use either --readme-file or --readme-text, not both[/red]")
        raise typer.Exit(code=1)

    try:
        if request_file is not None:
            request = load_request_file(request_file)
        elif app_path is not None:
            readme = None
            if readme_file is not None:
                readme = ReadmeSource.from_file(readme_file)
            elif readme_text is not None:
                readme = ReadmeSource.from_text(readme_text)
            request = BuildRequest(
                source=app_path,
                destination=output or app_path.with_suffix(".dmg"),
                volume_name=volume_name or app_path.stem,
                include_shortcut=shortcut,
                include_system_requirements=system_requirements,
                readme=readme,
                styled=styled,
            )
        else:
            console.print("[red]Provide an application bundle or --request[/red]")
            raise typer.Exit(code=1)
    except (ValidationError, ValueError, OSError) as e:
        console.print(f"[red]Invalid build request: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    def on_progress(event: ProgressEvent) -> None:
        if json_output:
            return
        if event.tool_output:
            console.print(f"[dim]{escape(event.message)}[/dim]")
        else:
            console.print(f"[cyan]{event.fraction:4.0%}[/cyan] {escape(event.message)}")

    result = build_sync(request, on_progress)

    if json_output:
        _print_json(result.to_dict())
    elif result.success:
        console.print(f"[green]✓ DMG created: {escape(str(result.artifact_path))}[/green]")
        console.print(f"  Size: {result.size_bytes} bytes")
        console.print(f"  SHA-256: {result.sha256}")
    elif result.error is not None:
        console.print(f"[red]✗ Build failed ({result.error.code})[/red]")
        console.print(f"  Error: {escape(str(result.error))}")

    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def background(
    output: Annotated[Path, typer.Argument(help="PNG file to write")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Render the default window background for preview."""
    from apptodmg.builds.background import indicator_span, render_background
    from apptodmg.builds.models import DEFAULT_LAYOUT
    from apptodmg.errors import RenderFailedError

    try:
        image = render_background(DEFAULT_LAYOUT, output)
    except RenderFailedError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    span = indicator_span(DEFAULT_LAYOUT)
    if json_output:
        _print_json(
            {
                "path": str(output),
                "width": image.width,
                "height": image.height,
                "arrow": {"left": span.left, "right": span.right, "y": span.y},
            }
        )
    else:
        console.print(f"[green]✓ Background written: {escape(str(output))}[/green]")
        console.print(f"  Size: {image.width}x{image.height}")


if __name__ == "__main__":
    app()
