"""Command-line interface for the map merger.

Commands mirror the pipeline stages and take their defaults from the
Dynaconf settings. Exit codes: 0 on success, 1 on a fatal error, 2 when the
run completed but some chunks or tiles failed.
"""
import logging
from pathlib import Path
from typing import Optional

import typer

from . import config
from .errors import MapMergeError
from .pipeline import merge_map, process_map, run_pipeline
from .tilers.pyramid import generate_pyramid

app = typer.Typer(help="Merge layered map tiles and build a mip pyramid.")

EXIT_FATAL = 1
EXIT_PARTIAL = 2


def _setup(env: str, verbose: bool):
    if env != "DEFAULT":
        config.change_env(env)
    if verbose:
        config.settings.set("verbose", True)
    logging.basicConfig(
        level=logging.INFO if config.get("verbose") else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _finish(summary, failed: int):
    for line in summary.lines():
        typer.echo(line)
    if failed:
        typer.echo(f"Completed with {failed} failure(s)", err=True)
        raise typer.Exit(code=EXIT_PARTIAL)


@app.command()
def merge(
    base_path: Optional[Path] = typer.Option(None, help="Directory containing map* folders"),
    output_dir: Optional[Path] = typer.Option(None, help="Output directory for merged chunks"),
    prefix: Optional[str] = typer.Option(None, help="Chunk filename prefix"),
    tile_size: Optional[int] = typer.Option(None, help="Tile and chunk size in pixels"),
    base_x: Optional[int] = typer.Option(None, help="Grid origin x"),
    base_z: Optional[int] = typer.Option(None, help="Grid origin z"),
    save_empty: Optional[bool] = typer.Option(None, "--save-empty/--skip-empty",
                                              help="Persist chunks without content"),
    limit: Optional[int] = typer.Option(None, help="Only process the first N chunks (0 = all)"),
    workers: Optional[int] = typer.Option(None, help="Parallel chunk workers"),
    env: str = typer.Option("DEFAULT", help="Settings environment"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Merge all map layers into one flat set of chunk images."""
    _setup(env, verbose)
    typer.echo(f"Environment: {env}")
    if workers is not None and workers < 1:
        typer.echo("Error: --workers must be >= 1", err=True)
        raise typer.Exit(code=EXIT_FATAL)
    try:
        summary = merge_map(base_path, output_dir, tile_size=tile_size, base_x=base_x,
                            base_z=base_z, prefix=prefix, save_empty=save_empty,
                            limit=limit, workers=workers)
    except MapMergeError as err:
        typer.echo(f"Error: {err}", err=True)
        raise typer.Exit(code=EXIT_FATAL)
    _finish(summary, summary.failed)


@app.command()
def process(
    source_dir: Optional[Path] = typer.Argument(None, help="Merged chunk directory"),
    out_dir: Optional[Path] = typer.Argument(None, help="Flat tile set directory"),
    quality: Optional[int] = typer.Option(None, help="Encoder quality 1-100"),
    concurrency: Optional[int] = typer.Option(None, help="Parallel conversions"),
    mip_levels: Optional[int] = typer.Option(None, help="Maximum pyramid level"),
    fmt: Optional[str] = typer.Option(None, "--format", help="png, webp or jpeg"),
    env: str = typer.Option("DEFAULT", help="Settings environment"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Convert merged chunks to the flat tile set, index them and build the pyramid."""
    _setup(env, verbose)
    typer.echo(f"Environment: {env}")
    try:
        result = process_map(source_dir, out_dir, quality=quality, concurrency=concurrency,
                             mip_levels=mip_levels, fmt=fmt)
    except MapMergeError as err:
        typer.echo(f"Error: {err}", err=True)
        raise typer.Exit(code=EXIT_FATAL)
    _finish(result, result.failed)


@app.command()
def pyramid(
    tiles_dir: Optional[Path] = typer.Argument(None, help="Directory with tile-index.json"),
    max_levels: Optional[int] = typer.Option(None, help="Maximum pyramid level"),
    env: str = typer.Option("DEFAULT", help="Settings environment"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Rebuild only the mip pyramid from an existing tile index."""
    _setup(env, verbose)
    typer.echo(f"Environment: {env}")
    try:
        manifest, summary = generate_pyramid(config.get("tiles_dir", tiles_dir),
                                             max_levels=max_levels)
    except MapMergeError as err:
        typer.echo(f"Error: {err}", err=True)
        raise typer.Exit(code=EXIT_FATAL)
    for lvl in manifest.levels:
        typer.echo(f"L{lvl.level}: {lvl.count} tiles, worldSize={lvl.world_size}")
    _finish(summary, summary.failed)


@app.command()
def run(
    base_path: Optional[Path] = typer.Argument(None, help="Directory containing map* folders"),
    merged_dir: Optional[Path] = typer.Argument(None, help="Merged chunk directory"),
    tiles_dir: Optional[Path] = typer.Argument(None, help="Flat tile set directory"),
    quality: Optional[int] = typer.Option(None, help="Encoder quality 1-100"),
    process_concurrency: Optional[int] = typer.Option(None, help="Parallel conversions"),
    merge_workers: Optional[int] = typer.Option(None, help="Parallel chunk workers"),
    mip_levels: Optional[int] = typer.Option(None, help="Maximum pyramid level"),
    env: str = typer.Option("DEFAULT", help="Settings environment"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run merge and process in sequence."""
    _setup(env, verbose)
    typer.echo(f"Environment: {env}")
    try:
        summary = run_pipeline(base_path, merged_dir, tiles_dir, quality=quality,
                               process_concurrency=process_concurrency,
                               merge_workers=merge_workers, mip_levels=mip_levels)
    except MapMergeError as err:
        typer.echo(f"Error: {err}", err=True)
        raise typer.Exit(code=EXIT_FATAL)
    _finish(summary, summary.failed)
    typer.echo("Pipeline completed successfully.")


if __name__ == "__main__":
    app()
