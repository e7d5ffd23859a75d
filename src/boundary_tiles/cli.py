"""
Command line interface.

    boundary-tiles generate data/states.geojson.json --boundary-type states -z 0 -z 1 -z 2
    boundary-tiles prepare
    boundary-tiles validate data/states.geojson.json

``generate`` and ``prepare`` exit with status 1 on any fatal error.
"""

import json
from pathlib import Path
from typing import Annotated, List, Optional

import structlog
import typer
from dotenv import load_dotenv

from .data_ingestion.geojson_validator import GeoJSONValidator
from .monitoring.metrics import MetricsCollector
from .processing.boundary_processor import BoundaryProcessor
from .tile_generation.events import ErrorEvent
from .tile_generation.tile_pipeline import TilePipeline
from .tile_generation.worker_pool import TileWorkerPool
from .utils.config import Config, PreparationConfig
from .utils.exceptions import BoundaryTilesError
from .utils.logging_config import configure_logging


app = typer.Typer(help="Boundary vector tile generation: GeoJSON -> MVT -> object storage")
logger = structlog.get_logger(component="cli")


def _load_config(env_file: Optional[str], storage_overrides: Optional[dict] = None) -> Config:
    try:
        config = Config.from_env(env_file, storage_overrides)
    except BoundaryTilesError as e:
        configure_logging()
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(1) from e

    configure_logging(config.log_level, json_logs=config.log_format == "json")
    return config


@app.command("generate")
def generate(
    input_file: Annotated[Path, typer.Argument(help="FeatureCollection GeoJSON file")],
    boundary_type: Annotated[str, typer.Option("--boundary-type", "-b", help="Boundary type used in object keys")],
    zoom: Annotated[Optional[List[int]], typer.Option("--zoom", "-z", help="Zoom level to generate (repeatable)")] = None,
    output_dir: Annotated[Optional[Path], typer.Option("--output-dir", "-o", help="Write tiles to a local directory instead of the configured bucket")] = None,
    workers: Annotated[int, typer.Option("--workers", "-w", help="Number of tile workers")] = 1,
    env_file: Annotated[Optional[str], typer.Option("--env-file", help="Environment file to load")] = None,
):
    """Generate tiles for one GeoJSON file."""
    overrides = None
    if output_dir is not None:
        overrides = {'backend': "local", 'local_root': str(output_dir)}
    config = _load_config(env_file, overrides)
    storage = config.storage
    zoom_levels = zoom or config.preparation.zoom_levels

    try:
        with open(input_file, 'r', encoding='utf-8') as f:
            geojson = json.load(f)
    except (OSError, ValueError) as e:
        logger.error("Failed to read input", input_file=str(input_file), error=str(e))
        raise typer.Exit(1) from e

    metrics = MetricsCollector()

    if workers > 1:
        pool = TileWorkerPool(num_workers=workers, tiling_config=config.tiling, metrics=metrics)
        try:
            outcomes = pool.run(boundary_type, zoom_levels, geojson, storage)
        except ValueError as e:
            logger.error("Invalid zoom levels", error=str(e))
            raise typer.Exit(1) from e

        summary = [
            {'worker_id': o.worker_id, 'zoom_levels': o.zoom_levels, **o.result.to_dict()}
            for o in outcomes
        ]
        typer.echo(json.dumps(summary, indent=2))
        if any(o.exit_code != 0 for o in outcomes):
            raise typer.Exit(1)
        return

    def on_event(event):
        if isinstance(event, ErrorEvent):
            logger.error("Tile pipeline error", fatal=event.fatal, error=event.error)

    pipeline = TilePipeline(tiling_config=config.tiling, metrics=metrics)
    result = pipeline.execute(boundary_type, zoom_levels, geojson, storage, on_event=on_event)

    typer.echo(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        raise typer.Exit(1)


@app.command("prepare")
def prepare(
    env_file: Annotated[Optional[str], typer.Option("--env-file", help="Environment file to load")] = None,
    pushgateway: Annotated[Optional[str], typer.Option("--pushgateway", help="Prometheus Pushgateway address")] = None,
):
    """Clear the destination and publish tiles for every configured boundary type."""
    config = _load_config(env_file)
    metrics = MetricsCollector(prometheus_gateway=pushgateway)

    try:
        processor = BoundaryProcessor(config, metrics=metrics)
        report = processor.run()
    except Exception as e:
        logger.exception("Processing failed")
        raise typer.Exit(1) from e
    finally:
        metrics.push_to_prometheus_gateway()

    typer.echo(json.dumps(report.to_dict(), indent=2))
    if not report.success:
        raise typer.Exit(1)


@app.command("validate")
def validate(
    files: Annotated[Optional[List[Path]], typer.Argument(help="GeoJSON files to validate")] = None,
    env_file: Annotated[Optional[str], typer.Option("--env-file", help="Environment file to load")] = None,
):
    """Stream-validate GeoJSON files (defaults to the configured boundary inputs)."""
    configure_logging()
    if not files:
        if env_file:
            load_dotenv(env_file)
        try:
            preparation = PreparationConfig.from_env()
        except BoundaryTilesError as e:
            typer.echo(f"ERROR: {e}", err=True)
            raise typer.Exit(1) from e
        data_dir = Path(preparation.data_dir)
        files = [data_dir / f"{name}.geojson.json" for name in preparation.boundary_types]

    results = GeoJSONValidator().validate_files(files)
    for result in results:
        if result.valid:
            typer.echo(f"OK    {result.file}: {result.features_count} features")
        else:
            typer.echo(f"FAIL  {result.file}: {result.error}", err=True)

    if not all(result.valid for result in results):
        raise typer.Exit(1)


def main():
    app()


if __name__ == "__main__":
    main()
