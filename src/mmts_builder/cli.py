"""
MMTS Builder — CLI Entry Point
==============================
Exposes :class:`~mmts_builder.pipeline.TimeSeriesPipeline` as the
``geo-mmts`` command.

Usage::

    geo-mmts \\
        --manifest data/manifest.json \\
        --config config.json \\
        --output output/timeseries.csv \\
        --null-policy IncludeOpticalNulls

Run ``geo-mmts --help`` for the full option list.
"""

from __future__ import annotations

import dataclasses
import logging
import sys
from pathlib import Path

import click

from shared.python.exceptions import MMTSError

from mmts_builder.config import PipelineConfig, load_config
from mmts_builder.nullpolicy import NullPolicy
from mmts_builder.pipeline import TimeSeriesPipeline
from mmts_builder.sources import CsvExportSink, ManifestDataSource

logger = logging.getLogger("mmts.cli")


def _parse_index_list(raw: str) -> tuple[str, ...]:
    """Parse a comma-separated index list, keeping the exact spelling.

    Args:
        raw: Comma-separated string, e.g. ``"NDVI,LAI,EVI"``.
    """
    return tuple(s.strip() for s in raw.split(",") if s.strip())


@click.command("geo-mmts")
@click.option(
    "--manifest",
    "manifest_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON manifest listing the input rasters, vectors and climate table.",
)
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON pipeline configuration. Options below override its values.",
)
@click.option(
    "--output",
    "output_path",
    default="output/timeseries.csv",
    show_default=True,
    help="CSV file the aggregated time series is written to.",
)
@click.option("--start-date", default=None, help="First acquisition date (YYYY-MM-DD).")
@click.option("--end-date", default=None, help="Last acquisition date (YYYY-MM-DD).")
@click.option(
    "--null-policy",
    type=click.Choice([p.value for p in NullPolicy]),
    default=None,
    help="Row-level null handling.",
)
@click.option(
    "--optical-indices",
    default=None,
    help="Comma-separated optical outputs, e.g. NDVI,LAI,EVI.",
)
@click.option(
    "--radar-indices",
    default=None,
    help="Comma-separated radar outputs, e.g. VV,VH,RVI.",
)
@click.option(
    "--tolerance-hours",
    "join_tolerance_hours",
    type=float,
    default=None,
    help="Half-width of the radar/optical matching window in hours.",
)
@click.option("--seed", type=int, default=None, help="Seed for sample generation.")
@click.option(
    "--verbose",
    is_flag=True,
    default=False,
    help="Enable DEBUG-level logging.",
)
def cli(
    manifest_path: str,
    config_path: str | None,
    output_path: str,
    start_date: str | None,
    end_date: str | None,
    null_policy: str | None,
    optical_indices: str | None,
    radar_indices: str | None,
    join_tolerance_hours: float | None,
    seed: int | None,
    verbose: bool,
) -> None:
    """Build a multi-modal radar/optical time series aggregated over sample regions.

    \b
    Examples:
        # Defaults, dates from the command line
        geo-mmts --manifest data/manifest.json --start-date 2021-05-01 --end-date 2021-09-30

        # Config file, keep rows without optical data
        geo-mmts --manifest data/manifest.json --config run.json \\
                 --null-policy IncludeOpticalNulls --output results/ts.csv
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    overrides: dict[str, object] = {
        "start_date": start_date,
        "end_date": end_date,
        "null_policy": null_policy,
        "optical_indices": _parse_index_list(optical_indices) if optical_indices else None,
        "radar_indices": _parse_index_list(radar_indices) if radar_indices else None,
        "join_tolerance_hours": join_tolerance_hours,
        "seed": seed,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}

    try:
        config = load_config(Path(config_path)) if config_path else PipelineConfig()
        config = dataclasses.replace(config, **overrides)
        tool = TimeSeriesPipeline(
            config=config,
            source=ManifestDataSource(Path(manifest_path)),
            sink=CsvExportSink(Path(output_path)),
            verbose=verbose,
        )
        tool.run()
    except MMTSError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo(
        f"\n{len(tool.rows)} row(s) from {tool.joined_count} of {tool.radar_count} "
        f"radar acquisition(s) written to: {output_path}"
    )


if __name__ == "__main__":
    cli()
