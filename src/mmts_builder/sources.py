"""
sources.py
==========
Data access and export boundaries of the pipeline.

:class:`DataSource` is the read-only query interface the pipeline pulls
elevation tiles, acquisitions, climate data, land cover and regions from.
:class:`ManifestDataSource` implements it over local files described by a
JSON manifest::

    {
        "crs": "EPSG:32633",
        "study_area": "aoi.geojson",
        "regions": "regions.geojson",
        "land_cover": {"path": "worldcover.tif", "bands": ["Map"]},
        "elevation": [{"path": "dem_a.tif", "bands": ["DEM"]}],
        "radar": [
            {"id": "S1A_0601", "path": "s1_0601.tif", "timestamp": "2021-06-01T10:00",
             "bands": ["VV", "VH", "angle"], "properties": {"heading": 193.5}}
        ],
        "optical": [
            {"id": "S2B_0601", "path": "s2_0601.tif", "timestamp": "2021-06-01T09:00",
             "bands": ["B2", "B3", "B4", "B5", "B8", "B11", "cs", "cs_cdf", "SCL"],
             "properties": {"CLOUDY_PIXEL_PERCENTAGE": 12.5}}
        ],
        "climate": "era5_hourly.csv"
    }

Relative paths are resolved against the manifest's directory and the
``crs`` entry is required.  A missing manifest file is an
:class:`InputValidationError`; every other upstream failure is raised as
:class:`DataSourceError`.  The pipeline does not try to recover from
either.

:class:`ExportSink` receives the final aggregated rows;
:class:`CsvExportSink` writes them to a CSV file with pandas.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio
import rasterio.errors
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from shared.python.exceptions import DataSourceError, OutputWriteError
from shared.python.validators import Validators

from .raster import AcquisitionRecord, Raster, RasterSeries, Region, regions_from_frame, to_timestamp
from .zonal import AggregatedRow, rows_to_frame

logger = logging.getLogger("mmts.sources")


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------


class DataSource(ABC):
    """Read-only provider of every input the pipeline consumes."""

    @property
    @abstractmethod
    def crs(self) -> str:
        """CRS of the study area and region geometries."""

    @abstractmethod
    def study_area(self) -> BaseGeometry: ...

    @abstractmethod
    def elevation_tiles(self) -> list[Raster]: ...

    @abstractmethod
    def radar(self, start: pd.Timestamp, end: pd.Timestamp) -> RasterSeries: ...

    @abstractmethod
    def optical(self, start: pd.Timestamp, end: pd.Timestamp) -> RasterSeries: ...

    @abstractmethod
    def climate(self, start: pd.Timestamp, end: pd.Timestamp) -> pd.DataFrame:
        """Hourly climate table indexed by timestamp."""

    @abstractmethod
    def land_cover(self) -> Raster: ...

    @abstractmethod
    def regions(self) -> list[Region]:
        """User-supplied sample regions."""


class ExportSink(ABC):
    """Consumer of the final aggregated rows."""

    @abstractmethod
    def write(self, rows: Sequence[AggregatedRow]) -> None: ...


# ---------------------------------------------------------------------------
# Local manifest implementation
# ---------------------------------------------------------------------------


class ManifestDataSource(DataSource):
    """:class:`DataSource` over GeoTIFF / vector / CSV files listed in a manifest.

    Args:
        manifest_path: Path to the JSON manifest.
        climate_margin: Extra time loaded before *start* and after *end*
            so trailing weather windows are complete.

    Raises:
        InputValidationError: If *manifest_path* is not an existing file.
        DataSourceError: If the manifest cannot be read.
    """

    def __init__(
        self,
        manifest_path: Path,
        climate_margin: pd.Timedelta = pd.Timedelta(days=1),
    ) -> None:
        self.manifest_path = Path(manifest_path)
        Validators.assert_file_exists(self.manifest_path)
        self.climate_margin = climate_margin
        try:
            self.manifest: dict[str, Any] = json.loads(
                self.manifest_path.read_text(encoding="utf-8")
            )
        except (json.JSONDecodeError, OSError) as exc:
            raise DataSourceError(
                f"Cannot read data manifest '{self.manifest_path}': {exc}"
            ) from exc
        self._base = self.manifest_path.parent

    # -- helpers ------------------------------------------------------------

    def _path(self, raw: str) -> Path:
        path = Path(raw)
        return path if path.is_absolute() else self._base / path

    def _entry(self, key: str) -> Any:
        try:
            return self.manifest[key]
        except KeyError:
            raise DataSourceError(
                f"Data manifest '{self.manifest_path}' has no '{key}' entry."
            ) from None

    def _read_raster(self, entry: dict[str, Any], timestamp: Any = None) -> Raster:
        if "path" not in entry:
            raise DataSourceError(f"Raster manifest entry without a path: {entry!r}")
        path = self._path(entry["path"])
        try:
            with rasterio.open(path) as src:
                data = src.read(masked=True).astype(np.float64).filled(np.nan)
                names = entry.get("bands") or [
                    d or f"b{i}" for i, d in enumerate(src.descriptions, start=1)
                ]
                if len(names) != src.count:
                    raise DataSourceError(
                        f"'{path}' has {src.count} band(s) but {len(names)} name(s) were given."
                    )
                return Raster(
                    dict(zip(names, data)),
                    src.transform,
                    src.crs.to_string(),
                    timestamp,
                    entry.get("properties", {}),
                )
        except rasterio.errors.RasterioIOError as exc:
            raise DataSourceError(f"Could not open raster '{path}': {exc}") from exc

    def _read_vector(self, key: str) -> gpd.GeoDataFrame:
        path = self._path(self._entry(key))
        try:
            gdf = gpd.read_file(path)
        except Exception as exc:
            raise DataSourceError(f"Could not read vector file '{path}': {exc}") from exc
        if gdf.crs is not None and gdf.crs != self.crs:
            gdf = gdf.to_crs(self.crs)
        return gdf

    def _series(self, key: str, start: pd.Timestamp, end: pd.Timestamp) -> RasterSeries:
        start, end = to_timestamp(start), to_timestamp(end)
        records: list[AcquisitionRecord] = []
        for entry in self._entry(key):
            try:
                timestamp = to_timestamp(entry["timestamp"])
                acquisition_id = str(entry.get("id") or Path(entry["path"]).stem)
            except (KeyError, ValueError) as exc:
                raise DataSourceError(f"Malformed '{key}' manifest entry {entry!r}: {exc}") from exc
            if start <= timestamp <= end:
                records.append(AcquisitionRecord(acquisition_id, self._read_raster(entry, timestamp)))
        logger.info("Loaded %d %s acquisition(s) from manifest", len(records), key)
        return RasterSeries(key, records)

    # -- DataSource ---------------------------------------------------------

    @property
    def crs(self) -> str:
        return str(self._entry("crs"))

    def study_area(self) -> BaseGeometry:
        gdf = self._read_vector("study_area")
        if gdf.empty:
            raise DataSourceError("Study area file contains no features.")
        return unary_union(list(gdf.geometry))

    def elevation_tiles(self) -> list[Raster]:
        return [self._read_raster(entry) for entry in self._entry("elevation")]

    def radar(self, start: pd.Timestamp, end: pd.Timestamp) -> RasterSeries:
        return self._series("radar", start, end)

    def optical(self, start: pd.Timestamp, end: pd.Timestamp) -> RasterSeries:
        return self._series("optical", start, end)

    def climate(self, start: pd.Timestamp, end: pd.Timestamp) -> pd.DataFrame:
        path = self._path(self._entry("climate"))
        try:
            frame = pd.read_csv(path, parse_dates=["time"], index_col="time")
        except (OSError, ValueError) as exc:
            raise DataSourceError(f"Could not read climate table '{path}': {exc}") from exc
        lo = to_timestamp(start) - self.climate_margin
        hi = to_timestamp(end) + self.climate_margin
        return frame.sort_index().loc[lo:hi]

    def land_cover(self) -> Raster:
        return self._read_raster(self._entry("land_cover"))

    def regions(self) -> list[Region]:
        return regions_from_frame(self._read_vector("regions"))


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------


class CsvExportSink(ExportSink):
    """Write aggregated rows to a CSV file.

    Args:
        output_path: Destination ``.csv`` file; parent directories are
            created on demand.
    """

    def __init__(self, output_path: Path) -> None:
        self.output_path = Path(output_path)

    def write(self, rows: Sequence[AggregatedRow]) -> None:
        """Write *rows* as one CSV table.

        Raises:
            OutputWriteError: If the file cannot be written.
        """
        Validators.assert_output_dir_writable(self.output_path)
        frame = rows_to_frame(rows)
        try:
            frame.to_csv(self.output_path, index=False)
        except OSError as exc:
            raise OutputWriteError(str(self.output_path), str(exc)) from exc
        logger.info("Wrote %d row(s) to %s", len(frame), self.output_path)
