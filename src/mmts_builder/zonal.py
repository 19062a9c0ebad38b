"""
zonal.py
========
Reduction of joined acquisitions to regional mean statistics.

For every joined acquisition and every region that intersects its
footprint, :class:`ZonalAggregator` emits one :class:`AggregatedRow` holding
the unweighted mean of each retained band over the pixels whose centres
fall inside the region.  Null (``NaN``) pixels make no contribution to the
mean; a band with no valid pixel in the region is ``NaN`` in the row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

import geopandas as gpd
import numpy as np
import numpy.typing as npt
import pandas as pd
from pyproj import CRS
from rasterio.features import geometry_mask
from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry

from .raster import Grid, JoinedRecord, Raster, Region

logger = logging.getLogger("mmts.zonal")

TIMESTAMP_COLUMN = "timestamp"
MATCH_COUNT_COLUMN = "matchCount"
ID_COLUMN = "ID"


def region_pixel_mask(geometry: BaseGeometry, grid: Grid) -> npt.NDArray[np.bool_]:
    """Return ``True`` for the pixels of *grid* covered by *geometry*.

    Pixels are selected by centre.  A region too small to contain any pixel
    centre falls back to every pixel it touches.
    """
    inside = geometry_mask(
        [mapping(geometry)], out_shape=grid.shape, transform=grid.transform, invert=True
    )
    if not inside.any():
        inside = geometry_mask(
            [mapping(geometry)], out_shape=grid.shape, transform=grid.transform,
            invert=True, all_touched=True,
        )
    return inside


def region_means(
    raster: Raster,
    geometry: BaseGeometry,
    bands: Sequence[str] | None = None,
) -> dict[str, float]:
    """Mean of each band over the valid pixels of *raster* inside *geometry*."""
    mask = region_pixel_mask(geometry, raster.grid)
    means: dict[str, float] = {}
    for name in bands if bands is not None else raster.band_names:
        values = raster.band(name)[mask]
        values = values[~np.isnan(values)]
        means[name] = float(values.mean()) if values.size else float("nan")
    return means


@dataclass(frozen=True)
class AggregatedRow:
    """Regional means of one acquisition over one region."""

    region_id: str
    timestamp: pd.Timestamp
    acquisition_id: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    values: Mapping[str, float] = field(default_factory=dict)
    match_count: int = 0

    def value(self, band: str) -> float:
        """Band mean, ``NaN`` when the band is absent."""
        return self.values.get(band, float("nan"))

    def as_record(self) -> dict[str, Any]:
        return {
            ID_COLUMN: self.region_id,
            **dict(self.attributes),
            **dict(self.values),
            TIMESTAMP_COLUMN: self.timestamp,
            MATCH_COUNT_COLUMN: self.match_count,
        }


class ZonalAggregator:
    """Aggregate joined acquisitions over a fixed set of regions.

    Parameters
    ----------
    regions:
        Sample regions.  Treated as immutable.
    regions_crs:
        CRS of the region geometries.  When an acquisition is on another
        CRS the geometries are reprojected with geopandas before masking.
    bands:
        Bands to aggregate.  Defaults to every band of each acquisition.
    """

    def __init__(
        self,
        regions: Sequence[Region],
        regions_crs: str | None = None,
        bands: Sequence[str] | None = None,
    ) -> None:
        self.regions = tuple(regions)
        self.regions_crs = regions_crs
        self.bands = list(bands) if bands is not None else None

    def _regions_in(self, crs: str) -> list[tuple[Region, BaseGeometry]]:
        if self.regions_crs is None or CRS.from_user_input(self.regions_crs) == CRS.from_user_input(crs):
            return [(r, r.geometry) for r in self.regions]
        projected = gpd.GeoSeries(
            [r.geometry for r in self.regions], crs=self.regions_crs
        ).to_crs(crs)
        return list(zip(self.regions, projected))

    def aggregate(self, record: JoinedRecord) -> list[AggregatedRow]:
        """One row per region that intersects the acquisition footprint."""
        raster = record.raster
        footprint = raster.footprint.intersection(record.footprint)
        bands = self.bands if self.bands is not None else raster.band_names
        bands = [b for b in bands if raster.has_band(b)]

        rows: list[AggregatedRow] = []
        for region, geometry in self._regions_in(raster.crs):
            if not geometry.intersects(footprint):
                continue
            rows.append(
                AggregatedRow(
                    region_id=region.region_id,
                    timestamp=record.timestamp,
                    acquisition_id=record.acquisition_id,
                    attributes=region.attributes,
                    values=region_means(raster, geometry, bands),
                    match_count=record.match_count,
                )
            )
        logger.debug(
            "%s: %d region(s) aggregated over %d band(s)",
            record.acquisition_id, len(rows), len(bands),
        )
        return rows


def rows_to_frame(rows: Iterable[AggregatedRow]) -> pd.DataFrame:
    """Tabulate rows with a stable column order.

    Columns are ``ID``, region attributes, band means (first-seen order),
    ``timestamp`` and ``matchCount``.
    """
    rows = list(rows)
    attributes: dict[str, None] = {}
    bands: dict[str, None] = {}
    for row in rows:
        for key in row.attributes:
            attributes.setdefault(key, None)
        for key in row.values:
            bands.setdefault(key, None)
    columns = [ID_COLUMN, *attributes, *(b for b in bands if b not in attributes),
               TIMESTAMP_COLUMN, MATCH_COUNT_COLUMN]
    return pd.DataFrame([row.as_record() for row in rows], columns=columns)
