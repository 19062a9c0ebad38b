"""
raster.py
=========
In-memory data model shared by every stage of the builder.

Classes
-------
Grid               Pixel grid: affine transform, CRS, and (rows, cols) shape.
Raster             Named float bands on one grid, plus an optional timestamp.
AcquisitionRecord  One raster, its footprint polygon, and its timestamp.
RasterSeries       Timestamp-ordered, read-only collection of acquisitions.
JoinedRecord       Radar acquisition extended with composited optical bands.
Region             Sample polygon with a stable identifier and attributes.

Band arrays are stored as read-only ``float64`` numpy arrays.  ``NaN`` is
the null marker everywhere: masked pixels, failed divisions, and pixels
outside a source footprint are all ``NaN`` rather than a numeric sentinel.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Sequence

import geopandas as gpd
import numpy as np
import numpy.typing as npt
import pandas as pd
import rasterio.warp
from rasterio.enums import Resampling
from rasterio.transform import Affine, array_bounds
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from shared.python.exceptions import BandNotFoundError, InputValidationError
from shared.python.validators import Validators

logger = logging.getLogger("mmts.raster")

FloatArray = npt.NDArray[np.float64]


def _frozen(array: npt.ArrayLike) -> FloatArray:
    """Return a read-only float64 copy of *array*."""
    out = np.array(array, dtype=np.float64, copy=True)
    out.setflags(write=False)
    return out


def apply_affine(
    transform: Affine, xs: npt.ArrayLike, ys: npt.ArrayLike
) -> tuple[FloatArray, FloatArray]:
    """Map coordinate arrays through *transform* from its coefficients."""
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    t = transform
    return t.a * xs + t.b * ys + t.c, t.d * xs + t.e * ys + t.f


def to_timestamp(value: Any) -> pd.Timestamp:
    """Coerce *value* to a timezone-naive :class:`pandas.Timestamp` (UTC)."""
    ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


# ---------------------------------------------------------------------------
# Grid
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Grid:
    """Geometry of a pixel grid."""

    transform: Affine
    crs: str
    shape: tuple[int, int]

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """``(minx, miny, maxx, maxy)`` of the grid extent."""
        west, south, east, north = array_bounds(self.shape[0], self.shape[1], self.transform)
        return (west, south, east, north)

    @property
    def footprint(self) -> BaseGeometry:
        return box(*self.bounds)

    @property
    def resolution(self) -> tuple[float, float]:
        """Absolute ``(x, y)`` pixel size."""
        return abs(self.transform.a), abs(self.transform.e)

    def pixel_centres(self) -> tuple[FloatArray, FloatArray]:
        """Return ``(xs, ys)`` arrays of pixel-centre coordinates."""
        rows, cols = np.indices(self.shape, dtype=np.float64)
        return apply_affine(self.transform, cols + 0.5, rows + 0.5)


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Raster:
    """A set of uniquely named bands sharing one grid.

    Attributes:
        bands: Mapping of band name to 2-D array.  Arrays are copied into
            read-only float64 storage on construction.
        transform: Affine geotransform of the grid.
        crs: CRS identifier understood by pyproj/rasterio.
        timestamp: Capture time, ``None`` for static layers (elevation).
        properties: Free-form scalar metadata (scene cloud percentage, ...).
    """

    bands: Mapping[str, FloatArray]
    transform: Affine
    crs: str
    timestamp: pd.Timestamp | None = None
    properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.bands:
            raise InputValidationError("A raster needs at least one band.")
        frozen = {str(name): _frozen(arr) for name, arr in self.bands.items()}
        reference_name, reference = next(iter(frozen.items()))
        if reference.ndim != 2:
            raise InputValidationError(
                f"Band '{reference_name}' must be 2-D, got {reference.ndim} dimension(s)."
            )
        for name, arr in frozen.items():
            Validators.assert_raster_shapes_match(reference.shape, arr.shape, reference_name, name)
        object.__setattr__(self, "bands", frozen)
        object.__setattr__(self, "properties", dict(self.properties))
        if self.timestamp is not None:
            object.__setattr__(self, "timestamp", to_timestamp(self.timestamp))

    # -- geometry -----------------------------------------------------------

    @property
    def shape(self) -> tuple[int, int]:
        return next(iter(self.bands.values())).shape  # type: ignore[return-value]

    @property
    def grid(self) -> Grid:
        return Grid(self.transform, self.crs, self.shape)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return self.grid.bounds

    @property
    def footprint(self) -> BaseGeometry:
        return self.grid.footprint

    # -- bands --------------------------------------------------------------

    @property
    def band_names(self) -> list[str]:
        return list(self.bands)

    def band(self, name: str) -> FloatArray:
        """Return the array for *name*.

        Raises:
            BandNotFoundError: If the raster has no such band.
        """
        try:
            return self.bands[name]
        except KeyError:
            raise BandNotFoundError(name, self.band_names) from None

    def has_band(self, name: str) -> bool:
        return name in self.bands

    def with_bands(self, new_bands: Mapping[str, npt.ArrayLike]) -> "Raster":
        """Return a copy with *new_bands* added (same-named bands are replaced)."""
        merged: dict[str, npt.ArrayLike] = dict(self.bands)
        merged.update(new_bands)
        return Raster(merged, self.transform, self.crs, self.timestamp, self.properties)

    def select(self, names: Iterable[str]) -> "Raster":
        """Return a copy holding only *names* (each must exist)."""
        names = list(names)
        Validators.assert_bands_present(names, self.band_names)
        return Raster(
            {n: self.bands[n] for n in names},
            self.transform, self.crs, self.timestamp, self.properties,
        )

    def drop(self, names: Iterable[str]) -> "Raster":
        """Return a copy without *names*; names that are absent are ignored."""
        dropped = set(names)
        return Raster(
            {n: a for n, a in self.bands.items() if n not in dropped},
            self.transform, self.crs, self.timestamp, self.properties,
        )

    # -- resampling ---------------------------------------------------------

    def resample_to(self, grid: Grid) -> "Raster":
        """Nearest-neighbour resample every band onto *grid*.

        Target pixels that fall outside this raster become ``NaN``.  When
        both grids share a CRS the lookup is a direct pixel-centre index
        mapping, so co-aligned grids are copied without any value change;
        otherwise :func:`rasterio.warp.reproject` is used.
        """
        if self.grid == grid:
            return self
        if self.crs == grid.crs:
            out = self._resample_same_crs(grid)
        else:
            out = self._reproject(grid)
        return Raster(out, grid.transform, grid.crs, self.timestamp, self.properties)

    def _resample_same_crs(self, grid: Grid) -> dict[str, FloatArray]:
        xs, ys = grid.pixel_centres()
        cols, rows = apply_affine(~self.transform, xs, ys)
        cols = np.floor(cols).astype(np.int64)
        rows = np.floor(rows).astype(np.int64)
        height, width = self.shape
        inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
        safe_rows = np.where(inside, rows, 0)
        safe_cols = np.where(inside, cols, 0)
        return {
            name: np.where(inside, arr[safe_rows, safe_cols], np.nan)
            for name, arr in self.bands.items()
        }

    def _reproject(self, grid: Grid) -> dict[str, FloatArray]:
        out: dict[str, FloatArray] = {}
        for name, arr in self.bands.items():
            destination = np.full(grid.shape, np.nan, dtype=np.float64)
            rasterio.warp.reproject(
                source=np.array(arr),
                destination=destination,
                src_transform=self.transform,
                src_crs=self.crs,
                src_nodata=np.nan,
                dst_transform=grid.transform,
                dst_crs=grid.crs,
                dst_nodata=np.nan,
                resampling=Resampling.nearest,
            )
            out[name] = destination
        return out

    def __repr__(self) -> str:
        when = self.timestamp.isoformat() if self.timestamp is not None else "static"
        return f"<Raster {self.band_names} {self.shape[0]}x{self.shape[1]} px {when}>"


def constant_band(grid: Grid, value: float | None) -> FloatArray:
    """Broadcast a scalar over *grid* (``None`` becomes ``NaN``)."""
    fill = np.nan if value is None else float(value)
    return np.full(grid.shape, fill, dtype=np.float64)


# ---------------------------------------------------------------------------
# Acquisitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class AcquisitionRecord:
    """One timestamped raster together with its ground footprint.

    When *footprint* is omitted the raster's grid extent is used.
    """

    acquisition_id: str
    raster: Raster
    footprint: BaseGeometry | None = None

    def __post_init__(self) -> None:
        if self.raster.timestamp is None:
            raise InputValidationError(
                f"Acquisition '{self.acquisition_id}' has no timestamp."
            )
        if self.footprint is None:
            object.__setattr__(self, "footprint", self.raster.footprint)

    @property
    def timestamp(self) -> pd.Timestamp:
        return self.raster.timestamp  # type: ignore[return-value]

    def with_raster(self, raster: Raster) -> "AcquisitionRecord":
        """Return a copy carrying *raster* and the same footprint and id."""
        return AcquisitionRecord(self.acquisition_id, raster, self.footprint)

    def __repr__(self) -> str:
        return f"<AcquisitionRecord {self.acquisition_id} {self.timestamp.isoformat()}>"


class RasterSeries:
    """Timestamp-ordered, read-only collection of acquisitions of one sensor.

    Ties on timestamp are ordered by acquisition id so iteration order is
    deterministic.  The series is never modified after construction, which
    makes concurrent :meth:`window` queries safe without locking.
    """

    def __init__(self, sensor: str, records: Iterable[AcquisitionRecord] = ()) -> None:
        self.sensor = sensor
        self._records: tuple[AcquisitionRecord, ...] = tuple(
            sorted(records, key=lambda r: (r.timestamp, r.acquisition_id))
        )
        self._times: list[pd.Timestamp] = [r.timestamp for r in self._records]

    def __iter__(self) -> Iterator[AcquisitionRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index: int) -> AcquisitionRecord:
        return self._records[index]

    def window(
        self,
        start: pd.Timestamp,
        end: pd.Timestamp,
        *,
        include_start: bool = True,
        include_end: bool = True,
    ) -> list[AcquisitionRecord]:
        """Return the records whose timestamp lies between *start* and *end*."""
        start, end = to_timestamp(start), to_timestamp(end)
        lo = (bisect.bisect_left if include_start else bisect.bisect_right)(self._times, start)
        hi = (bisect.bisect_right if include_end else bisect.bisect_left)(self._times, end)
        return list(self._records[lo:hi])

    def filter(self, predicate) -> "RasterSeries":
        """Return a new series holding the records for which *predicate* is true."""
        return RasterSeries(self.sensor, (r for r in self._records if predicate(r)))

    def map(self, func) -> "RasterSeries":
        """Return a new series with *func* applied to every record."""
        return RasterSeries(self.sensor, (func(r) for r in self._records))

    def __repr__(self) -> str:
        return f"<RasterSeries {self.sensor!r} n={len(self)}>"


@dataclass(frozen=True, eq=False)
class JoinedRecord:
    """Radar acquisition extended with optical bands from matching scenes.

    Attributes:
        primary: The radar acquisition this record was derived from.
        raster: Radar bands plus the composited optical bands.
        match_count: Number of optical acquisitions that contributed.
        source_ids: Identifiers of the contributing optical acquisitions.
    """

    primary: AcquisitionRecord
    raster: Raster
    match_count: int
    source_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.match_count <= 0:
            raise ValueError(
                f"JoinedRecord for '{self.primary.acquisition_id}' needs match_count > 0."
            )

    @property
    def acquisition_id(self) -> str:
        return self.primary.acquisition_id

    @property
    def timestamp(self) -> pd.Timestamp:
        return self.primary.timestamp

    @property
    def footprint(self) -> BaseGeometry:
        return self.primary.footprint  # type: ignore[return-value]

    def with_raster(self, raster: Raster) -> "JoinedRecord":
        return JoinedRecord(self.primary, raster, self.match_count, self.source_ids)


# ---------------------------------------------------------------------------
# Regions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Region:
    """A sample polygon with a stable identifier and scalar attributes."""

    region_id: str
    geometry: BaseGeometry
    attributes: Mapping[str, Any] = field(default_factory=dict)


def regions_from_frame(gdf: gpd.GeoDataFrame, id_column: str = "ID") -> list[Region]:
    """Convert a GeoDataFrame into :class:`Region` objects.

    Rows without an *id_column* value get their positional index as id.
    Non-polygonal geometries are rejected.

    Raises:
        InputValidationError: On missing or non-polygonal geometry.
    """
    regions: list[Region] = []
    for position, (_, row) in enumerate(gdf.iterrows()):
        geom = row.geometry
        if geom is None or geom.is_empty:
            raise InputValidationError(f"Region at row {position} has no geometry.")
        if geom.geom_type not in ("Polygon", "MultiPolygon"):
            raise InputValidationError(
                f"Unsupported region geometry '{geom.geom_type}' at row {position}; "
                "regions must be polygons."
            )
        raw_id = row[id_column] if id_column in gdf.columns else None
        region_id = str(raw_id) if raw_id is not None and not pd.isna(raw_id) else str(position)
        attrs = {
            k: v for k, v in row.items()
            if k not in (gdf.geometry.name, id_column)
        }
        regions.append(Region(region_id, geom, attrs))
    return regions


def regions_to_frame(regions: Sequence[Region], crs: str | None = None) -> gpd.GeoDataFrame:
    """Convert regions back into a GeoDataFrame with an ``ID`` column."""
    records = [
        {"ID": r.region_id, **dict(r.attributes), "geometry": r.geometry}
        for r in regions
    ]
    if not records:
        return gpd.GeoDataFrame(columns=["ID", "geometry"], geometry="geometry", crs=crs)
    return gpd.GeoDataFrame(records, geometry="geometry", crs=crs)
