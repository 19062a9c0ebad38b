"""
terrain.py
==========
Seamless terrain derivatives from overlapping elevation tiles.

Computing slope and aspect directly on a single tile produces artefacts on
its border, where the finite-difference stencil runs out of neighbours.
:class:`TerrainMosaicBuilder` therefore stitches every tile together with
all tiles lying within a distance tolerance of it, derives slope and aspect
on that mosaic, and only then clips the result back to the tile's own grid.

Conventions
-----------
* slope  — degrees from horizontal, ``[0, 90)``.
* aspect — azimuth of the steepest descent, degrees clockwise from north,
  ``[0, 360)``; perfectly flat pixels get ``0``.
* Both use central differences over the 4-connected neighbours, falling
  back to a one-sided difference where a neighbour is missing (raster edge
  or null elevation).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from pyproj import CRS
from rasterio.transform import Affine

from shared.python.exceptions import RasterError

from .mosaic import NeighbourCompositor, paint_later_wins
from .raster import FloatArray, Grid, Raster, apply_affine

logger = logging.getLogger("mmts.terrain")

DEFAULT_TOLERANCE = 300.0
TERRAIN_BANDS = ("DEM", "slope", "aspect")

# Metres per degree used when a tile is in geographic coordinates
_M_PER_DEG_LAT = 110_540.0
_M_PER_DEG_LON = 111_320.0


# ---------------------------------------------------------------------------
# Derivatives
# ---------------------------------------------------------------------------


def pixel_size_metres(grid: Grid) -> tuple[float, float]:
    """Return the ``(x, y)`` pixel size of *grid* in metres.

    Geographic grids are converted at the latitude of the grid centre.
    """
    res_x, res_y = grid.resolution
    if CRS.from_user_input(grid.crs).is_geographic:
        _, south, _, north = grid.bounds
        lat = math.radians((south + north) / 2.0)
        return res_x * _M_PER_DEG_LON * math.cos(lat), res_y * _M_PER_DEG_LAT
    return res_x, res_y


def metres_to_degrees(distance: float, latitude: float) -> tuple[float, float]:
    """Express a ground *distance* in metres as ``(dlon, dlat)`` degrees at *latitude*."""
    cos_lat = max(math.cos(math.radians(latitude)), 1e-6)
    return distance / (_M_PER_DEG_LON * cos_lat), distance / _M_PER_DEG_LAT


def _gradient(z: FloatArray, spacing: float, axis: int) -> FloatArray:
    zz = np.moveaxis(z, axis, 0)
    prev = np.full_like(zz, np.nan)
    nxt = np.full_like(zz, np.nan)
    prev[1:] = zz[:-1]
    nxt[:-1] = zz[1:]
    central = (nxt - prev) / (2.0 * spacing)
    forward = (nxt - zz) / spacing
    backward = (zz - prev) / spacing
    grad = np.where(
        np.isnan(central),
        np.where(np.isnan(forward), backward, forward),
        central,
    )
    return np.moveaxis(grad, 0, axis)


def slope_aspect(
    elevation: FloatArray, pixel_size: tuple[float, float]
) -> tuple[FloatArray, FloatArray]:
    """Compute slope and aspect (degrees) of a north-up elevation array.

    Args:
        elevation: 2-D elevation array; row 0 is the northern edge.
        pixel_size: ``(x, y)`` pixel size in the elevation's vertical unit.

    Returns:
        ``(slope, aspect)`` arrays, ``NaN`` where the elevation is ``NaN``
        or has no valid neighbour along an axis.
    """
    dx, dy = pixel_size
    z = np.asarray(elevation, dtype=np.float64)
    dz_drow = _gradient(z, dy, axis=0)
    dz_dcol = _gradient(z, dx, axis=1)
    dz_east = dz_dcol
    dz_north = -dz_drow   # rows run southwards

    slope = np.degrees(np.arctan(np.hypot(dz_east, dz_north)))
    aspect = np.degrees(np.arctan2(-dz_east, -dz_north)) % 360.0
    flat = (dz_east == 0) & (dz_north == 0)
    aspect = np.where(flat, 0.0, aspect)
    missing = np.isnan(z)
    return np.where(missing, np.nan, slope), np.where(missing, np.nan, aspect)


# ---------------------------------------------------------------------------
# Tile mosaicking
# ---------------------------------------------------------------------------


class TerrainMosaicBuilder:
    """Stitch elevation tiles with their neighbours and derive slope/aspect.

    Parameters
    ----------
    tolerance:
        Maximum footprint distance in metres for a tile to count as a
        neighbour.  Touching or overlapping tiles have distance ``0``.
        On geographic grids it is converted to degrees at the tile's
        latitude.
    elevation_band:
        Name of the elevation band in the input tiles.
    margin_px:
        Pixels of neighbour context kept around each tile before clipping.
        One pixel is enough for the central-difference stencil.

    Tiles later in the input sequence overwrite earlier ones wherever they
    overlap, so the mosaic is identical across runs for the same input.
    """

    def __init__(
        self,
        tolerance: float = DEFAULT_TOLERANCE,
        elevation_band: str = "DEM",
        margin_px: int = 1,
    ) -> None:
        if tolerance < 0:
            raise ValueError(f"tolerance must be >= 0, got {tolerance}")
        if margin_px < 1:
            raise ValueError(f"margin_px must be >= 1, got {margin_px}")
        self.tolerance = tolerance
        self.elevation_band = elevation_band
        self.margin_px = margin_px
        self._compositor: NeighbourCompositor[tuple[int, Raster]] = NeighbourCompositor(
            predicate=self._within_tolerance,
            order_key=lambda item: item[0],
            raster_of=lambda item: item[1],
        )

    def _within_tolerance(self, a: tuple[int, Raster], b: tuple[int, Raster]) -> bool:
        return a[1].footprint.distance(b[1].footprint) <= self._tolerance_units(a[1].grid)

    def _tolerance_units(self, grid: Grid) -> float:
        """Tolerance in the CRS units of *grid*; degrees for geographic grids."""
        if not CRS.from_user_input(grid.crs).is_geographic:
            return self.tolerance
        _, south, _, north = grid.bounds
        return max(metres_to_degrees(self.tolerance, (south + north) / 2.0))

    def build(self, tiles: Sequence[Raster]) -> list[Raster]:
        """Return one ``DEM``/``slope``/``aspect`` raster per input tile.

        Each output shares the grid of its input tile.

        Raises:
            RasterError: If a tile is not north-up.
        """
        indexed = list(enumerate(tiles))
        out: list[Raster] = []
        for index, tile in indexed:
            self._check_north_up(tile)
            neighbours = self._compositor.neighbours((index, tile), indexed)
            logger.debug(
                "Tile %d: %d neighbour(s) within %.1f m",
                index, len(neighbours), self.tolerance,
            )
            padded = self._padded_grid(tile.grid)
            mosaic = self._compositor.composite(
                neighbours, padded, [self.elevation_band]
            )[self.elevation_band]
            slope, aspect = slope_aspect(mosaic, pixel_size_metres(padded))
            derived = Raster(
                {"DEM": mosaic, "slope": slope, "aspect": aspect},
                padded.transform, padded.crs, properties=tile.properties,
            )
            out.append(derived.resample_to(tile.grid))
        logger.info("Built terrain derivatives for %d tile(s)", len(out))
        return out

    def _padded_grid(self, grid: Grid) -> Grid:
        m = self.margin_px
        t = grid.transform
        (x0,), (y0,) = apply_affine(t, [-m], [-m])
        transform = Affine(t.a, t.b, float(x0), t.d, t.e, float(y0))
        return Grid(transform, grid.crs, (grid.shape[0] + 2 * m, grid.shape[1] + 2 * m))

    @staticmethod
    def _check_north_up(tile: Raster) -> None:
        t = tile.transform
        if t.b != 0 or t.d != 0 or t.a <= 0 or t.e >= 0:
            raise RasterError(
                f"Elevation tiles must be north-up without rotation, got transform {tuple(t)[:6]}"
            )

    @staticmethod
    def terrain_for(grid: Grid, terrain_tiles: Sequence[Raster]) -> Raster:
        """Mosaic processed terrain tiles onto *grid* (later tiles win)."""
        bands = paint_later_wins(terrain_tiles, grid, list(TERRAIN_BANDS))
        return Raster(bands, grid.transform, grid.crs)


# ---------------------------------------------------------------------------
# Local incidence angle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcquisitionGeometry:
    """Radar viewing geometry of one acquisition.

    Attributes:
        incidence_angle: Ellipsoid incidence angle in degrees, either a
            scalar or an array on the radar grid.
        heading: Platform heading, degrees clockwise from north.
        right_looking: Sentinel-1 and most SAR missions look right.
    """

    incidence_angle: float | FloatArray
    heading: float
    right_looking: bool = True

    @property
    def look_azimuth(self) -> float:
        """Azimuth of the range look direction, degrees clockwise from north."""
        offset = 90.0 if self.right_looking else -90.0
        return (self.heading + offset) % 360.0

    @classmethod
    def from_raster(
        cls, raster: Raster, angle_band: str = "angle", heading_property: str = "heading"
    ) -> "AcquisitionGeometry":
        """Read the incidence-angle band and heading property of a radar raster."""
        heading = raster.properties.get(heading_property)
        if heading is None:
            raise RasterError(
                f"Radar raster has no '{heading_property}' property for the incidence model."
            )
        return cls(np.array(raster.band(angle_band)), float(heading))


def local_incidence_angle(geometry: AcquisitionGeometry, terrain: Raster, grid: Grid) -> FloatArray:
    """Angle between the radar line of sight and the local terrain normal.

    ``cos(LIA) = cos(θ)·cos(s) − sin(θ)·sin(s)·cos(aspect − look_azimuth)``

    A slope facing the sensor reduces the angle to ``θ − s``; a slope
    facing away increases it to ``θ + s``.

    Args:
        geometry: Viewing geometry of the acquisition.
        terrain: Raster holding ``slope`` and ``aspect`` bands.
        grid: Radar grid the result is co-registered to.

    Returns:
        One LIA array in degrees on *grid*.
    """
    aligned = terrain.resample_to(grid)
    theta = np.radians(np.broadcast_to(geometry.incidence_angle, grid.shape))
    slope = np.radians(aligned.band("slope"))
    rel_aspect = np.radians(aligned.band("aspect") - geometry.look_azimuth)
    cos_lia = np.cos(theta) * np.cos(slope) - np.sin(theta) * np.sin(slope) * np.cos(rel_aspect)
    return np.degrees(np.arccos(np.clip(cos_lia, -1.0, 1.0)))
