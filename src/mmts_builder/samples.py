"""
samples.py
==========
Random generation of land-cover-homogeneous sample regions.

Random points are drawn inside the study area and buffered to squares of
side ``2r``.  The mean land-cover code inside each square decides whether
it is kept: a square that straddles two classes averages to a value
between class codes and is rejected, so only spatially pure samples
survive without any per-pixel majority vote.
"""

from __future__ import annotations

import logging
import uuid
from typing import Sequence

import geopandas as gpd
import numpy as np
from pyproj import CRS
from shapely.geometry import Point, box
from shapely.geometry.base import BaseGeometry
from shapely.prepared import prep

from shared.python.exceptions import InputValidationError
from shared.python.validators import Validators

from .raster import Raster, Region, regions_to_frame
from .terrain import metres_to_degrees
from .zonal import region_pixel_mask

logger = logging.getLogger("mmts.samples")

ALL_CLASSES = "ALL"
LAND_COVER_COLUMN = "landcover"

# ESA WorldCover 10 m v200 class codes
ESA_WORLDCOVER_CLASSES = (10, 20, 30, 40, 50, 60, 70, 80, 90, 95, 100)


class SampleGenerator:
    """Generate candidate sample regions filtered by land-cover purity.

    Parameters
    ----------
    count:
        Number of random points to draw.
    buffer_radius:
        Half side ``r`` of each square region in metres.  Projected CRSs
        are assumed to be metric.
    land_cover_class:
        ``"ALL"`` to accept any pure class from *valid_classes*, or a single
        class code to accept only regions of that class.
    seed:
        Seed of the point generator.  Region identifiers are always fresh.
    """

    def __init__(
        self,
        count: int,
        buffer_radius: float,
        land_cover_class: int | str = ALL_CLASSES,
        *,
        valid_classes: Sequence[int] = ESA_WORLDCOVER_CLASSES,
        land_cover_band: str = "Map",
        seed: int | None = None,
        max_draw_factor: int = 1000,
    ) -> None:
        Validators.assert_in_range("count", count, 1)
        Validators.assert_in_range("buffer_radius", buffer_radius, 0.0, exclusive_minimum=True)
        if land_cover_class != ALL_CLASSES:
            Validators.assert_choice("land_cover_class", land_cover_class, valid_classes)
        self.count = int(count)
        self.buffer_radius = float(buffer_radius)
        self.land_cover_class = land_cover_class
        self.valid_classes = tuple(valid_classes)
        self.land_cover_band = land_cover_band
        self.seed = seed
        self.max_draw_factor = max_draw_factor

    def random_points(self, study_area: BaseGeometry) -> list[Point]:
        """Draw :attr:`count` uniform random points inside *study_area*.

        Raises:
            InputValidationError: If the area is empty or the points cannot
                be placed within the draw budget.
        """
        if study_area.is_empty or study_area.area == 0:
            raise InputValidationError("Study area must be a non-empty polygon.")
        rng = np.random.default_rng(self.seed)
        minx, miny, maxx, maxy = study_area.bounds
        contains = prep(study_area).contains

        points: list[Point] = []
        budget = self.count * self.max_draw_factor
        while len(points) < self.count and budget > 0:
            batch = min(budget, max(64, 2 * (self.count - len(points))))
            budget -= batch
            xs = rng.uniform(minx, maxx, batch)
            ys = rng.uniform(miny, maxy, batch)
            for x, y in zip(xs, ys):
                candidate = Point(x, y)
                if contains(candidate):
                    points.append(candidate)
                    if len(points) == self.count:
                        break
        if len(points) < self.count:
            raise InputValidationError(
                f"Placed only {len(points)} of {self.count} point(s) inside the study area."
            )
        return points

    def candidate_regions(
        self, study_area: BaseGeometry, crs: str | None = None
    ) -> list[Region]:
        """Square regions around fresh random points, not yet purity-tested.

        On a geographic *crs* the metre radius is converted to degrees at
        each point's latitude.
        """
        token = uuid.uuid4().hex[:8]
        geographic = crs is not None and CRS.from_user_input(crs).is_geographic
        regions: list[Region] = []
        for i, p in enumerate(self.random_points(study_area)):
            if geographic:
                rx, ry = metres_to_degrees(self.buffer_radius, p.y)
            else:
                rx = ry = self.buffer_radius
            regions.append(Region(f"{token}-{i}", box(p.x - rx, p.y - ry, p.x + rx, p.y + ry)))
        return regions

    def land_cover_mean(self, region: Region, land_cover: Raster) -> float:
        """Mean land-cover code inside *region*; null pixels count as 0.

        A region reaching beyond the land-cover extent gets ``0.0``.
        """
        if not region.geometry.within(land_cover.footprint):
            return 0.0
        values = land_cover.band(self.land_cover_band)
        mask = region_pixel_mask(region.geometry, land_cover.grid)
        if not mask.any():
            return 0.0
        return float(np.nan_to_num(values[mask], nan=0.0).mean())

    def is_pure(self, mean: float) -> bool:
        if self.land_cover_class == ALL_CLASSES:
            return mean in self.valid_classes
        return mean == float(self.land_cover_class)

    def generate(self, study_area: BaseGeometry, land_cover: Raster) -> list[Region]:
        """Generate regions and keep those passing the purity test.

        Each kept region carries its mean class in the ``landcover``
        attribute.
        """
        kept: list[Region] = []
        candidates = self.candidate_regions(study_area, land_cover.crs)
        for region in candidates:
            mean = self.land_cover_mean(region, land_cover)
            if self.is_pure(mean):
                kept.append(Region(region.region_id, region.geometry, {LAND_COVER_COLUMN: int(mean)}))
        logger.info(
            "Sample purity filter (class %s): %d of %d region(s) kept",
            self.land_cover_class, len(kept), len(candidates),
        )
        return kept

    @staticmethod
    def to_frame(regions: Sequence[Region], crs: str | None = None) -> gpd.GeoDataFrame:
        return regions_to_frame(regions, crs)
