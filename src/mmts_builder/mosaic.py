"""
mosaic.py
=========
"Collect neighbours, then composite" — the one operation shared by
terrain tile stitching and the radar/optical join.

A :class:`NeighbourCompositor` is parameterised with

* a neighbour predicate ``(target, candidate) -> bool``,
* an ordering key that ranks candidates from lowest to highest priority,
* an accessor returning the raster of an item.

Compositing paints the ranked candidates onto a target grid in order, so at
every pixel the highest-ranked candidate holding a valid (non-``NaN``)
value wins.  Equal keys keep their input order, which makes the result
deterministic for any input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Sequence, TypeVar

import numpy as np

from .raster import FloatArray, Grid, Raster

logger = logging.getLogger("mmts.mosaic")

T = TypeVar("T")


def paint_later_wins(
    rasters: Sequence[Raster],
    grid: Grid,
    bands: Sequence[str] | None = None,
) -> dict[str, FloatArray]:
    """Composite *rasters* onto *grid*, later entries overwriting earlier ones.

    Only valid pixels overwrite, so a later raster with a null pixel never
    erases an earlier valid value.

    Args:
        rasters: Rasters ordered from lowest to highest priority.
        grid: Target grid; every raster is resampled onto it.
        bands: Band names to composite.  Defaults to the union of all band
            names in first-seen order.  A band missing from a raster simply
            receives no contribution from it.

    Returns:
        Mapping of band name to composited array (``NaN`` where no raster
        contributed).
    """
    if bands is None:
        seen: dict[str, None] = {}
        for r in rasters:
            for name in r.band_names:
                seen.setdefault(name, None)
        bands = list(seen)

    out = {name: np.full(grid.shape, np.nan, dtype=np.float64) for name in bands}
    for raster in rasters:
        aligned = raster.resample_to(grid)
        for name in bands:
            if not aligned.has_band(name):
                continue
            values = aligned.band(name)
            valid = ~np.isnan(values)
            out[name][valid] = values[valid]
    return out


@dataclass(frozen=True)
class NeighbourCompositor(Generic[T]):
    """Generic neighbour selection plus later-wins compositing."""

    predicate: Callable[[T, T], bool]
    order_key: Callable[[T], Any]
    raster_of: Callable[[T], Raster]

    def neighbours(self, target: T, pool: Iterable[T]) -> list[T]:
        """Return the members of *pool* matching *target*, lowest priority first."""
        matches = [candidate for candidate in pool if self.predicate(target, candidate)]
        return sorted(matches, key=self.order_key)

    def composite(
        self,
        items: Sequence[T],
        grid: Grid,
        bands: Sequence[str] | None = None,
    ) -> dict[str, FloatArray]:
        """Composite already-ranked *items* onto *grid*."""
        return paint_later_wins([self.raster_of(i) for i in items], grid, bands)
