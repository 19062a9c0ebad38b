"""
join.py
=======
Temporal-spatial join of the radar (primary) and optical (secondary)
acquisition streams.

For each radar acquisition at time ``t``:

1. select optical acquisitions with timestamps in ``[t − Δ, t + Δ]``;
2. keep those whose footprint intersects the radar footprint;
3. drop the radar acquisition when nothing is left;
4. otherwise composite the candidates onto the radar grid, the most recent
   candidate with a valid pixel winning at every pixel;
5. append the composited bands and the candidate count.

The optical series is only read, never written, so primaries can be joined
concurrently on a thread pool without locking.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Sequence

import pandas as pd

from .mosaic import NeighbourCompositor
from .raster import AcquisitionRecord, JoinedRecord, RasterSeries

logger = logging.getLogger("mmts.join")

DEFAULT_TOLERANCE_HOURS = 24.0


class TemporalSpatialJoiner:
    """Match radar acquisitions with overlapping optical acquisitions.

    Parameters
    ----------
    secondary:
        Optical acquisitions (already masked and index-enriched).  Treated
        as immutable for the lifetime of the joiner.
    tolerance_hours:
        Half-width Δ of the matching window, in hours.
    bands:
        Optical bands to composite.  Defaults to the union of the band
        names of the matched candidates.
    """

    def __init__(
        self,
        secondary: RasterSeries,
        tolerance_hours: float = DEFAULT_TOLERANCE_HOURS,
        bands: Sequence[str] | None = None,
    ) -> None:
        if tolerance_hours < 0:
            raise ValueError(f"tolerance_hours must be >= 0, got {tolerance_hours}")
        self.secondary = secondary
        self.tolerance = pd.Timedelta(hours=tolerance_hours)
        self.bands = list(bands) if bands is not None else None
        self._compositor: NeighbourCompositor[AcquisitionRecord] = NeighbourCompositor(
            predicate=self._overlaps,
            order_key=lambda r: (r.timestamp, r.acquisition_id),
            raster_of=lambda r: r.raster,
        )

    def _overlaps(self, primary: AcquisitionRecord, candidate: AcquisitionRecord) -> bool:
        return primary.footprint.intersects(candidate.footprint)

    def candidates(self, primary: AcquisitionRecord) -> list[AcquisitionRecord]:
        """Optical acquisitions matching *primary*, oldest first."""
        in_window = self.secondary.window(
            primary.timestamp - self.tolerance, primary.timestamp + self.tolerance
        )
        return self._compositor.neighbours(primary, in_window)

    def join_one(self, primary: AcquisitionRecord) -> JoinedRecord | None:
        """Join a single radar acquisition; ``None`` when it has no match."""
        matches = self.candidates(primary)
        if not matches:
            logger.debug("No optical match for %s, dropped", primary.acquisition_id)
            return None

        grid = primary.raster.grid
        optical = self._compositor.composite(matches, grid, self.bands)
        clashing = [b for b in optical if primary.raster.has_band(b)]
        if clashing:
            logger.warning(
                "Optical band(s) %s overwrite radar bands of %s",
                clashing, primary.acquisition_id,
            )
        raster = primary.raster.with_bands(optical)
        return JoinedRecord(
            primary=primary,
            raster=raster,
            match_count=len(matches),
            source_ids=tuple(m.acquisition_id for m in matches),
        )

    def join(
        self, primaries: Iterable[AcquisitionRecord], max_workers: int = 1
    ) -> list[JoinedRecord]:
        """Join every primary, dropping those without any optical match.

        Output order follows input order regardless of *max_workers*.
        """
        primaries = list(primaries)
        if max_workers > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                results = list(pool.map(self.join_one, primaries))
        else:
            results = [self.join_one(p) for p in primaries]

        joined = [r for r in results if r is not None]
        logger.info(
            "Joined %d of %d radar acquisition(s) (Δ = %s)",
            len(joined), len(primaries), self.tolerance,
        )
        return joined
