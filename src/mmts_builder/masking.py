"""
masking.py
==========
Cloud, shadow, and snow masking of optical acquisitions.

Two levels of filtering are applied to the optical stream:

1. **Scene level** — :func:`filter_cloudy_scenes` drops whole acquisitions
   whose reported cloudy-pixel percentage is too high.
2. **Pixel level** — :class:`CloudSnowMask` nulls every pixel whose cloud
   score is below the clear threshold and, optionally, pixels flagged as
   snow (NDSI ≥ 0) or carrying a reserved scene-classification code.

Masked pixels become ``NaN`` in every band so that aggregation can tell
"no valid observation" apart from an observed zero.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import numpy.typing as npt

from shared.python.validators import Validators

from .optical import normalized_difference
from .raster import Raster, RasterSeries

logger = logging.getLogger("mmts.masking")

CLOUDY_PIXEL_PROPERTY = "CLOUDY_PIXEL_PERCENTAGE"

# Sentinel-2 SCL codes: 3 = cloud shadow, 11 = snow / ice
DEFAULT_SHADOW_CODES = (3, 11)


def filter_cloudy_scenes(
    series: RasterSeries,
    max_cloud_pct: float,
    property_name: str = CLOUDY_PIXEL_PROPERTY,
) -> RasterSeries:
    """Keep acquisitions whose cloudy-pixel percentage is below *max_cloud_pct*.

    Acquisitions without the property are kept.
    """
    def _clear_enough(record) -> bool:
        pct = record.raster.properties.get(property_name)
        return pct is None or float(pct) < max_cloud_pct

    kept = series.filter(_clear_enough)
    logger.info(
        "Scene cloud filter (< %.1f%%): %d of %d %s acquisition(s) kept",
        max_cloud_pct, len(kept), len(series), series.sensor,
    )
    return kept


class CloudSnowMask:
    """Per-pixel validity mask from a cloud score and optional snow/shadow tests.

    Parameters
    ----------
    clear_threshold:
        Pixels with ``score < clear_threshold`` are invalid.  Values between
        0.50 and 0.65 generally work well; higher values also remove thin
        clouds and haze.
    qa_band:
        Name of the cloud-score band (``"cs"`` or ``"cs_cdf"``).
    mask_snow:
        Also invalidate pixels with ``NDSI >= snow_threshold`` or whose
        ``scl_band`` value is in *shadow_codes*.
    """

    def __init__(
        self,
        clear_threshold: float = 0.60,
        qa_band: str = "cs",
        *,
        mask_snow: bool = False,
        snow_threshold: float = 0.0,
        scl_band: str = "SCL",
        shadow_codes: Sequence[int] = DEFAULT_SHADOW_CODES,
        green_band: str = "B3",
        swir_band: str = "B11",
    ) -> None:
        Validators.assert_in_range("clear_threshold", clear_threshold, 0.0, 1.0)
        self.clear_threshold = clear_threshold
        self.qa_band = qa_band
        self.mask_snow = mask_snow
        self.snow_threshold = snow_threshold
        self.scl_band = scl_band
        self.shadow_codes = tuple(shadow_codes)
        self.green_band = green_band
        self.swir_band = swir_band

    def valid_mask(self, raster: Raster) -> npt.NDArray[np.bool_]:
        """Return ``True`` where the pixel is a usable observation."""
        score = raster.band(self.qa_band)
        with np.errstate(invalid="ignore"):
            valid = score >= self.clear_threshold

        if self.mask_snow:
            if raster.has_band("NDSI"):
                ndsi = raster.band("NDSI")
            else:
                ndsi = normalized_difference(
                    raster.band(self.green_band), raster.band(self.swir_band)
                )
            with np.errstate(invalid="ignore"):
                valid &= ~(ndsi >= self.snow_threshold)
            if raster.has_band(self.scl_band):
                valid &= ~np.isin(raster.band(self.scl_band), self.shadow_codes)
        return valid

    def apply(self, raster: Raster) -> Raster:
        """Return *raster* with every band set to ``NaN`` on invalid pixels."""
        valid = self.valid_mask(raster)
        masked = {name: np.where(valid, arr, np.nan) for name, arr in raster.bands.items()}
        logger.debug(
            "Masked %d of %d pixel(s) at %s",
            int(valid.size - np.count_nonzero(valid)), valid.size, raster.timestamp,
        )
        return raster.with_bands(masked)
