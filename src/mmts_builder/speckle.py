"""
speckle.py
==========
Adaptive speckle suppression for radar amplitude bands (Lee filter).

J. S. Lee, "Digital image enhancement and noise filtering by use of local
statistics", IEEE PAMI-2, 1980, in the MMSE form of Mullissa et al. 2021.

For every pixel of every filtered band::

    eta  = 1 / sqrt(ENL)
    varx = max(0, (varz - zbar**2 * eta**2) / (1 + eta**2))
    b    = varx / varz            (0 where varz == 0)
    out  = (1 - b) * |zbar| + b * z

Edge policy
-----------
The k×k window is intersected with the raster extent ("shrink window"):
border pixels use only the neighbours that exist.  Null pixels are left
out of the neighbourhood statistics in the same way and stay null in the
output.  Variance is the population variance of the window.  A window in
which every valid value is identical has ``varz = 0`` exactly and returns
the input value unchanged.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

import numpy as np
from scipy.ndimage import maximum_filter, minimum_filter, uniform_filter

from shared.python.validators import Validators

from .raster import FloatArray, Raster

logger = logging.getLogger("mmts.speckle")

DEFAULT_KERNEL_SIZE = 5
DEFAULT_ENL = 5.0


def local_statistics(band: FloatArray, size: int) -> tuple[FloatArray, FloatArray]:
    """Return the windowed mean and population variance of *band*.

    Windows are clipped to the raster extent and ignore ``NaN`` pixels.
    Windows with no valid pixel yield ``NaN`` for both statistics.
    """
    data = np.asarray(band, dtype=np.float64)
    valid = ~np.isnan(data)
    filled = np.where(valid, data, 0.0)
    weight = valid.astype(np.float64)

    # uniform_filter returns window means; the ratio of two means over the
    # same zero-padded window is the mean over the valid, in-extent pixels.
    count = uniform_filter(weight, size=size, mode="constant", cval=0.0)
    s1 = uniform_filter(filled, size=size, mode="constant", cval=0.0)
    s2 = uniform_filter(filled * filled, size=size, mode="constant", cval=0.0)

    with np.errstate(invalid="ignore", divide="ignore"):
        has_data = count > 1e-12
        mean = np.where(has_data, s1 / count, np.nan)
        variance = np.where(has_data, np.maximum(s2 / count - mean * mean, 0.0), np.nan)

    # Exactly homogeneous windows: pin the statistics so no rounding leaks in
    local_min = minimum_filter(np.where(valid, data, np.inf), size=size, mode="nearest")
    local_max = maximum_filter(np.where(valid, data, -np.inf), size=size, mode="nearest")
    flat = has_data & (local_min == local_max)
    mean = np.where(flat, local_min, mean)
    variance = np.where(flat, 0.0, variance)
    return mean, variance


def lee_weights(mean: FloatArray, variance: FloatArray, enl: float = DEFAULT_ENL) -> FloatArray:
    """MMSE weight ``b`` of the original pixel, in ``[0, 1)``.

    ``b`` is ``0`` where the local variance is zero.
    """
    eta2 = 1.0 / enl
    varx = np.maximum((variance - mean * mean * eta2) / (1.0 + eta2), 0.0)
    with np.errstate(invalid="ignore", divide="ignore"):
        b = np.where(variance > 0, varx / np.where(variance > 0, variance, 1.0), 0.0)
    return np.clip(b, 0.0, None)


class LeeFilter:
    """Lee speckle filter applied to the amplitude bands of a radar raster.

    Parameters
    ----------
    kernel_size:
        Odd window width ``k`` of the k×k neighbourhood.
    enl:
        Equivalent number of looks.  Sentinel-1 GRD is multilooked five
        times in range.
    bands:
        Bands to filter; every other band passes through unchanged.
    """

    def __init__(
        self,
        kernel_size: int = DEFAULT_KERNEL_SIZE,
        enl: float = DEFAULT_ENL,
        bands: Sequence[str] = ("VV", "VH"),
    ) -> None:
        Validators.assert_odd_kernel("kernel_size", kernel_size)
        Validators.assert_in_range("enl", enl, 0.0, exclusive_minimum=True)
        self.kernel_size = kernel_size
        self.enl = float(enl)
        self.bands = tuple(bands)

    @property
    def eta(self) -> float:
        """Speckle coefficient of variation, ``1 / sqrt(ENL)``."""
        return 1.0 / math.sqrt(self.enl)

    def filter_band(self, band: FloatArray) -> FloatArray:
        """Filter one 2-D amplitude array."""
        data = np.asarray(band, dtype=np.float64)
        mean, variance = local_statistics(data, self.kernel_size)
        b = lee_weights(mean, variance, self.enl)
        out = (1.0 - b) * np.abs(mean) + b * data
        return np.where(np.isnan(data), np.nan, out)

    def apply(self, raster: Raster) -> Raster:
        """Return *raster* with its amplitude bands replaced by filtered ones."""
        filtered = {name: self.filter_band(raster.band(name)) for name in self.bands}
        logger.debug(
            "Lee filter k=%d ENL=%.1f applied to %s", self.kernel_size, self.enl, list(filtered)
        )
        return raster.with_bands(filtered)
