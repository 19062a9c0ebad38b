"""
radar.py
========
Polarimetric indices from dual-pol (VV/VH) amplitude bands.

Indices are computed on the speckle-filtered linear values; VV and VH are
converted to decibels afterwards.  Any pixel whose formula divides by zero,
or whose linear value is not positive when converted to dB, becomes
``NaN`` (null) instead of raising.

Supported indices
-----------------
====== =====================================
VH/VV  VH / VV
VV/VH  VV / VH
RVI    4·VH / (VV + VH)
RFDI   (VV − VH) / (VV + VH)
NRPB   (VH − VV) / (VH + VV)
DPSVIm (VV² + VV·VH) / √2
====== =====================================

``VV`` and ``VH`` are always kept (in dB).  Unknown index names are silently
omitted from the output.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Sequence

import numpy as np

from .raster import FloatArray, Raster

logger = logging.getLogger("mmts.radar")

AMPLITUDE_BANDS = ("VV", "VH")


def safe_divide(numerator: FloatArray, denominator: FloatArray) -> FloatArray:
    """Element-wise division with ``NaN`` where the denominator is zero."""
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(denominator == 0, np.nan, numerator / denominator)


def power_to_db(values: FloatArray) -> FloatArray:
    """``10·log10(x)``; non-positive inputs become ``NaN``."""
    arr = np.asarray(values, dtype=np.float64)
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(arr > 0, 10.0 * np.log10(np.where(arr > 0, arr, 1.0)), np.nan)


def db_to_power(values: FloatArray) -> FloatArray:
    """Inverse of :func:`power_to_db`: ``10**(x/10)``."""
    return np.power(10.0, np.asarray(values, dtype=np.float64) / 10.0)


def _vh_vv(vv: FloatArray, vh: FloatArray) -> FloatArray:
    return safe_divide(vh, vv)


def _vv_vh(vv: FloatArray, vh: FloatArray) -> FloatArray:
    return safe_divide(vv, vh)


def _rvi(vv: FloatArray, vh: FloatArray) -> FloatArray:
    return safe_divide(4.0 * vh, vv + vh)


def _rfdi(vv: FloatArray, vh: FloatArray) -> FloatArray:
    return safe_divide(vv - vh, vv + vh)


def _nrpb(vv: FloatArray, vh: FloatArray) -> FloatArray:
    return safe_divide(vh - vv, vh + vv)


def _dpsvim(vv: FloatArray, vh: FloatArray) -> FloatArray:
    return (vv * vv + vv * vh) / math.sqrt(2.0)


RADAR_INDICES: dict[str, Callable[[FloatArray, FloatArray], FloatArray]] = {
    "VH/VV": _vh_vv,
    "VV/VH": _vv_vh,
    "RVI": _rvi,
    "RFDI": _rfdi,
    "NRPB": _nrpb,
    "DPSVIm": _dpsvim,
}

DEFAULT_RADAR_INDICES = ("VV", "VH", "RVI", "RFDI", "NRPB", "VH/VV", "VV/VH", "DPSVIm")


class RadarIndexEngine:
    """Add requested polarimetric indices and convert VV/VH to dB.

    Parameters
    ----------
    requested:
        Index names to output.  Names that are not recognised are dropped
        without error.
    """

    def __init__(self, requested: Sequence[str] = DEFAULT_RADAR_INDICES) -> None:
        self.requested = tuple(requested)
        unknown = [
            name for name in self.requested
            if name not in RADAR_INDICES and name not in AMPLITUDE_BANDS
        ]
        if unknown:
            logger.debug("Ignoring unknown radar index name(s): %s", ", ".join(unknown))

    @property
    def output_bands(self) -> list[str]:
        """Requested names that this engine will actually emit, in request order."""
        return [
            n for n in self.requested
            if n in RADAR_INDICES or n in AMPLITUDE_BANDS
        ]

    def compute(self, vv: FloatArray, vh: FloatArray) -> dict[str, FloatArray]:
        """Return the requested indices for linear ``vv``/``vh`` arrays."""
        vv = np.asarray(vv, dtype=np.float64)
        vh = np.asarray(vh, dtype=np.float64)
        return {
            name: RADAR_INDICES[name](vv, vh)
            for name in self.output_bands
            if name in RADAR_INDICES
        }

    def apply(self, raster: Raster) -> Raster:
        """Return *raster* with index bands added and VV/VH converted to dB.

        The amplitude bands are always kept: the cross-pol band is the
        radar presence key used by the null policy.
        """
        vv, vh = raster.band("VV"), raster.band("VH")
        indices = self.compute(vv, vh)
        db = {"VV": power_to_db(vv), "VH": power_to_db(vh)}
        return raster.with_bands({**indices, **db})
