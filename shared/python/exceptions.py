"""
MMTS Builder — Custom Exception Hierarchy
==========================================
Every module of the time-series builder raises exceptions from this module
so callers can catch them at the right level of granularity.

Hierarchy::

    MMTSError                            ← catch-all base
    ├── InputValidationError             ← bad files, bad parameters, etc.
    │   └── ConfigurationError           ← one invalid configuration field
    ├── CRSError                         ← invalid / unknown CRS string
    ├── RasterError                      ← numpy / rasterio raster issues
    │   ├── BandNotFoundError            ← requested band name does not exist
    │   └── GridMismatchError            ← arrays that must share a grid do not
    ├── SpectralIndexError               ← index strategy cannot run
    ├── DataSourceError                  ← upstream data access failed
    └── OutputWriteError                 ← cannot write to output path

Numerical nulls (division by zero in an index, log of a non-positive
value) are never reported through this hierarchy: they become ``NaN``
pixels and flow through aggregation as "no observation".

Usage::

    from shared.python.exceptions import BandNotFoundError

    raise BandNotFoundError("VH", raster.band_names)
"""

from __future__ import annotations

from typing import Sequence


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class MMTSError(Exception):
    """Base exception for the multi-modal time-series builder.

    Args:
        message: Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(MMTSError):
    """Raised when pipeline inputs fail pre-processing validation."""


class ConfigurationError(InputValidationError):
    """Raised when a single configuration field holds an invalid value.

    Args:
        field_name: Name of the offending configuration field.
        reason: Short explanation of what is wrong with the value.

    Example::

        raise ConfigurationError("kernel_size", "must be an odd integer >= 3, got 4")
    """

    def __init__(self, field_name: str, reason: str) -> None:
        super().__init__(f"Invalid configuration for '{field_name}': {reason}")
        self.field_name: str = field_name
        self.reason: str = reason


# ---------------------------------------------------------------------------
# CRS
# ---------------------------------------------------------------------------


class CRSError(MMTSError):
    """Raised when a CRS string cannot be parsed.

    Args:
        crs_string: The raw CRS string that caused the error.
    """

    def __init__(self, crs_string: str) -> None:
        super().__init__(
            f"Invalid or unrecognised CRS: '{crs_string}'. "
            "Use an EPSG code (e.g. 'EPSG:32633') or a valid WKT/PROJ string."
        )
        self.crs_string: str = crs_string


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(MMTSError):
    """Raised for general raster processing failures."""


class BandNotFoundError(RasterError):
    """Raised when a named band is absent from a raster.

    Args:
        band_name: The band that was requested.
        available: Band names that ARE present.
    """

    def __init__(self, band_name: str, available: Sequence[str]) -> None:
        available_str = ", ".join(f"'{b}'" for b in available) or "none"
        super().__init__(
            f"Band '{band_name}' not found. Available bands: {available_str}"
        )
        self.band_name: str = band_name
        self.available: list[str] = list(available)


class GridMismatchError(RasterError):
    """Raised when arrays that must share one grid have different shapes."""


# ---------------------------------------------------------------------------
# Spectral index
# ---------------------------------------------------------------------------


class SpectralIndexError(MMTSError):
    """Raised when an index strategy cannot be evaluated.

    Args:
        index_name: The index that failed (e.g. ``"EVI"``).
        reason: Short explanation of why calculation failed.
    """

    def __init__(self, index_name: str, reason: str) -> None:
        super().__init__(f"Cannot calculate {index_name}: {reason}")
        self.index_name: str = index_name
        self.reason: str = reason


# ---------------------------------------------------------------------------
# Data access
# ---------------------------------------------------------------------------


class DataSourceError(MMTSError):
    """Raised when an upstream data source cannot be read.

    These failures are fatal: the pipeline never retries or recovers.
    """


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(MMTSError):
    """Raised when the export sink cannot write its output.

    Args:
        output_path: String representation of the path that failed.
        reason: Underlying OS or library error message.
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(f"Failed to write output to '{output_path}': {reason}")
        self.output_path: str = output_path
        self.reason: str = reason
