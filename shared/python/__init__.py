"""
MMTS Builder — Shared Python Package
=====================================
Re-exports the shared base class, exception hierarchy, and validator
utilities so every builder module can import from a single location::

    from shared.python import GeoTool, Validators
    from shared.python.exceptions import BandNotFoundError
"""

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    BandNotFoundError,
    ConfigurationError,
    CRSError,
    DataSourceError,
    GridMismatchError,
    InputValidationError,
    MMTSError,
    OutputWriteError,
    RasterError,
    SpectralIndexError,
)
from shared.python.validators import Validators

__all__ = [
    "GeoTool",
    "Validators",
    "MMTSError",
    "InputValidationError",
    "ConfigurationError",
    "CRSError",
    "RasterError",
    "BandNotFoundError",
    "GridMismatchError",
    "SpectralIndexError",
    "DataSourceError",
    "OutputWriteError",
]
