"""
optical.py
==========
Optical vegetation, water, and snow indices from Sentinel-2 reflectance.

Each index is an :class:`IndexStrategy` (Strategy design pattern); the
:class:`OpticalIndexEngine` runs the requested strategies on one optical
acquisition.  Biophysical parameters (FAPAR, LAI and their 3-band
variants) come from an external regression model behind the
:class:`BiophysicalModel` interface.

Supported indices:
    - NDVI          ND(B8, B4)
    - NDVIrededge   ND(B8, B5)
    - NDWI          ND(B3, B8)
    - NDMI          ND(B8, B11)
    - NDSI          ND(B3, B11)
    - EVI           2.5·(NIR − RED) / (NIR + 6·RED − 7.5·BLUE + 1)
    - FAPAR, LAI, FAPAR_3b, LAI_3b   via :class:`BiophysicalModel`

where ``ND(a, b) = (a − b) / (a + b)``.  Zero denominators give ``NaN``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Mapping, Sequence

import numpy as np

from shared.python.exceptions import SpectralIndexError
from shared.python.validators import Validators

from .raster import FloatArray, Raster

logger = logging.getLogger("mmts.optical")

REFLECTANCE_SCALE = 10_000.0
BIOPHYSICAL_PARAMETERS = ("FAPAR", "LAI", "FAPAR_3b", "LAI_3b")


def normalized_difference(a: FloatArray, b: FloatArray) -> FloatArray:
    """``(a − b) / (a + b)`` with ``NaN`` where ``a + b == 0``."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    denominator = a + b
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(denominator == 0, np.nan, (a - b) / denominator)


# ---------------------------------------------------------------------------
# Index strategy ABC + concrete implementations
# ---------------------------------------------------------------------------


class IndexStrategy(ABC):
    """Abstract base for one optical index computation."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Output band name of the index (e.g. ``"NDVI"``)."""

    @property
    @abstractmethod
    def required_bands(self) -> list[str]:
        """Reflectance band names the index needs."""

    @abstractmethod
    def compute(self, bands: Mapping[str, FloatArray]) -> FloatArray:
        """Compute the index from a mapping of band name to array."""


class NormalizedDifferenceStrategy(IndexStrategy):
    """Generic normalized-difference index ``(a − b) / (a + b)``."""

    def __init__(self, name: str, band_a: str, band_b: str) -> None:
        self._name = name
        self.band_a = band_a
        self.band_b = band_b

    @property
    def name(self) -> str:
        return self._name

    @property
    def required_bands(self) -> list[str]:
        return [self.band_a, self.band_b]

    def compute(self, bands: Mapping[str, FloatArray]) -> FloatArray:
        return normalized_difference(bands[self.band_a], bands[self.band_b])

    def __repr__(self) -> str:
        return f"NormalizedDifferenceStrategy({self._name!r}, {self.band_a!r}, {self.band_b!r})"


class EVIStrategy(IndexStrategy):
    """EVI — Enhanced Vegetation Index.

    Formula:
        ``EVI = 2.5 * (NIR - RED) / (NIR + 6*RED - 7.5*BLUE + 1)``

    Inputs are digital numbers divided by *scale* so the constant term
    matches reflectance in ``[0, 1]``.
    """

    def __init__(
        self,
        nir: str = "B8",
        red: str = "B4",
        blue: str = "B2",
        scale: float = REFLECTANCE_SCALE,
    ) -> None:
        self.nir, self.red, self.blue = nir, red, blue
        self.scale = scale

    @property
    def name(self) -> str:
        return "EVI"

    @property
    def required_bands(self) -> list[str]:
        return [self.blue, self.red, self.nir]

    def compute(self, bands: Mapping[str, FloatArray]) -> FloatArray:
        nir = np.asarray(bands[self.nir], dtype=np.float64) / self.scale
        red = np.asarray(bands[self.red], dtype=np.float64) / self.scale
        blue = np.asarray(bands[self.blue], dtype=np.float64) / self.scale
        denominator = nir + 6.0 * red - 7.5 * blue + 1.0
        with np.errstate(invalid="ignore", divide="ignore"):
            return np.where(denominator == 0, np.nan, 2.5 * (nir - red) / denominator)


# ---------------------------------------------------------------------------
# Default strategy suite
# ---------------------------------------------------------------------------

OPTICAL_STRATEGIES: dict[str, IndexStrategy] = {
    s.name: s
    for s in (
        NormalizedDifferenceStrategy("NDVI", "B8", "B4"),
        NormalizedDifferenceStrategy("NDVIrededge", "B8", "B5"),
        NormalizedDifferenceStrategy("NDWI", "B3", "B8"),
        NormalizedDifferenceStrategy("NDMI", "B8", "B11"),
        NormalizedDifferenceStrategy("NDSI", "B3", "B11"),
        EVIStrategy(),
    )
}

DEFAULT_OPTICAL_INDICES = ("NDVI", "FAPAR", "LAI", "EVI")


# ---------------------------------------------------------------------------
# Biophysical model interface
# ---------------------------------------------------------------------------


class BiophysicalModel(ABC):
    """Regression model deriving biophysical parameters from reflectance.

    Implementations receive every band of one optical acquisition and
    return one array per parameter on the same grid.
    """

    @property
    @abstractmethod
    def parameters(self) -> Sequence[str]:
        """Names of the parameters this model produces (e.g. ``"LAI"``)."""

    @abstractmethod
    def predict(self, bands: Mapping[str, FloatArray]) -> Mapping[str, FloatArray]:
        """Return ``{parameter: array}`` for the given reflectance bands."""


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class OpticalIndexEngine:
    """Compute the requested optical indices for one acquisition.

    Parameters
    ----------
    requested:
        Output names.  Spectral names run their strategy, biophysical names
        are delegated to *model*; anything else is omitted without error.
    model:
        Optional :class:`BiophysicalModel`.  Without one, biophysical names
        are omitted.
    keep_inputs:
        Keep the reflectance bands next to the indices.  By default only
        the requested outputs remain.
    """

    def __init__(
        self,
        requested: Sequence[str] = DEFAULT_OPTICAL_INDICES,
        model: BiophysicalModel | None = None,
        *,
        keep_inputs: bool = False,
    ) -> None:
        self.requested = tuple(requested)
        self.model = model
        self.keep_inputs = keep_inputs

        self.strategies = [OPTICAL_STRATEGIES[n] for n in self.requested if n in OPTICAL_STRATEGIES]
        model_outputs = set(model.parameters) if model is not None else set()
        self.biophysical = [n for n in self.requested if n in model_outputs]

        skipped = [
            n for n in self.requested
            if n not in OPTICAL_STRATEGIES and n not in model_outputs
        ]
        if skipped:
            logger.debug("Optical outputs not available, omitted: %s", ", ".join(skipped))

    @property
    def output_bands(self) -> list[str]:
        """Names this engine emits, in request order."""
        emitted = {s.name for s in self.strategies} | set(self.biophysical)
        return [n for n in self.requested if n in emitted]

    @property
    def required_bands(self) -> list[str]:
        """Union of reflectance bands the selected strategies need."""
        needed: dict[str, None] = {}
        for strategy in self.strategies:
            for band in strategy.required_bands:
                needed.setdefault(band, None)
        return list(needed)

    def validate(self, available: Sequence[str]) -> None:
        """Check that every selected strategy has its inputs.

        Raises:
            SpectralIndexError: Naming the first strategy with a missing band.
        """
        for strategy in self.strategies:
            missing = [b for b in strategy.required_bands if b not in available]
            if missing:
                raise SpectralIndexError(
                    strategy.name, f"Required band(s) not provided: {', '.join(missing)}"
                )

    def apply(self, raster: Raster) -> Raster:
        """Return *raster* with the requested index bands.

        Raises:
            SpectralIndexError: If a strategy's inputs are missing or the
                biophysical model omits a requested parameter.
            GridMismatchError: If the model returns an array of another shape.
        """
        self.validate(raster.band_names)
        outputs: dict[str, FloatArray] = {}
        for strategy in self.strategies:
            outputs[strategy.name] = strategy.compute(raster.bands)

        if self.biophysical:
            predicted = self.model.predict(raster.bands)  # type: ignore[union-attr]
            for name in self.biophysical:
                if name not in predicted:
                    raise SpectralIndexError(name, "biophysical model returned no output")
                Validators.assert_raster_shapes_match(
                    raster.shape, np.shape(predicted[name]), "reflectance", name
                )
                outputs[name] = np.asarray(predicted[name], dtype=np.float64)

        ordered = {n: outputs[n] for n in self.output_bands}
        if not ordered and not self.keep_inputs:
            raise SpectralIndexError(
                ", ".join(self.requested) or "<none>",
                "none of the requested optical outputs can be computed",
            )
        if self.keep_inputs:
            return raster.with_bands(ordered)
        return Raster(ordered, raster.transform, raster.crs, raster.timestamp, raster.properties)
