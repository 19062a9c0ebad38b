"""
Tests for the radar and optical index engines
==============================================

Test classes:
    TestRadarFormulas         Per-pixel polarimetric index algebra.
    TestRadarIndexEngine      Band selection and dB conversion.
    TestOpticalStrategies     Normalized differences and EVI.
    TestOpticalIndexEngine    Band selection and the biophysical model seam.
"""

from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np
import numpy.typing as npt
import pandas as pd
import pytest
from rasterio.transform import from_origin

from mmts_builder.optical import (
    OPTICAL_STRATEGIES,
    BiophysicalModel,
    EVIStrategy,
    OpticalIndexEngine,
    normalized_difference,
)
from mmts_builder.radar import (
    RADAR_INDICES,
    RadarIndexEngine,
    db_to_power,
    power_to_db,
)
from mmts_builder.raster import Raster
from shared.python.exceptions import SpectralIndexError


def _raster(**bands: float | npt.ArrayLike) -> Raster:
    arrays = {k: np.full((3, 3), v) if np.isscalar(v) else np.asarray(v) for k, v in bands.items()}
    return Raster(arrays, from_origin(0, 30, 10, 10), "EPSG:32633", "2021-06-01T10:00")


class _ConstantModel(BiophysicalModel):
    """Returns fixed values for FAPAR and LAI."""

    def __init__(self, outputs: Mapping[str, float]) -> None:
        self.outputs = dict(outputs)

    @property
    def parameters(self) -> Sequence[str]:
        return ("FAPAR", "LAI")

    def predict(self, bands):
        shape = next(iter(bands.values())).shape
        return {k: np.full(shape, v) for k, v in self.outputs.items()}


# ---------------------------------------------------------------------------
# Radar
# ---------------------------------------------------------------------------

class TestRadarFormulas:
    def test_equal_polarisations_give_zero_differences(self) -> None:
        values = np.array([[0.01, 0.1, 1.0, 7.5]])
        assert RADAR_INDICES["RFDI"](values, values) == pytest.approx(np.zeros((1, 4)))
        assert RADAR_INDICES["NRPB"](values, values) == pytest.approx(np.zeros((1, 4)))

    def test_rvi_bounded(self) -> None:
        rng = np.random.default_rng(5)
        vv = rng.uniform(1e-4, 1.0, (50, 50))
        vh = rng.uniform(1e-4, 1.0, (50, 50))
        rvi = RADAR_INDICES["RVI"](vv, vh)
        assert np.all((rvi >= 0.0) & (rvi <= 4.0))

    def test_known_values(self) -> None:
        vv, vh = np.array([0.1]), np.array([0.02])
        assert RADAR_INDICES["VH/VV"](vv, vh)[0] == pytest.approx(0.2)
        assert RADAR_INDICES["VV/VH"](vv, vh)[0] == pytest.approx(5.0)
        assert RADAR_INDICES["RVI"](vv, vh)[0] == pytest.approx(0.08 / 0.12)
        assert RADAR_INDICES["RFDI"](vv, vh)[0] == pytest.approx(0.08 / 0.12)
        assert RADAR_INDICES["DPSVIm"](vv, vh)[0] == pytest.approx((0.01 + 0.002) / np.sqrt(2))

    def test_zero_denominator_is_null_not_error(self) -> None:
        zero = np.zeros((2, 2))
        for name in ("VH/VV", "VV/VH", "RVI", "RFDI", "NRPB"):
            assert np.isnan(RADAR_INDICES[name](zero, zero)).all(), name


class TestRadarIndexEngine:
    def test_unknown_names_omitted(self) -> None:
        engine = RadarIndexEngine(["RVI", "NOT_AN_INDEX", "VV"])
        assert engine.output_bands == ["RVI", "VV"]
        out = engine.apply(_raster(VV=0.1, VH=0.02))
        assert "NOT_AN_INDEX" not in out.band_names
        assert out.has_band("RVI")

    def test_indices_use_linear_values_and_amplitudes_become_db(self) -> None:
        out = RadarIndexEngine(["VV", "VH", "VH/VV"]).apply(_raster(VV=0.1, VH=0.01))
        assert out.band("VH/VV") == pytest.approx(np.full((3, 3), 0.1))
        assert out.band("VV") == pytest.approx(np.full((3, 3), -10.0))
        assert out.band("VH") == pytest.approx(np.full((3, 3), -20.0))

    def test_amplitudes_kept_when_not_requested(self) -> None:
        out = RadarIndexEngine(["RVI"]).apply(_raster(VV=0.1, VH=0.01))
        assert out.has_band("VV") and out.has_band("VH")

    def test_other_bands_pass_through(self) -> None:
        out = RadarIndexEngine().apply(_raster(VV=0.1, VH=0.01, DEM=250.0))
        assert out.band("DEM")[0, 0] == 250.0

    def test_db_round_trip(self) -> None:
        linear = np.array([1e-5, 0.003, 0.25, 1.0, 3.7])
        assert db_to_power(power_to_db(linear)) == pytest.approx(linear, rel=1e-12)

    def test_non_positive_db_input_is_null(self) -> None:
        db = power_to_db(np.array([0.0, -0.5, np.nan]))
        assert np.isnan(db).all()


# ---------------------------------------------------------------------------
# Optical
# ---------------------------------------------------------------------------

class TestOpticalStrategies:
    def test_ndvi(self) -> None:
        bands = {"B8": np.array([[0.5]]), "B4": np.array([[0.1]])}
        assert OPTICAL_STRATEGIES["NDVI"].compute(bands)[0, 0] == pytest.approx(0.4 / 0.6)

    def test_band_pairs(self) -> None:
        pairs = {
            name: OPTICAL_STRATEGIES[name].required_bands
            for name in ("NDVI", "NDVIrededge", "NDWI", "NDMI", "NDSI")
        }
        assert pairs == {
            "NDVI": ["B8", "B4"],
            "NDVIrededge": ["B8", "B5"],
            "NDWI": ["B3", "B8"],
            "NDMI": ["B8", "B11"],
            "NDSI": ["B3", "B11"],
        }

    def test_zero_denominator_is_null(self) -> None:
        assert np.isnan(normalized_difference(np.zeros(2), np.zeros(2))).all()

    def test_evi_scales_digital_numbers(self) -> None:
        bands = {
            "B8": np.array([[5000.0]]), "B4": np.array([[1000.0]]), "B2": np.array([[200.0]]),
        }
        nir, red, blue = 0.5, 0.1, 0.02
        expected = 2.5 * (nir - red) / (nir + 6 * red - 7.5 * blue + 1)
        assert EVIStrategy().compute(bands)[0, 0] == pytest.approx(expected)


class TestOpticalIndexEngine:
    def test_only_requested_outputs_remain(self) -> None:
        engine = OpticalIndexEngine(["NDVI", "UNKNOWN"])
        out = engine.apply(_raster(B8=3000.0, B4=1000.0))
        assert out.band_names == ["NDVI"]
        assert out.band("NDVI") == pytest.approx(np.full((3, 3), 0.5))
        assert out.timestamp == pd.Timestamp("2021-06-01T10:00")

    def test_keep_inputs(self) -> None:
        out = OpticalIndexEngine(["NDVI"], keep_inputs=True).apply(_raster(B8=3000.0, B4=1000.0))
        assert out.band_names == ["B8", "B4", "NDVI"]

    def test_biophysical_names_omitted_without_model(self) -> None:
        engine = OpticalIndexEngine(["NDVI", "LAI"])
        assert engine.output_bands == ["NDVI"]

    def test_biophysical_model_outputs_attached(self) -> None:
        engine = OpticalIndexEngine(["LAI", "NDVI"], _ConstantModel({"FAPAR": 0.4, "LAI": 2.5}))
        out = engine.apply(_raster(B8=3000.0, B4=1000.0))
        assert out.band_names == ["LAI", "NDVI"]
        assert out.band("LAI")[1, 1] == 2.5

    def test_model_missing_parameter_raises(self) -> None:
        engine = OpticalIndexEngine(["LAI"], _ConstantModel({"FAPAR": 0.4}))
        with pytest.raises(SpectralIndexError, match="LAI"):
            engine.apply(_raster(B8=3000.0, B4=1000.0))

    def test_missing_input_band_raises(self) -> None:
        with pytest.raises(SpectralIndexError, match="B4"):
            OpticalIndexEngine(["NDVI"]).apply(_raster(B8=3000.0))

    def test_required_bands_union(self) -> None:
        engine = OpticalIndexEngine(["NDVI", "EVI", "NDMI"])
        assert engine.required_bands == ["B8", "B4", "B2", "B11"]

    def test_nothing_computable_raises(self) -> None:
        with pytest.raises(SpectralIndexError):
            OpticalIndexEngine(["UNKNOWN"]).apply(_raster(B8=3000.0))
