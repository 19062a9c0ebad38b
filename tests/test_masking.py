"""
Tests for cloud / snow masking
===============================

Test classes:
    TestCloudSnowMask        Pixel-level validity rules.
    TestFilterCloudyScenes   Scene-level cloudy-pixel filter.
"""

from __future__ import annotations

import numpy as np
import pytest
from rasterio.transform import from_origin

from mmts_builder.masking import CloudSnowMask, filter_cloudy_scenes
from mmts_builder.raster import AcquisitionRecord, Raster, RasterSeries
from shared.python.exceptions import ConfigurationError


def _optical(cs, b3=0.1, b11=0.5, scl=4.0, properties=None, when="2021-06-01T10:00") -> Raster:
    cs = np.asarray(cs, dtype=float).reshape(1, -1)
    shape = cs.shape

    def _full(v):
        return np.broadcast_to(np.asarray(v, dtype=float), shape)

    return Raster(
        {"B3": _full(b3), "B11": _full(b11), "B8": _full(0.3), "cs": cs, "SCL": _full(scl)},
        from_origin(0, 10, 10, 10), "EPSG:32633", when, properties or {},
    )


class TestCloudSnowMask:
    def test_score_below_threshold_is_masked(self) -> None:
        raster = _optical([0.2, 0.59, 0.6, 0.95])
        out = CloudSnowMask(clear_threshold=0.6).apply(raster)
        assert np.isnan(out.band("B8")[0, :2]).all()
        assert out.band("B8")[0, 2:] == pytest.approx([0.3, 0.3])

    def test_every_band_is_nulled(self) -> None:
        out = CloudSnowMask(0.6).apply(_optical([0.1]))
        for name in out.band_names:
            assert np.isnan(out.band(name)[0, 0]), name

    def test_null_score_is_masked(self) -> None:
        out = CloudSnowMask(0.6).apply(_optical([np.nan, 0.9]))
        assert np.isnan(out.band("B8")[0, 0])
        assert out.band("B8")[0, 1] == 0.3

    def test_alternative_qa_band(self) -> None:
        raster = _optical([0.9]).with_bands({"cs_cdf": np.array([[0.1]])})
        assert not CloudSnowMask(0.6, qa_band="cs_cdf").valid_mask(raster)[0, 0]
        assert CloudSnowMask(0.6, qa_band="cs").valid_mask(raster)[0, 0]

    def test_snow_masked_only_when_enabled(self) -> None:
        snowy = _optical([0.9], b3=0.5, b11=0.1)      # NDSI = 0.67
        assert CloudSnowMask(0.6).valid_mask(snowy)[0, 0]
        assert not CloudSnowMask(0.6, mask_snow=True).valid_mask(snowy)[0, 0]

    def test_snow_free_pixel_kept(self) -> None:
        clear = _optical([0.9], b3=0.1, b11=0.5)      # NDSI = -0.67
        assert CloudSnowMask(0.6, mask_snow=True).valid_mask(clear)[0, 0]

    def test_ndsi_zero_is_masked(self) -> None:
        flat = _optical([0.9], b3=0.3, b11=0.3)
        assert not CloudSnowMask(0.6, mask_snow=True).valid_mask(flat)[0, 0]

    @pytest.mark.parametrize("code", [3, 11])
    def test_shadow_codes_masked(self, code: int) -> None:
        raster = _optical([0.9], scl=float(code))
        assert not CloudSnowMask(0.6, mask_snow=True).valid_mask(raster)[0, 0]

    def test_invalid_threshold_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="clear_threshold"):
            CloudSnowMask(clear_threshold=1.5)


class TestFilterCloudyScenes:
    def test_strictly_below_threshold_kept(self) -> None:
        series = RasterSeries("S2", [
            AcquisitionRecord(name, _optical([0.9], properties=props, when=when))
            for name, props, when in [
                ("clear", {"CLOUDY_PIXEL_PERCENTAGE": 10.0}, "2021-06-01"),
                ("edge", {"CLOUDY_PIXEL_PERCENTAGE": 30.0}, "2021-06-02"),
                ("cloudy", {"CLOUDY_PIXEL_PERCENTAGE": 75.0}, "2021-06-03"),
                ("unknown", {}, "2021-06-04"),
            ]
        ])
        kept = filter_cloudy_scenes(series, 30.0)
        assert [r.acquisition_id for r in kept] == ["clear", "unknown"]
        assert len(series) == 4
