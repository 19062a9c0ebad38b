"""
Tests for the weather covariates
=================================

Test classes:
    TestCovariates         Trailing precipitation sum and first-sample lookup.
    TestAttach             Constant bands on the acquisition grid.
    TestClimateFromSeries  Reducing a climate raster series to a table.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from rasterio.transform import from_origin
from shapely.geometry import box

from mmts_builder.raster import AcquisitionRecord, Raster, RasterSeries
from mmts_builder.weather import (
    PRECIPITATION_COLUMN,
    TEMPERATURE_COLUMN,
    WEATHER_BANDS,
    WeatherAttacher,
    climate_frame_from_series,
)
from shared.python.exceptions import InputValidationError

T = pd.Timestamp("2021-06-01T10:00")


def _climate(offsets_h, precipitation, temperature=None) -> pd.DataFrame:
    index = pd.DatetimeIndex([T + pd.Timedelta(hours=h) for h in offsets_h])
    if temperature is None:
        temperature = [293.15] * len(index)
    return pd.DataFrame(
        {PRECIPITATION_COLUMN: precipitation, TEMPERATURE_COLUMN: temperature}, index=index
    )


class TestCovariates:
    def test_trailing_window_excludes_its_start(self) -> None:
        climate = _climate([-12, -11, 0, 1, 2], [1.0, 0.002, 0.003, 0.004, 0.5])
        values = WeatherAttacher(climate).covariates(T)
        assert values["precipitation12hours"] == pytest.approx(9.0)

    def test_instantaneous_values_at_acquisition_hour(self) -> None:
        climate = _climate([-1, 0, 1], [0.0, 0.003, 0.0], [290.0, 293.15, 300.0])
        values = WeatherAttacher(climate).covariates(T)
        assert values["temperature"] == pytest.approx(20.0)
        assert values["precipitationCurrent"] == pytest.approx(3.0)

    def test_first_sample_after_acquisition_used(self) -> None:
        climate = _climate([-1, 1, 2], [0.0, 0.001, 0.0], [280.0, 283.15, 300.0])
        values = WeatherAttacher(climate).covariates(T + pd.Timedelta(minutes=20))
        assert values["temperature"] == pytest.approx(10.0)
        assert values["precipitationCurrent"] == pytest.approx(1.0)

    def test_no_later_sample_gives_null(self) -> None:
        climate = _climate([-3, -2, -1], [0.001, 0.001, 0.001])
        values = WeatherAttacher(climate).covariates(T)
        assert np.isnan(values["temperature"])
        assert np.isnan(values["precipitationCurrent"])
        assert values["precipitation12hours"] == pytest.approx(3.0)

    def test_max_lag_exceeded_gives_null(self) -> None:
        climate = _climate([5], [0.001])
        attacher = WeatherAttacher(climate, max_lag=pd.Timedelta(hours=1))
        assert np.isnan(attacher.covariates(T)["temperature"])

    def test_empty_window_gives_null(self) -> None:
        climate = _climate([-48, 48], [0.001, 0.001])
        assert np.isnan(WeatherAttacher(climate).covariates(T)["precipitation12hours"])

    def test_timezone_aware_index_normalised(self) -> None:
        climate = _climate([0], [0.002])
        climate.index = climate.index.tz_localize("UTC").tz_convert("Europe/Berlin")
        values = WeatherAttacher(climate).covariates(T)
        assert values["precipitationCurrent"] == pytest.approx(2.0)

    def test_missing_column_raises(self) -> None:
        climate = _climate([0], [0.0]).drop(columns=[TEMPERATURE_COLUMN])
        with pytest.raises(InputValidationError, match=TEMPERATURE_COLUMN):
            WeatherAttacher(climate)


class TestAttach:
    def test_bands_broadcast_over_grid(self) -> None:
        raster = Raster({"VV": np.full((3, 2), 0.1)}, from_origin(0, 30, 10, 10), "EPSG:32633", T)
        record = AcquisitionRecord("s1", raster)
        climate = _climate([-1, 0], [0.001, 0.002], [280.0, 278.15])
        out = WeatherAttacher(climate).attach(record)
        assert out.acquisition_id == "s1"
        assert out.raster.band_names == ["VV", *WEATHER_BANDS]
        assert out.raster.band("temperature") == pytest.approx(np.full((3, 2), 5.0))
        assert out.raster.band("precipitation12hours").shape == (3, 2)


class TestClimateFromSeries:
    def test_one_row_per_timestamp(self) -> None:
        records = [
            AcquisitionRecord(
                f"era5_{h}",
                Raster(
                    {
                        PRECIPITATION_COLUMN: np.full((2, 2), 0.001 * h),
                        TEMPERATURE_COLUMN: np.array([[290.0, 292.0], [294.0, 296.0]]),
                    },
                    from_origin(0, 20, 10, 10), "EPSG:32633", T + pd.Timedelta(hours=h),
                ),
            )
            for h in (1, 0)
        ]
        frame = climate_frame_from_series(RasterSeries("ERA5", records), box(0, 0, 20, 20))
        assert list(frame.index) == [T, T + pd.Timedelta(hours=1)]
        assert frame[TEMPERATURE_COLUMN].iloc[0] == pytest.approx(293.0)
        assert frame[PRECIPITATION_COLUMN].iloc[1] == pytest.approx(0.001)
