"""
weather.py
==========
Scalar climate covariates attached to each acquisition.

Input is an hourly climate table (a pandas DataFrame indexed by timestamp)
with a precipitation column in metres per hour and an air temperature
column in kelvin, as delivered by ERA5-Land hourly.  For an acquisition
at time ``t`` three covariates are derived:

==================== ====================================================
precipitation12hours Sum of hourly precipitation over ``(t − 12h, t + 1h]``,
                     in millimetres.
temperature          Temperature at the first sample ``>= t``, in °C.
precipitationCurrent Precipitation at the first sample ``>= t``, in mm.
==================== ====================================================

The values are broadcast over the acquisition grid as constant bands;
climate data is far coarser than the target grid so nothing is
interpolated.  Windows without any sample yield ``NaN``.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import numpy as np
import pandas as pd
from shapely.geometry.base import BaseGeometry

from shared.python.exceptions import InputValidationError

from .raster import AcquisitionRecord, JoinedRecord, RasterSeries, constant_band, to_timestamp
from .zonal import region_means

logger = logging.getLogger("mmts.weather")

PRECIPITATION_COLUMN = "total_precipitation_hourly"
TEMPERATURE_COLUMN = "temperature_2m"
METRES_TO_MM = 1000.0
KELVIN_OFFSET = 273.15

WEATHER_BANDS = ("precipitation12hours", "temperature", "precipitationCurrent")

R = TypeVar("R", AcquisitionRecord, JoinedRecord)


def climate_frame_from_series(series: RasterSeries, footprint: BaseGeometry) -> pd.DataFrame:
    """Reduce a climate raster series to one row per timestamp.

    Each row holds the mean of every band over *footprint*.
    """
    rows: dict[pd.Timestamp, dict[str, float]] = {}
    for record in series:
        rows[record.timestamp] = region_means(record.raster, footprint)
    frame = pd.DataFrame.from_dict(rows, orient="index")
    frame.index.name = "time"
    return frame.sort_index()


class WeatherAttacher:
    """Attach precipitation and temperature covariates to acquisitions.

    Parameters
    ----------
    climate:
        Hourly climate table indexed by timestamp.
    trailing_hours / lead_hours:
        The precipitation sum covers ``(t − trailing_hours, t + lead_hours]``.
    max_lag:
        Largest allowed gap between ``t`` and the "first sample ``>= t``"
        used for the instantaneous covariates.  ``None`` means unbounded.
    """

    def __init__(
        self,
        climate: pd.DataFrame,
        *,
        precipitation_column: str = PRECIPITATION_COLUMN,
        temperature_column: str = TEMPERATURE_COLUMN,
        trailing_hours: float = 12.0,
        lead_hours: float = 1.0,
        max_lag: pd.Timedelta | None = None,
    ) -> None:
        missing = [
            c for c in (precipitation_column, temperature_column) if c not in climate.columns
        ]
        if missing:
            raise InputValidationError(
                f"Climate table lacks column(s) {missing}; found {list(climate.columns)}."
            )
        index = pd.DatetimeIndex(climate.index)
        if index.tz is not None:
            index = index.tz_convert("UTC").tz_localize(None)
        self.climate = climate.set_axis(index, axis=0).sort_index()
        self.precipitation_column = precipitation_column
        self.temperature_column = temperature_column
        self.trailing = pd.Timedelta(hours=trailing_hours)
        self.lead = pd.Timedelta(hours=lead_hours)
        self.max_lag = max_lag

    def _first_at_or_after(self, t: pd.Timestamp) -> pd.Series | None:
        position = self.climate.index.searchsorted(t, side="left")
        if position >= len(self.climate):
            return None
        if self.max_lag is not None and self.climate.index[position] - t > self.max_lag:
            return None
        return self.climate.iloc[position]

    def covariates(self, when: Any) -> dict[str, float]:
        """Return the three weather covariates for timestamp *when*."""
        t = to_timestamp(when)
        index = self.climate.index
        in_window = (index > t - self.trailing) & (index <= t + self.lead)
        window = self.climate.loc[in_window, self.precipitation_column]
        precipitation = float(window.sum()) * METRES_TO_MM if window.notna().any() else np.nan

        current = self._first_at_or_after(t)
        if current is None:
            temperature = precipitation_now = np.nan
        else:
            temperature = float(current[self.temperature_column]) - KELVIN_OFFSET
            precipitation_now = float(current[self.precipitation_column]) * METRES_TO_MM

        return {
            "precipitation12hours": precipitation,
            "temperature": temperature,
            "precipitationCurrent": precipitation_now,
        }

    def attach(self, record: R) -> R:
        """Return *record* with the covariates added as constant bands."""
        values = self.covariates(record.timestamp)
        grid = record.raster.grid
        bands = {name: constant_band(grid, value) for name, value in values.items()}
        logger.debug("Weather for %s: %s", record.acquisition_id, values)
        return record.with_raster(record.raster.with_bands(bands))
