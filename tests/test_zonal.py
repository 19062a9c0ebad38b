"""
Tests for regional aggregation
===============================

Test classes:
    TestRegionMeans     Pixel selection and null handling.
    TestZonalAggregator Row emission per intersecting region.
    TestRowsToFrame     Output table layout.
"""

from __future__ import annotations

import warnings

import numpy as np
import pandas as pd
import pytest
from pyproj import Transformer
from rasterio.transform import from_origin
from shapely.geometry import box

from mmts_builder.raster import AcquisitionRecord, JoinedRecord, Raster, Region
from mmts_builder.zonal import (
    AggregatedRow,
    ZonalAggregator,
    region_means,
    region_pixel_mask,
    rows_to_frame,
)

WHEN = pd.Timestamp("2021-06-01T10:00")


def _raster(values=None, crs: str = "EPSG:32633") -> Raster:
    if values is None:
        values = np.arange(16, dtype=float).reshape(4, 4)
    return Raster({"VV": values, "NDVI": values / 10.0}, from_origin(0, 40, 10, 10), crs, WHEN)


def _joined(raster: Raster, match_count: int = 2) -> JoinedRecord:
    return JoinedRecord(AcquisitionRecord("s1", raster), raster, match_count, ("a", "b"))


class TestRegionMeans:
    def test_pixel_centres_inside_region(self) -> None:
        means = region_means(_raster(), box(0, 20, 20, 40))
        assert means["VV"] == pytest.approx(2.5)
        assert means["NDVI"] == pytest.approx(0.25)

    def test_null_pixels_ignored(self) -> None:
        values = np.arange(16, dtype=float).reshape(4, 4)
        values[0, 0] = np.nan
        means = region_means(_raster(values), box(0, 20, 20, 40), ["VV"])
        assert means == {"VV": pytest.approx((1 + 4 + 5) / 3)}

    def test_region_without_valid_pixel_is_null(self) -> None:
        means = region_means(_raster(np.full((4, 4), np.nan)), box(0, 20, 20, 40))
        assert np.isnan(means["VV"])

    def test_tiny_region_uses_touched_pixel(self) -> None:
        mask = region_pixel_mask(box(12, 32, 14, 34), _raster().grid)
        assert mask.sum() == 1 and mask[0, 1]
        assert region_means(_raster(), box(12, 32, 14, 34), ["VV"])["VV"] == 1.0


class TestZonalAggregator:
    def test_rows_only_for_intersecting_regions(self) -> None:
        regions = [
            Region("inside", box(0, 20, 20, 40), {"landcover": 40}),
            Region("outside", box(100, 100, 110, 110), {"landcover": 10}),
            Region("edge", box(30, 0, 50, 10), {"landcover": 30}),
        ]
        rows = ZonalAggregator(regions).aggregate(_joined(_raster()))
        assert [r.region_id for r in rows] == ["inside", "edge"]
        inside = rows[0]
        assert inside.timestamp == WHEN
        assert inside.acquisition_id == "s1"
        assert inside.match_count == 2
        assert inside.attributes == {"landcover": 40}
        assert rows[1].value("VV") == 15.0

    def test_band_selection(self) -> None:
        rows = ZonalAggregator([Region("r", box(0, 0, 40, 40))], bands=["NDVI", "LAI"]).aggregate(
            _joined(_raster())
        )
        assert list(rows[0].values) == ["NDVI"]
        assert np.isnan(rows[0].value("LAI"))

    def test_regions_reprojected_to_raster_crs(self) -> None:
        # grid on the zone 33N central meridian
        transform = from_origin(500_000, 5_000_040, 10, 10)
        raster = Raster({"VV": np.arange(16, dtype=float).reshape(4, 4)}, transform, "EPSG:32633", WHEN)
        record = JoinedRecord(AcquisitionRecord("s1", raster), raster, 1)
        to_geo = Transformer.from_crs("EPSG:32633", "EPSG:4326", always_xy=True)
        x0, y0 = to_geo.transform(500_001, 5_000_021)
        x1, y1 = to_geo.transform(500_019, 5_000_039)
        rows = ZonalAggregator([Region("geo", box(x0, y0, x1, y1))], regions_crs="EPSG:4326").aggregate(record)
        assert rows[0].value("VV") == pytest.approx(2.5)

    def test_reprojection_emits_no_deprecation_warning(self) -> None:
        transform = from_origin(500_000, 5_000_040, 10, 10)
        raster = Raster({"VV": np.ones((4, 4))}, transform, "EPSG:32633", WHEN)
        record = JoinedRecord(AcquisitionRecord("s1", raster), raster, 1)
        to_geo = Transformer.from_crs("EPSG:32633", "EPSG:4326", always_xy=True)
        x0, y0 = to_geo.transform(500_001, 5_000_001)
        x1, y1 = to_geo.transform(500_039, 5_000_039)
        aggregator = ZonalAggregator(
            [Region("a", box(x0, y0, x1, y1)), Region("b", box(x0, y0, x1, y1))],
            regions_crs="EPSG:4326",
        )
        with warnings.catch_warnings():
            warnings.filterwarnings("error", category=DeprecationWarning, module="mmts_builder")
            rows = aggregator.aggregate(record)
        assert [r.region_id for r in rows] == ["a", "b"]
        assert all(r.value("VV") == 1.0 for r in rows)


class TestRowsToFrame:
    def test_column_order(self) -> None:
        rows = [
            AggregatedRow("r1", WHEN, "s1", {"landcover": 40}, {"VV": -10.0, "NDVI": 0.5}, 1),
            AggregatedRow("r2", WHEN, "s1", {"landcover": 30}, {"VV": -11.0, "DEM": 100.0}, 1),
        ]
        frame = rows_to_frame(rows)
        assert list(frame.columns) == ["ID", "landcover", "VV", "NDVI", "DEM", "timestamp", "matchCount"]
        assert np.isnan(frame.loc[1, "NDVI"])

    def test_empty(self) -> None:
        frame = rows_to_frame([])
        assert list(frame.columns) == ["ID", "timestamp", "matchCount"]
        assert frame.empty
