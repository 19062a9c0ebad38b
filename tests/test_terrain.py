"""
Tests for terrain mosaicking and derivatives
=============================================
Elevation tiles are small synthetic surfaces on a 10 m UTM grid.

Test classes:
    TestSlopeAspect            Derivative conventions on planar ramps.
    TestTerrainMosaicBuilder   Edge-free derivatives across tile borders.
    TestLocalIncidenceAngle    Viewing geometry against the terrain normal.
"""

from __future__ import annotations

import math
import warnings

import numpy as np
import pytest
from rasterio.transform import Affine, from_origin

from mmts_builder.raster import Raster
from mmts_builder.terrain import (
    AcquisitionGeometry,
    TerrainMosaicBuilder,
    local_incidence_angle,
    metres_to_degrees,
    slope_aspect,
)
from shared.python.exceptions import RasterError

CRS = "EPSG:32633"
RES = 10.0


def _quadratic_tile(x0: float, n: int = 4, c: float = 0.01) -> Raster:
    """Tile whose elevation is ``c·x²`` at each pixel centre x."""
    xs = x0 + RES * (np.arange(n) + 0.5)
    dem = np.tile(c * xs ** 2, (n, 1))
    return Raster({"DEM": dem}, from_origin(x0, n * RES, RES, RES), CRS)


# ---------------------------------------------------------------------------
# Derivatives
# ---------------------------------------------------------------------------

class TestSlopeAspect:
    def test_flat_surface(self) -> None:
        slope, aspect = slope_aspect(np.full((5, 5), 100.0), (RES, RES))
        assert np.all(slope == 0.0)
        assert np.all(aspect == 0.0)

    def test_eastward_rise_faces_west(self) -> None:
        dem = np.tile(np.arange(5, dtype=float) * RES, (5, 1))   # +1 m per metre eastwards
        slope, aspect = slope_aspect(dem, (RES, RES))
        assert slope == pytest.approx(np.full((5, 5), 45.0))
        assert aspect == pytest.approx(np.full((5, 5), 270.0))

    def test_southward_rise_faces_north(self) -> None:
        dem = np.tile((np.arange(5, dtype=float) * 5.0)[:, None], (1, 5))
        slope, aspect = slope_aspect(dem, (RES, RES))
        assert slope == pytest.approx(np.full((5, 5), math.degrees(math.atan(0.5))))
        assert aspect == pytest.approx(np.zeros((5, 5)), abs=1e-9)

    def test_slope_range(self) -> None:
        rng = np.random.default_rng(7)
        slope, aspect = slope_aspect(rng.uniform(0, 500, (8, 8)), (RES, RES))
        assert np.all((slope >= 0) & (slope < 90))
        assert np.all((aspect >= 0) & (aspect < 360))


# ---------------------------------------------------------------------------
# Tile mosaicking
# ---------------------------------------------------------------------------

class TestTerrainMosaicBuilder:
    def test_outputs_share_tile_grid(self) -> None:
        tiles = [_quadratic_tile(0.0), _quadratic_tile(40.0)]
        out = TerrainMosaicBuilder().build(tiles)
        assert len(out) == 2
        for tile, derived in zip(tiles, out):
            assert derived.grid == tile.grid
            assert derived.band_names == ["DEM", "slope", "aspect"]
            np.testing.assert_array_equal(derived.band("DEM"), tile.band("DEM"))

    def test_neighbour_removes_edge_bias(self) -> None:
        # Central difference at x = 35 with the neighbour's x = 45: gradient 0.7
        out = TerrainMosaicBuilder(tolerance=300).build(
            [_quadratic_tile(0.0), _quadratic_tile(40.0)]
        )
        edge = out[0].band("slope")[:, -1]
        assert edge == pytest.approx(np.full(4, math.degrees(math.atan(0.7))))

    def test_isolated_tile_uses_one_sided_edge(self) -> None:
        # No neighbour within tolerance: (z(35) - z(25)) / 10 = 0.6
        out = TerrainMosaicBuilder(tolerance=300).build(
            [_quadratic_tile(0.0), _quadratic_tile(5000.0)]
        )
        edge = out[0].band("slope")[:, -1]
        assert edge == pytest.approx(np.full(4, math.degrees(math.atan(0.6))))
        assert not np.isnan(out[0].band("slope")).any()

    def test_tolerance_bridges_small_gaps(self) -> None:
        builder = TerrainMosaicBuilder(tolerance=300)
        near = _quadratic_tile(0.0), _quadratic_tile(200.0)
        assert len(builder._compositor.neighbours((0, near[0]), list(enumerate(near)))) == 2
        strict = TerrainMosaicBuilder(tolerance=100)
        assert len(strict._compositor.neighbours((0, near[0]), list(enumerate(near)))) == 1

    def test_tolerance_in_metres_on_geographic_tiles(self) -> None:
        def tile(lon: float) -> Raster:
            return Raster({"DEM": np.zeros((4, 4))}, from_origin(lon, 0.0012, 0.0003, 0.0003), "EPSG:4326")

        builder = TerrainMosaicBuilder(tolerance=300)
        far = tile(0.0), tile(0.0112)      # ~1.1 km apart
        assert len(builder._compositor.neighbours((0, far[0]), list(enumerate(far)))) == 1
        near = tile(0.0), tile(0.0022)     # ~110 m apart
        assert len(builder._compositor.neighbours((0, near[0]), list(enumerate(near)))) == 2

    def test_metres_to_degrees(self) -> None:
        dlon, dlat = metres_to_degrees(1000.0, 60.0)
        assert dlat == pytest.approx(1000.0 / 110_540.0)
        assert dlon == pytest.approx(2 * 1000.0 / 111_320.0)

    def test_padded_grid_extends_by_margin(self) -> None:
        grid = _quadratic_tile(0.0).grid
        with warnings.catch_warnings():
            warnings.simplefilter("error", PendingDeprecationWarning)
            warnings.simplefilter("error", DeprecationWarning)
            padded = TerrainMosaicBuilder(margin_px=2)._padded_grid(grid)
        assert padded.shape == (8, 8)
        assert padded.transform == from_origin(-20.0, 60.0, RES, RES)

    def test_later_tile_wins_on_overlap(self) -> None:
        a = Raster({"DEM": np.full((4, 4), 10.0)}, from_origin(0, 40, RES, RES), CRS)
        b = Raster({"DEM": np.full((4, 4), 20.0)}, from_origin(20, 40, RES, RES), CRS)
        out = TerrainMosaicBuilder().build([a, b])
        assert np.all(out[0].band("DEM")[:, 2:] == 20.0)
        assert np.all(out[0].band("DEM")[:, :2] == 10.0)
        assert np.all(out[1].band("DEM") == 20.0)

    def test_rotated_tile_rejected(self) -> None:
        rotated = Raster(
            {"DEM": np.zeros((3, 3))},
            Affine(RES, 1.0, 0.0, 1.0, -RES, 30.0),
            CRS,
        )
        with pytest.raises(RasterError, match="north-up"):
            TerrainMosaicBuilder().build([rotated])

    def test_negative_tolerance_rejected(self) -> None:
        with pytest.raises(ValueError):
            TerrainMosaicBuilder(tolerance=-1)

    def test_terrain_for_covers_radar_grid(self) -> None:
        tiles = TerrainMosaicBuilder().build([_quadratic_tile(0.0), _quadratic_tile(40.0)])
        radar_grid = Raster({"VV": np.zeros((4, 8))}, from_origin(0, 40, RES, RES), CRS).grid
        terrain = TerrainMosaicBuilder.terrain_for(radar_grid, tiles)
        assert terrain.band_names == ["DEM", "slope", "aspect"]
        assert not np.isnan(terrain.band("DEM")).any()


# ---------------------------------------------------------------------------
# Local incidence angle
# ---------------------------------------------------------------------------

def _terrain(slope: float, aspect: float) -> Raster:
    return Raster(
        {"slope": np.full((3, 3), slope), "aspect": np.full((3, 3), aspect)},
        from_origin(0, 30, RES, RES), CRS,
    )


class TestLocalIncidenceAngle:
    def test_flat_terrain_equals_ellipsoid_angle(self) -> None:
        terrain = _terrain(0.0, 0.0)
        lia = local_incidence_angle(AcquisitionGeometry(35.0, 0.0), terrain, terrain.grid)
        assert lia == pytest.approx(np.full((3, 3), 35.0))

    def test_slope_facing_sensor_reduces_angle(self) -> None:
        # Heading north, right-looking: the sensor looks east, so it sits to the west
        terrain = _terrain(10.0, 270.0)
        lia = local_incidence_angle(AcquisitionGeometry(35.0, 0.0), terrain, terrain.grid)
        assert lia == pytest.approx(np.full((3, 3), 25.0))

    def test_slope_facing_away_increases_angle(self) -> None:
        terrain = _terrain(10.0, 90.0)
        lia = local_incidence_angle(AcquisitionGeometry(35.0, 0.0), terrain, terrain.grid)
        assert lia == pytest.approx(np.full((3, 3), 45.0))

    def test_look_azimuth(self) -> None:
        assert AcquisitionGeometry(30.0, 350.0).look_azimuth == pytest.approx(80.0)
        assert AcquisitionGeometry(30.0, 10.0, right_looking=False).look_azimuth == pytest.approx(280.0)

    def test_from_raster_requires_heading(self) -> None:
        raster = Raster({"angle": np.full((2, 2), 38.0)}, from_origin(0, 20, RES, RES), CRS)
        with pytest.raises(RasterError):
            AcquisitionGeometry.from_raster(raster)
        with_heading = Raster(raster.bands, raster.transform, CRS, properties={"heading": 192.0})
        geometry = AcquisitionGeometry.from_raster(with_heading)
        assert geometry.heading == 192.0
        assert np.all(geometry.incidence_angle == 38.0)
