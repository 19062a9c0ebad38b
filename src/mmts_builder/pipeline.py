"""
pipeline.py
===========
End-to-end orchestration of the multi-modal time-series builder.

Inherits from :class:`~shared.python.base_tool.GeoTool` and implements the
Template Method pattern.  :meth:`TimeSeriesPipeline.process` runs:

1. sample regions (generated or supplied);
2. terrain derivatives from the elevation tiles;
3. scene cloud filter, pixel mask and indices on the optical stream;
4. per radar acquisition, on a worker pool:
   speckle filter → join → terrain / LIA / weather → radar indices and dB
   → zonal means;
5. the null policy, then the export sink.

Usage::

    from pathlib import Path
    from mmts_builder.config import load_config
    from mmts_builder.pipeline import TimeSeriesPipeline
    from mmts_builder.sources import CsvExportSink, ManifestDataSource

    pipeline = TimeSeriesPipeline(
        config=load_config(Path("config.json")),
        source=ManifestDataSource(Path("data/manifest.json")),
        sink=CsvExportSink(Path("output/timeseries.csv")),
    )
    pipeline.run()
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from pyproj import CRS

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    ConfigurationError,
    DataSourceError,
    InputValidationError,
    RasterError,
)
from shared.python.validators import Validators

from .config import PipelineConfig
from .join import TemporalSpatialJoiner
from .masking import CloudSnowMask, filter_cloudy_scenes
from .nullpolicy import NullPolicyFilter
from .optical import BiophysicalModel, OpticalIndexEngine
from .radar import RadarIndexEngine
from .raster import AcquisitionRecord, Raster, RasterSeries, Region
from .samples import SampleGenerator
from .sources import DataSource, ExportSink
from .speckle import LeeFilter
from .terrain import (
    TERRAIN_BANDS,
    AcquisitionGeometry,
    TerrainMosaicBuilder,
    local_incidence_angle,
)
from .weather import WEATHER_BANDS, WeatherAttacher
from .zonal import AggregatedRow, ZonalAggregator

logger = logging.getLogger("mmts.pipeline")

LIA_BAND = "LIA"


class TimeSeriesPipeline(GeoTool):
    """Build the aggregated radar/optical/terrain/weather time series.

    Args:
        config: Validated run configuration.
        source: Provider of every input layer.
        sink: Optional export target for the final rows.
        biophysical_model: Optional FAPAR/LAI regression model.
        output_path: Reported output location (defaults to the sink's).
        verbose: Enable DEBUG-level logging.

    After :meth:`run`, :attr:`rows` holds the rows that passed the null
    policy and :attr:`regions` the sample regions used.
    """

    def __init__(
        self,
        config: PipelineConfig,
        source: DataSource,
        sink: ExportSink | None = None,
        *,
        biophysical_model: BiophysicalModel | None = None,
        output_path: Path | None = None,
        verbose: bool = False,
    ) -> None:
        super().__init__(output_path or getattr(sink, "output_path", None), verbose=verbose)
        self.config = config
        self.source = source
        self.sink = sink

        self.lee = LeeFilter(config.kernel_size, config.enl)
        self.radar_engine = RadarIndexEngine(config.radar_indices)
        self.optical_engine = OpticalIndexEngine(config.optical_indices, biophysical_model)
        self.mask = CloudSnowMask(
            config.clear_threshold, config.qa_band, mask_snow=config.mask_snow
        )
        self.terrain_builder = TerrainMosaicBuilder(config.terrain_tolerance)

        optical_bands = self.optical_engine.output_bands
        key_band = "LAI" if "LAI" in optical_bands else (optical_bands[0] if optical_bands else "LAI")
        self.null_filter = NullPolicyFilter(config.null_policy, optical_key_band=key_band)

        self.regions: list[Region] = []
        self.rows: list[AggregatedRow] = []
        self.joined_count = 0
        self.radar_count = 0

    # ------------------------------------------------------------------
    # GeoTool abstract method implementations
    # ------------------------------------------------------------------

    def validate_inputs(self) -> None:
        """Check the configuration object and the data source CRS.

        Raises:
            InputValidationError: If the configuration is not a PipelineConfig.
            ConfigurationError: If no requested optical index can be produced.
            CRSError: If the data source CRS cannot be parsed.
        """
        if not isinstance(self.config, PipelineConfig):
            raise InputValidationError(
                f"Expected a PipelineConfig, got {type(self.config).__name__}."
            )
        Validators.assert_crs_valid(self.source.crs)
        if not self.optical_engine.output_bands:
            raise ConfigurationError(
                "optical_indices",
                f"none of {list(self.config.optical_indices)} can be produced",
            )
        logger.debug("Inputs validated.")

    def process(self) -> None:
        start, end = self.config.date_range
        self.regions = self._load_regions()
        logger.info("Using %d sample region(s)", len(self.regions))
        if not self.regions:
            self.rows = []
            self._export()
            return

        terrain_tiles = self.terrain_builder.build(self.source.elevation_tiles())
        weather = WeatherAttacher(self.source.climate(start, end))
        aggregator = ZonalAggregator(self.regions, self.source.crs)

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            optical = self._prepare_optical(self.source.optical(start, end), pool)
            joiner = TemporalSpatialJoiner(
                optical, self.config.join_tolerance_hours, self.optical_engine.output_bands
            )
            radar = self.source.radar(start, end)
            self.radar_count = len(radar)

            futures = [
                pool.submit(
                    self._process_acquisition, record, joiner, terrain_tiles, weather, aggregator
                )
                for record in radar
            ]
            rows: list[AggregatedRow] = []
            for future in futures:
                if self.cancelled:
                    for pending in futures:
                        pending.cancel()
                if future.cancelled():
                    continue
                produced = future.result()
                if produced is not None:
                    self.joined_count += 1
                    rows.extend(produced)

        logger.info(
            "%d of %d radar acquisition(s) joined, %d row(s) aggregated",
            self.joined_count, self.radar_count, len(rows),
        )
        self.rows = self.null_filter.apply(rows)
        self._export()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _load_regions(self) -> list[Region]:
        if self.config.region_source == "supplied":
            return self.source.regions()

        land_cover = self.source.land_cover()
        if CRS.from_user_input(land_cover.crs) != CRS.from_user_input(self.source.crs):
            raise DataSourceError(
                f"Land cover CRS {land_cover.crs} differs from study area CRS {self.source.crs}."
            )
        generator = SampleGenerator(
            self.config.point_count,
            self.config.buffer_radius,
            self.config.land_cover_class,
            seed=self.config.seed,
        )
        return generator.generate(self.source.study_area(), land_cover)

    def _prepare_optical(self, series: RasterSeries, pool: ThreadPoolExecutor) -> RasterSeries:
        """Scene filter, pixel mask and optical indices, one task per scene."""
        series = filter_cloudy_scenes(series, self.config.max_scene_cloud_pct)

        def prepare(record: AcquisitionRecord) -> AcquisitionRecord:
            masked = self.mask.apply(record.raster)
            return record.with_raster(self.optical_engine.apply(masked))

        return RasterSeries(series.sensor, pool.map(prepare, series))

    def _process_acquisition(
        self,
        record: AcquisitionRecord,
        joiner: TemporalSpatialJoiner,
        terrain_tiles: list[Raster],
        weather: WeatherAttacher,
        aggregator: ZonalAggregator,
    ) -> list[AggregatedRow] | None:
        """Full per-acquisition chain; ``None`` when the acquisition is dropped."""
        if self.cancelled:
            return None
        if self.config.speckle_filter:
            record = record.with_raster(self.lee.apply(record.raster))

        joined = joiner.join_one(record)
        if joined is None or self.cancelled:
            return None

        grid = joined.raster.grid
        terrain = TerrainMosaicBuilder.terrain_for(grid, terrain_tiles)
        extra = {name: terrain.band(name) for name in TERRAIN_BANDS}
        try:
            geometry = AcquisitionGeometry.from_raster(record.raster)
        except RasterError as exc:
            logger.debug("No %s for %s: %s", LIA_BAND, record.acquisition_id, exc)
        else:
            extra[LIA_BAND] = local_incidence_angle(geometry, terrain, grid)

        joined = joined.with_raster(joined.raster.with_bands(extra))
        joined = weather.attach(joined)
        joined = joined.with_raster(self.radar_engine.apply(joined.raster))

        retained = [
            *self.radar_engine.output_bands,
            *self.optical_engine.output_bands,
            *TERRAIN_BANDS,
            LIA_BAND,
            *WEATHER_BANDS,
        ]
        for amplitude in ("VH", "VV"):
            if amplitude not in retained:
                retained.insert(0, amplitude)
        present = [b for b in dict.fromkeys(retained) if joined.raster.has_band(b)]
        joined = joined.with_raster(joined.raster.select(present))

        if self.cancelled:
            return None
        return aggregator.aggregate(joined)

    def _export(self) -> None:
        if self.sink is not None:
            self.sink.write(self.rows)
