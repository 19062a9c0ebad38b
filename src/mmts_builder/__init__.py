"""
MMTS Builder
============
Multi-modal Earth-observation time series: radar and optical acquisitions
aligned in time and space, enriched with terrain and weather covariates,
and aggregated over land-cover-pure sample regions.
"""

from mmts_builder.config import PipelineConfig, load_config
from mmts_builder.join import TemporalSpatialJoiner
from mmts_builder.masking import CloudSnowMask, filter_cloudy_scenes
from mmts_builder.nullpolicy import NullPolicy, NullPolicyFilter
from mmts_builder.optical import BiophysicalModel, OpticalIndexEngine
from mmts_builder.pipeline import TimeSeriesPipeline
from mmts_builder.radar import RadarIndexEngine
from mmts_builder.raster import (
    AcquisitionRecord,
    Grid,
    JoinedRecord,
    Raster,
    RasterSeries,
    Region,
)
from mmts_builder.samples import SampleGenerator
from mmts_builder.speckle import LeeFilter
from mmts_builder.terrain import TerrainMosaicBuilder
from mmts_builder.weather import WeatherAttacher
from mmts_builder.zonal import AggregatedRow, ZonalAggregator

__version__ = "1.0.0"
__all__ = [
    "PipelineConfig",
    "load_config",
    "TemporalSpatialJoiner",
    "CloudSnowMask",
    "filter_cloudy_scenes",
    "NullPolicy",
    "NullPolicyFilter",
    "BiophysicalModel",
    "OpticalIndexEngine",
    "TimeSeriesPipeline",
    "RadarIndexEngine",
    "AcquisitionRecord",
    "Grid",
    "JoinedRecord",
    "Raster",
    "RasterSeries",
    "Region",
    "SampleGenerator",
    "LeeFilter",
    "TerrainMosaicBuilder",
    "WeatherAttacher",
    "AggregatedRow",
    "ZonalAggregator",
]
