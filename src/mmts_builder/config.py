"""
config.py
=========
Immutable, validated pipeline configuration.

Every field is checked once, in :meth:`PipelineConfig.__post_init__`;
invalid values raise :class:`~shared.python.exceptions.ConfigurationError`
instead of silently falling back to a default.

Example config file (JSON)::

    {
        "start_date": "2021-05-01",
        "end_date": "2021-09-30",
        "region_source": "generate",
        "land_cover_class": 40,
        "point_count": 500,
        "buffer_radius": 15,
        "max_scene_cloud_pct": 30,
        "clear_threshold": 0.6,
        "optical_indices": ["NDVI", "LAI"],
        "join_tolerance_hours": 12,
        "null_policy": "IncludeOpticalNulls"
    }
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from shared.python.exceptions import ConfigurationError, InputValidationError
from shared.python.validators import Validators

from .nullpolicy import NullPolicy
from .optical import DEFAULT_OPTICAL_INDICES
from .radar import DEFAULT_RADAR_INDICES
from .samples import ALL_CLASSES, ESA_WORLDCOVER_CLASSES

logger = logging.getLogger("mmts.config")

REGION_SOURCES = ("generate", "supplied")
QA_BANDS = ("cs", "cs_cdf")
MAX_POINT_COUNT = 100_000


@dataclass(frozen=True)
class PipelineConfig:
    """Full parameter set of one builder run.

    Attributes:
        start_date / end_date: Inclusive acquisition date range.
        region_source: ``"generate"`` random samples or use ``"supplied"``
            regions from the data source.
        land_cover_class: ``"ALL"`` or one ESA WorldCover class code.
        point_count: Random points drawn when generating samples.
        buffer_radius: Half side of each square sample, in metres.
        max_scene_cloud_pct: Optical scenes at or above this cloudy-pixel
            percentage are discarded.
        qa_band: Cloud-score band, ``"cs"`` or ``"cs_cdf"``.
        clear_threshold: Minimum cloud score of a usable optical pixel.
        mask_snow: Also mask snow (NDSI ≥ 0) and cloud-shadow pixels.
        optical_indices / radar_indices: Requested index names.
        speckle_filter: Apply the Lee filter to VV/VH.
        kernel_size: Lee filter window width (odd).
        enl: Equivalent number of looks.
        join_tolerance_hours: Half-width of the radar/optical time window.
        null_policy: Row-level null handling.
        terrain_tolerance: Neighbour distance for elevation tile stitching, in metres.
        max_workers: Worker threads for per-acquisition processing.
        seed: Random seed for sample generation (``None`` = random).
    """

    start_date: str = "2021-01-01"
    end_date: str = "2021-12-31"
    region_source: str = "generate"
    land_cover_class: int | str = ALL_CLASSES
    point_count: int = 100
    buffer_radius: float = 15.0
    max_scene_cloud_pct: float = 30.0
    qa_band: str = "cs"
    clear_threshold: float = 0.60
    mask_snow: bool = False
    optical_indices: tuple[str, ...] = DEFAULT_OPTICAL_INDICES
    radar_indices: tuple[str, ...] = DEFAULT_RADAR_INDICES
    speckle_filter: bool = True
    kernel_size: int = 5
    enl: float = 5.0
    join_tolerance_hours: float = 12.0
    null_policy: NullPolicy = NullPolicy.EXCLUDE_ALL_NULLS
    terrain_tolerance: float = 300.0
    max_workers: int = 4
    seed: int | None = None

    def __post_init__(self) -> None:
        start, end = self._parse_date("start_date"), self._parse_date("end_date")
        if end < start:
            raise ConfigurationError(
                "end_date", f"{self.end_date} is before start_date {self.start_date}"
            )

        Validators.assert_choice("region_source", self.region_source, REGION_SOURCES)
        if self.land_cover_class != ALL_CLASSES:
            Validators.assert_choice(
                "land_cover_class", self.land_cover_class, ESA_WORLDCOVER_CLASSES
            )
        if isinstance(self.point_count, bool) or not isinstance(self.point_count, int):
            raise ConfigurationError("point_count", f"expected an integer, got {self.point_count!r}")
        Validators.assert_in_range("point_count", self.point_count, 1, MAX_POINT_COUNT)
        Validators.assert_in_range("buffer_radius", self.buffer_radius, 0.0, exclusive_minimum=True)
        Validators.assert_in_range("max_scene_cloud_pct", self.max_scene_cloud_pct, 0.0, 100.0)
        Validators.assert_choice("qa_band", self.qa_band, QA_BANDS)
        Validators.assert_in_range("clear_threshold", self.clear_threshold, 0.0, 1.0)
        Validators.assert_odd_kernel("kernel_size", self.kernel_size)
        Validators.assert_in_range("enl", self.enl, 0.0, exclusive_minimum=True)
        Validators.assert_in_range(
            "join_tolerance_hours", self.join_tolerance_hours, 0.0, exclusive_minimum=True
        )
        Validators.assert_in_range("terrain_tolerance", self.terrain_tolerance, 0.0)
        if isinstance(self.max_workers, bool) or not isinstance(self.max_workers, int):
            raise ConfigurationError("max_workers", f"expected an integer, got {self.max_workers!r}")
        Validators.assert_in_range("max_workers", self.max_workers, 1)
        if self.seed is not None and (isinstance(self.seed, bool) or not isinstance(self.seed, int)):
            raise ConfigurationError("seed", f"expected an integer or null, got {self.seed!r}")
        for name in ("mask_snow", "speckle_filter"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigurationError(name, f"expected true/false, got {getattr(self, name)!r}")

        object.__setattr__(self, "optical_indices", self._index_list("optical_indices"))
        object.__setattr__(self, "radar_indices", self._index_list("radar_indices"))
        object.__setattr__(self, "null_policy", NullPolicy.parse(self.null_policy))

    def _parse_date(self, name: str) -> pd.Timestamp:
        try:
            return pd.Timestamp(getattr(self, name))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(name, f"not a date: {getattr(self, name)!r}") from exc

    def _index_list(self, name: str) -> tuple[str, ...]:
        value = getattr(self, name)
        if isinstance(value, str) or not all(isinstance(v, str) for v in value):
            raise ConfigurationError(name, f"expected a list of index names, got {value!r}")
        return tuple(value)

    @property
    def date_range(self) -> tuple[pd.Timestamp, pd.Timestamp]:
        """``(start, end)``; *end* covers the whole last day."""
        start = pd.Timestamp(self.start_date)
        end = pd.Timestamp(self.end_date) + pd.Timedelta(days=1) - pd.Timedelta(microseconds=1)
        return start, end


def load_config(config_path: Path) -> PipelineConfig:
    """Parse a JSON configuration file into a :class:`PipelineConfig`.

    Args:
        config_path: Path to the JSON config file.

    Returns:
        A validated ``PipelineConfig`` instance.

    Raises:
        InputValidationError: If the file cannot be read or parsed.
        ConfigurationError: On an unknown key or an invalid value.
    """
    try:
        raw: dict[str, Any] = json.loads(Path(config_path).read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise InputValidationError(
            f"Failed to read config file '{config_path}': {exc}"
        ) from exc
    if not isinstance(raw, dict):
        raise InputValidationError(f"Config file '{config_path}' must hold a JSON object.")

    known = {f.name for f in dataclasses.fields(PipelineConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(unknown[0], "unknown configuration key")

    for key in ("optical_indices", "radar_indices"):
        if isinstance(raw.get(key), list):
            raw[key] = tuple(raw[key])

    logger.debug("Loaded config keys from %s: %s", config_path, sorted(raw))
    return PipelineConfig(**raw)
