"""
nullpolicy.py
=============
Row-level null handling applied to aggregated rows before export.

Every policy drops rows whose elevation or LAI mean is exactly ``0``, the
value seen outside data coverage.  A missing or null sentinel band does
not trigger this exclusion.  On top of that:

ExcludeAllNulls      also drops rows with a null optical key band or a
                     null radar cross-pol band.
IncludeOpticalNulls  also drops rows with a null radar cross-pol band.
IncludeAllNulls      nothing else.
"""

from __future__ import annotations

import logging
import math
from enum import Enum
from typing import Iterable, Sequence

from shared.python.exceptions import ConfigurationError

from .zonal import AggregatedRow

logger = logging.getLogger("mmts.nullpolicy")


class NullPolicy(str, Enum):
    EXCLUDE_ALL_NULLS = "ExcludeAllNulls"
    INCLUDE_OPTICAL_NULLS = "IncludeOpticalNulls"
    INCLUDE_ALL_NULLS = "IncludeAllNulls"

    @classmethod
    def parse(cls, value: "NullPolicy | str") -> "NullPolicy":
        """Accept a member, its value or its name (case-insensitive).

        Raises:
            ConfigurationError: For an unknown policy.
        """
        if isinstance(value, cls):
            return value
        wanted = str(value).strip().lower()
        for member in cls:
            if wanted in (member.value.lower(), member.name.lower()):
                return member
        raise ConfigurationError(
            "null_policy", f"'{value}' is not one of {[m.value for m in cls]}"
        )


def _is_null(value: float | None) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


class NullPolicyFilter:
    """Apply one :class:`NullPolicy` to aggregated rows."""

    def __init__(
        self,
        policy: NullPolicy | str = NullPolicy.EXCLUDE_ALL_NULLS,
        *,
        cross_pol_band: str = "VH",
        optical_key_band: str = "LAI",
        zero_sentinel_bands: Sequence[str] = ("DEM", "LAI"),
    ) -> None:
        self.policy = NullPolicy.parse(policy)
        self.cross_pol_band = cross_pol_band
        self.optical_key_band = optical_key_band
        self.zero_sentinel_bands = tuple(zero_sentinel_bands)

    def _outside_coverage(self, row: AggregatedRow) -> bool:
        for band in self.zero_sentinel_bands:
            value = row.values.get(band)
            if not _is_null(value) and value == 0:
                return True
        return False

    def keep(self, row: AggregatedRow) -> bool:
        if self._outside_coverage(row):
            return False
        if self.policy is NullPolicy.INCLUDE_ALL_NULLS:
            return True
        if _is_null(row.values.get(self.cross_pol_band)):
            return False
        if self.policy is NullPolicy.INCLUDE_OPTICAL_NULLS:
            return True
        return not _is_null(row.values.get(self.optical_key_band))

    def apply(self, rows: Iterable[AggregatedRow]) -> list[AggregatedRow]:
        rows = list(rows)
        kept = [row for row in rows if self.keep(row)]
        logger.info("Null policy %s: %d of %d row(s) kept", self.policy.value, len(kept), len(rows))
        return kept
