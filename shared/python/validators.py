"""
MMTS Builder — Shared Input Validators
=======================================
Static precondition checks used by the configuration layer, the data
sources, and the raster components.

All methods raise an exception from :mod:`shared.python.exceptions`
rather than returning booleans, which keeps every ``validate_inputs`` /
``__post_init__`` implementation a flat list of assertions::

    Validators.assert_file_exists(manifest_path)
    Validators.assert_in_range("clear_threshold", value, 0.0, 1.0)
    Validators.assert_odd_kernel("kernel_size", value)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Sequence

# pyproj is imported lazily inside assert_crs_valid.

from shared.python.exceptions import (
    BandNotFoundError,
    ConfigurationError,
    CRSError,
    GridMismatchError,
    InputValidationError,
    OutputWriteError,
)


class Validators:
    """Collection of static precondition checks.

    All methods are ``@staticmethod`` — this class is never instantiated.
    """

    # ------------------------------------------------------------------
    # File-system checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Assert that *path* points to an existing regular file.

        Raises:
            InputValidationError: If *path* does not exist or is a directory.
        """
        path = Path(path)
        if not path.exists():
            raise InputValidationError(
                f"Input file not found: '{path}'. "
                "Check that the path is correct and the file exists."
            )
        if path.is_dir():
            raise InputValidationError(
                f"Expected a file but got a directory: '{path}'."
            )

    @staticmethod
    def assert_output_dir_writable(output_path: Path) -> None:
        """Create the parent directory of *output_path* if needed.

        Raises:
            OutputWriteError: If the parent directory cannot be created.
        """
        parent = Path(output_path).parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_path), str(exc)) from exc

    # ------------------------------------------------------------------
    # CRS checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_crs_valid(crs_string: str) -> None:
        """Assert that *crs_string* can be parsed by :mod:`pyproj`.

        Raises:
            CRSError: If *crs_string* is not recognised.
        """
        try:
            from pyproj import CRS  # noqa: PLC0415

            CRS.from_user_input(crs_string)
        except Exception as exc:
            raise CRSError(str(crs_string)) from exc

    # ------------------------------------------------------------------
    # Parameter checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_in_range(
        field_name: str,
        value: float,
        minimum: float | None = None,
        maximum: float | None = None,
        *,
        exclusive_minimum: bool = False,
    ) -> None:
        """Assert that a numeric configuration value lies inside a range.

        Args:
            field_name: Name reported in the error message.
            value: The value to check.
            minimum: Lower bound, or ``None`` for unbounded.
            maximum: Upper bound (inclusive), or ``None`` for unbounded.
            exclusive_minimum: Treat *minimum* as a strict bound.

        Raises:
            ConfigurationError: If *value* is not a number or out of range.
        """
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(field_name, f"expected a number, got {value!r}")
        if minimum is not None:
            too_low = value <= minimum if exclusive_minimum else value < minimum
            if too_low:
                op = ">" if exclusive_minimum else ">="
                raise ConfigurationError(field_name, f"must be {op} {minimum}, got {value}")
        if maximum is not None and value > maximum:
            raise ConfigurationError(field_name, f"must be <= {maximum}, got {value}")

    @staticmethod
    def assert_choice(field_name: str, value: Any, choices: Iterable[Any]) -> None:
        """Assert that *value* is one of *choices*.

        Raises:
            ConfigurationError: If *value* is not an allowed choice.
        """
        allowed = list(choices)
        if value not in allowed:
            raise ConfigurationError(
                field_name,
                f"{value!r} is not one of {', '.join(repr(c) for c in allowed)}",
            )

    @staticmethod
    def assert_odd_kernel(field_name: str, value: int) -> None:
        """Assert that a neighbourhood window size is an odd integer >= 3.

        Raises:
            ConfigurationError: If *value* is even, too small, or not an int.
        """
        if isinstance(value, bool) or not isinstance(value, int) or value < 3 or value % 2 == 0:
            raise ConfigurationError(
                field_name, f"must be an odd integer >= 3, got {value!r}"
            )

    # ------------------------------------------------------------------
    # Raster checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_bands_present(required: Sequence[str], available: Sequence[str]) -> None:
        """Assert that every band name in *required* is in *available*.

        Raises:
            BandNotFoundError: On the first missing band.
        """
        for band in required:
            if band not in available:
                raise BandNotFoundError(band, available)

    @staticmethod
    def assert_raster_shapes_match(
        shape_a: tuple[int, ...],
        shape_b: tuple[int, ...],
        label_a: str = "Band A",
        label_b: str = "Band B",
    ) -> None:
        """Assert that two arrays share the same grid shape.

        Raises:
            GridMismatchError: If the shapes differ.
        """
        if tuple(shape_a) != tuple(shape_b):
            raise GridMismatchError(
                f"Raster shape mismatch: {label_a} is {tuple(shape_a)} but "
                f"{label_b} is {tuple(shape_b)}. "
                "All bands of one raster must have identical dimensions."
            )
