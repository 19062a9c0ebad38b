"""
MMTS Builder — Shared Base Tool
================================
Abstract base class for the runnable entry points of the time-series
builder.

Design Pattern:
    Template Method — the public ``run()`` method defines a fixed
    pipeline (validate → process → report) that subclasses fill in by
    implementing ``validate_inputs`` and ``process``.

Usage::

    from shared.python.base_tool import GeoTool

    class MyTool(GeoTool):
        def validate_inputs(self) -> None:
            ...
        def process(self) -> None:
            ...
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path

# ---------------------------------------------------------------------------
# Project-level logger: each module creates a child logger via
#   logging.getLogger("mmts.<module>").
# ---------------------------------------------------------------------------
logger = logging.getLogger("mmts")


class GeoTool(ABC):
    """Abstract base class for runnable builder tools.

    Calling :meth:`run` executes the full pipeline in the correct order.
    A tool can be asked to stop early with :meth:`cancel`; subclasses poll
    :attr:`cancelled` between independent units of work so already
    produced results stay intact.

    Attributes:
        output_path: Where the tool writes its result, or ``None`` when the
            result is only kept in memory.
        verbose: When ``True`` the tool logs DEBUG-level messages.
    """

    def __init__(
        self,
        output_path: Path | None = None,
        *,
        verbose: bool = False,
    ) -> None:
        self.output_path: Path | None = Path(output_path) if output_path else None
        self.verbose: bool = verbose
        self._cancel_event = threading.Event()

        self._configure_logging()

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_inputs(self) -> None:
        """Validate all inputs before processing begins.

        Raises:
            InputValidationError: If any precondition is not met.
        """

    @abstractmethod
    def process(self) -> None:
        """Execute the core processing logic."""

    # ------------------------------------------------------------------
    # Template method
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Validate, process, and log the elapsed time.

        Any exception raised by ``validate_inputs`` or ``process``
        propagates unchanged.
        """
        logger.info("Starting %s", self.__class__.__name__)
        start = time.perf_counter()

        self.validate_inputs()
        self.process()

        elapsed = time.perf_counter() - start
        self._report_success(elapsed)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Ask a running tool to stop after its in-flight units of work."""
        logger.info("Cancellation requested for %s", self.__class__.__name__)
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        """``True`` once :meth:`cancel` has been called."""
        return self._cancel_event.is_set()

    # ------------------------------------------------------------------
    # Protected helpers
    # ------------------------------------------------------------------

    def _report_success(self, elapsed: float) -> None:
        """Log a completion message with the elapsed time."""
        status = "cancelled" if self.cancelled else "completed"
        logger.info(
            "%s %s in %.2fs → %s",
            self.__class__.__name__,
            status,
            elapsed,
            self.output_path or "<memory>",
        )

    def _configure_logging(self) -> None:
        """Attach a console handler to the ``mmts`` logger if none exists."""
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                fmt="[%(asctime)s] %(levelname)-8s %(name)s — %(message)s",
                datefmt="%H:%M:%S",
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(output_path={self.output_path!r})"
