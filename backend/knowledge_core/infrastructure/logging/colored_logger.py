"""Colored pipeline logger: ANSI-colored console logging for knowledge base syncs.

Provides a PipelineLogger with color-coded output per sync stage,
making it easy to visually trace an ingestion run in the terminal.

Color scheme:
    Green   : Source revision / Storage writes
    Yellow  : Diffing
    Magenta : Chunking
    Blue    : Embedding
    Cyan    : Scheduling / queue
    Red     : Errors
    Gray    : Timing / Stats
"""

import logging
import time
from contextlib import contextmanager
from typing import Any


# ── ANSI Color Codes ─────────────────────────────────────────────────

class _Colors:
    """ANSI escape codes for terminal colors."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"
    GRAY = "\033[90m"


# ── Sync Stage Definitions ───────────────────────────────────────────

class PipelineStage:
    """Predefined sync stages with colors and icons."""

    SOURCE = ("SOURCE", _Colors.GREEN, "🌐")
    DIFF = ("DIFF", _Colors.YELLOW, "🔀")
    STORAGE = ("STORAGE", _Colors.GREEN, "💾")
    SCHEDULE = ("SCHEDULE", _Colors.CYAN, "⏰")
    SYNC = ("SYNC", _Colors.WHITE, "⚙️")
    ERROR = ("ERROR", _Colors.RED, "❌")
    COMPLETE = ("COMPLETE", _Colors.GREEN, "✅")


# ── PipelineLogger ───────────────────────────────────────────────────

class PipelineLogger:
    """Color-coded logger for the ingestion pipeline and sync worker.

    Usage:
        log = PipelineLogger("IngestionPipeline")
        log.step_start(PipelineStage.SOURCE, "Resolving revision", kb="docs")
        log.detail("3 files changed")
        log.step_complete(PipelineStage.SYNC, "Incremental sync done", chunks=42)
    """

    def __init__(self, component_name: str):
        self._logger = logging.getLogger(component_name)
        self._component = component_name

    @property
    def name(self) -> str:
        return self._component

    def step_start(self, stage: tuple[str, str, str], message: str, **kwargs: Any) -> None:
        label, color, icon = stage
        formatted = (
            f"{color}{_Colors.BOLD}{icon} [{label}]{_Colors.RESET} "
            f"{color}{message}{_Colors.RESET}"
        )
        self._logger.info(formatted + _details(kwargs, _Colors.GRAY))

    def step_complete(self, stage: tuple[str, str, str], message: str, **kwargs: Any) -> None:
        label, color, icon = stage
        formatted = (
            f"{color}{icon} [{label}]{_Colors.RESET} "
            f"{_Colors.GREEN}✓ {message}{_Colors.RESET}"
        )
        self._logger.info(formatted + _details(kwargs, _Colors.GRAY))

    def step_warning(self, stage: tuple[str, str, str], message: str, **kwargs: Any) -> None:
        label, _, icon = stage
        formatted = (
            f"{_Colors.YELLOW}{_Colors.BOLD}{icon} [{label}]{_Colors.RESET} "
            f"{_Colors.YELLOW}{message}{_Colors.RESET}"
        )
        self._logger.warning(formatted + _details(kwargs, _Colors.GRAY))

    def step_error(
        self, stage: tuple[str, str, str], message: str, error: Exception | None = None
    ) -> None:
        """Log a sync step error in red."""
        label, _, _ = stage
        formatted = (
            f"{_Colors.RED}{_Colors.BOLD}❌ [{label}]{_Colors.RESET} "
            f"{_Colors.RED}{message}{_Colors.RESET}"
        )
        if error:
            formatted += f" {_Colors.DIM}→ {type(error).__name__}: {error}{_Colors.RESET}"
        self._logger.error(formatted)

    def detail(self, message: str, **kwargs: Any) -> None:
        formatted = f"   {_Colors.GRAY}├─ {message}{_Colors.RESET}"
        self._logger.debug(formatted + _details(kwargs, _Colors.DIM))

    def separator(self, title: str = "") -> None:
        if title:
            self._logger.info(
                f"{_Colors.GRAY}{'─' * 10} {title} {'─' * max(50 - len(title), 0)}{_Colors.RESET}"
            )
        else:
            self._logger.info(f"{_Colors.GRAY}{'─' * 60}{_Colors.RESET}")

    def stats(self, **kwargs: Any) -> None:
        parts = [f"{k}: {v}" for k, v in kwargs.items()]
        self._logger.info(f"   {_Colors.GRAY}📈 {' | '.join(parts)}{_Colors.RESET}")

    @contextmanager
    def timed_step(self, stage: tuple[str, str, str], message: str, **kwargs: Any):
        """Context manager that logs start/end with elapsed time.

        Usage:
            with log.timed_step(PipelineStage.DIFF, "Comparing revisions"):
                changes = await provider.diff(old, new)
        """
        self.step_start(stage, message, **kwargs)
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            elapsed = time.perf_counter() - start
            self.step_error(stage, f"{message} failed after {elapsed:.2f}s", error=e)
            raise
        else:
            elapsed = time.perf_counter() - start
            self.step_complete(stage, f"{message} ({elapsed:.2f}s)", **kwargs)


def _details(kwargs: dict[str, Any], color: str) -> str:
    if not kwargs:
        return ""
    details = " | ".join(f"{k}={v}" for k, v in kwargs.items())
    return f" {color}({details}){_Colors.RESET}"
