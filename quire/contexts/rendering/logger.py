"""
Rendering context logger.

Provides logging interface for rendering context with automatic [render] prefix.
All rendering modules should import from this module, not from utils.logger directly.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

from quire.utils.logger import setup_logger as _setup_logger

load_dotenv()

CONTEXT_PREFIX = "[render]"


def setup_rendering_logger(
    log_dir: Optional[Path],
    backend: Optional[str] = None,
    console_level: Optional[str] = "WARNING",
) -> Optional[Path]:
    """
    Setup logger for rendering context.

    Configures loguru with provenance tracking and rendering-specific context.
    The console sink defaults to WARNING because routine progress is already
    shown through the status console.

    Args:
        log_dir: Directory for this rendering session, or None for console-only logging
        backend: Description of the TeX backend, if already known
        console_level: Minimum level echoed to stderr

    Returns:
        Path to log file, if any
    """
    return _setup_logger(
        context_name="render",
        log_dir=log_dir,
        extra_provenance={"TeX backend": backend or os.getenv("QUIRE_TEX", "auto")},
        console_level=console_level,
    )


# Wrapper functions with automatic [render] prefix


def _log_info(message: str) -> None:
    """Log info message with [render] prefix."""
    logger.info(f"{CONTEXT_PREFIX} {message}")


def _log_success(message: str) -> None:
    """Log success message with [render] prefix."""
    logger.success(f"{CONTEXT_PREFIX} {message}")


def _log_error(message: str) -> None:
    """Log error message with [render] prefix."""
    logger.error(f"{CONTEXT_PREFIX} {message}")


def _log_warning(message: str) -> None:
    """Log warning message with [render] prefix."""
    logger.warning(f"{CONTEXT_PREFIX} {message}")


def _log_debug(message: str) -> None:
    """Log debug message with [render] prefix."""
    logger.debug(f"{CONTEXT_PREFIX} {message}")


# High-level rendering-specific logging helpers


def log_render_start(destination: Path, source: Path, reruns: int, backend: str) -> None:
    """Log start of a render job with context."""
    _log_info(f"Rendering: {destination.name}")
    _log_debug(f"  Source: {source}")
    _log_debug(f"  Backend: {backend}")
    _log_debug(f"  Passes: {reruns + 1}")


def log_render_result(
    destination: Path,
    elapsed_time: float,
    error: Optional[BaseException] = None,
) -> None:
    """
    Log the outcome of a render job.

    On failure the compiler transcript, when there is one, is written raw so
    multi-line TeX output keeps its original formatting in the log file.

    Args:
        destination: Output file the job was producing
        elapsed_time: Time taken to render
        error: The failure, or None on success
    """
    if error is None:
        _log_success(f"{destination.name}: rendered ({elapsed_time:.2f}s)")
        return

    _log_error(f"{destination.name}: {error} ({elapsed_time:.2f}s)")

    cause = error.__cause__ or error
    transcript = getattr(cause, "transcript_text", None)
    if transcript is not None:
        logger.opt(raw=True).debug(
            f"\n{'=' * 80}\nTEX OUTPUT:\n{'=' * 80}\n{transcript()}\n"
        )
