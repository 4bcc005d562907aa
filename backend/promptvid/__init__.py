"""promptvid - prompt-to-video pipeline for bilingual podcast videos.

This module provides startup helpers: validate_dependencies() checks that
ffmpeg is available before the finalize stage needs it, and
configure_logging() applies the logging section of the settings.
"""

import logging
import subprocess

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_dependencies() -> None:
    """Validate required system dependencies are available.

    Raises:
        RuntimeError: If ffmpeg is not found or not functional.
    """
    try:
        result = subprocess.run(
            ['ffmpeg', '-version'],
            capture_output=True,
            check=True,
            text=True
        )
        version_line = result.stdout.split('\n')[0]
        logger.info(f"ffmpeg validated: {version_line}")
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise RuntimeError(
            "ffmpeg not found on PATH. Install ffmpeg to merge rendered clips.\n"
            "Ubuntu/Debian: sudo apt-get install ffmpeg\n"
            "macOS: brew install ffmpeg\n"
            "Windows: https://ffmpeg.org/download.html"
        ) from e


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger from settings.logging (or an explicit level)."""
    from promptvid.config import settings

    logging.basicConfig(
        level=(level or settings.logging.level).upper(),
        format=settings.logging.format,
    )
