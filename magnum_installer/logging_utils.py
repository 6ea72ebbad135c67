from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from .lib.env import PATHS

DEFAULT_LOG_PATH = PATHS.log_default


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Configure logging.

    Every command and decision is recorded in ``log_path``. When that
    location is not writable (read-only live media), a file next to the
    working directory is used instead.

    Returns the actual file path being used.
    """

    logger = logging.getLogger()
    logger.setLevel(level)

    # Avoid duplicate handlers if configure_logging() is called multiple times.
    if getattr(logger, "_magnum_configured", False):
        return getattr(logger, "_magnum_log_path", log_path)

    chosen_path = log_path
    handlers: list[logging.Handler] = []

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    file_handler: Optional[logging.Handler] = None
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
    except OSError:
        chosen_path = str(Path.cwd() / Path(log_path).name)
        file_handler = logging.FileHandler(chosen_path)
    # The file keeps full command output; the console stays at ``level``.
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    handlers.append(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(fmt)
        handlers.append(console)

    logger.setLevel(logging.DEBUG)
    for h in handlers:
        logger.addHandler(h)

    setattr(logger, "_magnum_configured", True)
    setattr(logger, "_magnum_log_path", chosen_path)

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s)", log_path, chosen_path
    )
    return chosen_path
