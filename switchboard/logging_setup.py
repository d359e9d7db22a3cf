from __future__ import annotations

import logging
import os
import sys
from typing import Optional


def configure_logging(default_level: str = "WARNING", verbose: Optional[bool] = None) -> int:
    """Set up root logging for the CLI and the backend server.

    ``LOG_LEVEL`` wins over ``default_level``; ``verbose`` forces DEBUG.
    Returns the level in effect.
    """
    level_name = "DEBUG" if verbose else os.environ.get("LOG_LEVEL", default_level).upper()
    level = logging.getLevelName(level_name)
    bad_name = None
    if not isinstance(level, int):
        bad_name = level_name
        level = logging.WARNING

    # stderr keeps command output (export, list) pipeable
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    if bad_name is not None:
        logging.getLogger(__name__).warning("unknown LOG_LEVEL %r; using WARNING", bad_name)
    return level
