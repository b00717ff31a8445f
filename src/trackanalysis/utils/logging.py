from __future__ import annotations

import logging
from typing import List, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
PACKAGE_LOGGER = "trackanalysis"


def _level(name: str) -> int:
    value = logging.getLevelName(str(name).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {name}")
    return value


def setup_logging(level: str = "INFO", log_file: Optional[str] = None, package_level: Optional[str] = None) -> logging.Logger:
    """Configure the root handlers and return the package logger.

    ``package_level`` lets the analysis modules log per-trajectory detail (DEBUG)
    while third-party libraries stay at ``level``.
    """
    root_level = _level(level)
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(level=root_level, format=LOG_FORMAT, handlers=handlers, force=True)
    pkg = logging.getLogger(PACKAGE_LOGGER)
    pkg.setLevel(_level(package_level) if package_level is not None else root_level)
    return pkg
