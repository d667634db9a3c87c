"""
Logging for the ``directory_api`` package.

Every module logs through ``logging.getLogger(__name__)``, so all of
them hang below the ``directory_api`` logger configured here.  Guards
log rejected requests at ``WARNING`` and services log committed
mutations at ``INFO``; ``LOG_LEVEL=WARNING`` keeps only abuse-related
noise.  Set ``LOG_FILE`` to also append the same lines to a file.

Records still propagate to the root logger, so a server or test
harness that configures the root keeps seeing them.
"""

import logging
from pathlib import Path
from typing import List, Optional


APP_LOGGER = "directory_api"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [pid %(process)d] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Handlers attached by the last ``setup_logging`` call.
_installed: List[logging.Handler] = []


def _file_handler(logfile: str) -> logging.Handler:
    path = Path(logfile).expanduser().resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, encoding="utf-8")


def setup_logging(level: str = "INFO", logfile: Optional[str] = None) -> logging.Logger:
    """Configure the package logger and return it.

    Handlers installed by an earlier call are closed and replaced, so
    ``create_app`` can run repeatedly (as it does in tests) without
    duplicating output.  An unknown ``level`` name falls back to
    ``INFO``.
    """
    logger = logging.getLogger(APP_LOGGER)
    while _installed:
        handler = _installed.pop()
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if logfile:
        handlers.append(_file_handler(logfile))

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        _installed.append(handler)
    return logger
