"""
Tally logging setup.

Every module logs through ``logging.getLogger("tally.<subsystem>")``;
``configure_logging`` attaches a single stream handler to the ``tally``
logger so applications that do not configure logging still see
warnings from the cache and transaction layers.
"""

from __future__ import annotations

import logging
from typing import Optional, TextIO

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_HANDLER_NAME = "tally"


def configure_logging(level: str = "WARNING", stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Set the ``tally`` logger's level and install its handler once.

    Calling again only updates the level (and the stream, if given).
    """
    logger = logging.getLogger("tally")
    logger.setLevel(getattr(logging, level.upper()))

    handler = next((h for h in logger.handlers if h.get_name() == _HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler(stream)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    elif stream is not None and isinstance(handler, logging.StreamHandler):
        handler.setStream(stream)

    return logger
