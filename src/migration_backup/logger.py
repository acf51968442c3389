from __future__ import annotations

import logging
import sys
import time
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_HANDLER: Optional[logging.Handler] = None


class UTCFormatter(logging.Formatter):
    converter = time.gmtime


def configure_logging(level: str = "INFO") -> None:
    """Install a single stderr handler on the root logger.

    Calling this more than once only adjusts the level, so a scheduled run
    that reloads configuration does not stack handlers.
    """
    global _HANDLER

    root = logging.getLogger()
    if _HANDLER is None:
        _HANDLER = logging.StreamHandler(sys.stderr)
        _HANDLER.setFormatter(UTCFormatter(LOG_FORMAT))
        root.addHandler(_HANDLER)

    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    root.setLevel(numeric)

    # urllib3 logs every connection at DEBUG, which drowns the polling output.
    logging.getLogger("urllib3").setLevel(max(numeric, logging.INFO))
