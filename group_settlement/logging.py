from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    level_no = logging.getLevelName(level.upper())
    if not isinstance(level_no, int):
        level_no = logging.INFO

    logging.basicConfig(level=level_no, format=_FORMAT, stream=sys.stdout, force=True)

    # Per-update and per-statement chatter is only useful when debugging.
    noisy_level = logging.DEBUG if level_no <= logging.DEBUG else logging.WARNING
    for name in ("aiogram.event", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(noisy_level)
