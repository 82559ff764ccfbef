from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Tuple

LOGGER_NAMESPACE = "aish"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def create_session_logger(*, log_dir: str, debug: bool) -> Tuple[logging.Logger, str]:
    """Point the ``aish`` logger at a fresh per-run file and return it with the file path.

    Components log through children such as ``aish.shell`` or ``aish.history``,
    so every line in the file names its source. Nothing reaches the terminal.
    """
    directory = Path(log_dir).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    level = logging.DEBUG if debug else logging.INFO
    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return logger, str(log_path)
