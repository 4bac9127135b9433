"""Script logging: stdout + file per script."""

import logging
from pathlib import Path

from apps.eav.config import config


def get_logger(script_name: str) -> logging.Logger:
    """Return a logger that writes to stdout and <EAV_LOG_DIR>/eav_<script_name>.log."""
    log_dir = Path(config.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(f"eav.{script_name}")
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return logger

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    logger.addHandler(sh)

    log_file = log_dir / f"eav_{script_name}.log"
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    return logger
