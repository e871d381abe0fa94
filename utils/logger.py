# utils/logger.py
import logging
import os
import sys
from pathlib import Path

LOG_DIR_ENV = "NETGRAPH_LOG_DIR"
LOG_LEVEL_ENV = "NETGRAPH_LOG_LEVEL"


def _resolve_level(level):
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "DEBUG")
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level {level!r}")
        return resolved
    return level


def get_logger(name=__name__, level=None, logfile=None):
    """
    Return a logger writing to stdout and, optionally, to `logfile`.
    Relative logfiles land under $NETGRAPH_LOG_DIR when it is set.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger  # already configured

    logger.setLevel(_resolve_level(level))
    fmt = logging.Formatter(fmt="%(asctime)s | %(levelname)7s | %(name)s | %(message)s",
                            datefmt="%Y-%m-%d %H:%M:%S")

    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(fmt)
    logger.addHandler(sh)

    if logfile:
        path = Path(logfile)
        log_dir = os.environ.get(LOG_DIR_ENV)
        if log_dir and not path.is_absolute():
            path = Path(log_dir) / path.name
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    return logger
