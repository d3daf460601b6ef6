import logging

import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s %(threadName)s %(filename)s:%(funcName)s:%(lineno)d [%(levelname)s]: %(message)s"


class _BelowWarning(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.WARNING


def getCheckerLogger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG)
    log_formatter = logging.Formatter(LOG_FORMAT)

    # Errors go to stderr, everything else the user should see to stdout
    out = logging.StreamHandler(sys.stdout)
    out.setFormatter(log_formatter)
    out.setLevel(logging.INFO)
    out.addFilter(_BelowWarning())
    logger.addHandler(out)

    err = logging.StreamHandler(sys.stderr)
    err.setFormatter(log_formatter)
    err.setLevel(logging.WARNING)
    logger.addHandler(err)

    return logger


def configureCheckerLogging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    level_no = logging.getLevelName(level.upper())

    fh = None
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        fh = logging.FileHandler(log_file, "a")
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        fh.setLevel(logging.DEBUG)

    # Only touch loggers handed out by getCheckerLogger
    for name, logger in list(logging.Logger.manager.loggerDict.items()):
        if not name.startswith("checker") or not isinstance(logger, logging.Logger):
            continue
        for handler in logger.handlers:
            if type(handler) is logging.StreamHandler and handler.level < logging.WARNING:
                handler.setLevel(level_no)
        if fh is not None:
            logger.addHandler(fh)
