import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

_DEFAULT_LOG_LEVEL = os.environ.get("RIGWARDEN_LOG_LEVEL", "INFO").upper()
_FORMAT = '{"ts":"%(asctime)s","lvl":"%(levelname)s","thread":"%(threadName)s","msg":"%(message)s","logger":"%(name)s"}'


def setup_logging(
    log_directory: str,
    level: str | int = _DEFAULT_LOG_LEVEL,
    rotate_mb: int = 50,
    keep: int = 10,
) -> None:
    os.makedirs(log_directory, exist_ok=True)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(formatter)

    fh = RotatingFileHandler(
        filename=os.path.join(log_directory, "rigwarden.log"),
        maxBytes=max(1, rotate_mb) * 1024 * 1024,
        backupCount=keep,
        encoding="utf-8",
    )
    fh.setLevel(level)
    fh.setFormatter(formatter)

    # Avoid duplicate handlers if reconfigured
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)

    root_logger.addHandler(ch)
    root_logger.addHandler(fh)
    # the HTTP client is chatty at DEBUG, one line per poll per process
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)
