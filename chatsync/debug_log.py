"""Logger setup shared by chatsync modules.

Every module asks for its own ``chatsync.<name>`` logger. When CHATSYNC_DEBUG
is set the logger runs at DEBUG and also writes to ~/.chatsync_debug.log so
messages survive Textual capturing stdout/stderr.
"""
import logging
import os

from .config import DEBUG_LOG_FILE

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(f"chatsync.{name}")
    if os.getenv("CHATSYNC_DEBUG"):
        if not any(
            isinstance(h, logging.FileHandler)
            and getattr(h, "baseFilename", "") == str(DEBUG_LOG_FILE)
            for h in logger.handlers
        ):
            try:
                fh = logging.FileHandler(str(DEBUG_LOG_FILE), encoding="utf-8")
                fh.setLevel(logging.DEBUG)
                fh.setFormatter(logging.Formatter(_FORMAT))
                logger.addHandler(fh)
            except OSError:
                # the debug file is optional
                pass
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.WARNING)
    return logger
