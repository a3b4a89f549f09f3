"""
Shared helpers.
"""
import logging

from app.core import config


_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_configured = False


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger, configuring the root "app" logger on first use.

    Usage:
        log = get_logger(__name__)
    """
    global _configured
    if not _configured:
        root = logging.getLogger("app")
        if not root.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(_FORMAT))
            root.addHandler(handler)
        root.setLevel(config.LOG_LEVEL)
        _configured = True
    return logging.getLogger(name)
