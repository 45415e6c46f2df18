"""Logging set-up for the application."""

from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)s %(pathname)s:%(lineno)d: %(message)s"

_installed_handler: logging.Handler | None = None


def setup_logger() -> logging.Handler:
    """Install the global log handler: nostrtalk at INFO, everything else at WARNING.

    Raises RuntimeError when a handler has already been installed.
    """
    global _installed_handler
    if _installed_handler is not None:
        raise RuntimeError("Failed to set global default subscriber")

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.WARNING)
    app_logger = logging.getLogger("nostrtalk")
    app_logger.setLevel(logging.INFO)

    _installed_handler = handler
    app_logger.info("Starting up")
    return handler