"""Logging setup utilities for httprunner.

Routes the application's loggers and uvicorn's server loggers through the
same handlers so request logs and process lifecycle logs share one format.
"""

from __future__ import annotations

import logging
import sys

from httprunner.config.settings import LoggingConfig

# uvicorn installs its own handlers on these unless told otherwise
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

_HANDLER_TAG = "_httprunner_handler"


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure logging for httprunner and the embedded uvicorn server.

    Calling this again replaces the handlers installed by a previous call
    instead of stacking duplicates.

    Args:
        config: Logging configuration. If None, uses defaults
                (INFO level, stderr output).
    """
    if config is None:
        config = LoggingConfig()

    level = getattr(logging, config.level.upper(), logging.INFO)
    formatter = logging.Formatter(config.format)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file))
    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_TAG, True)

    for name in ("httprunner", *UVICORN_LOGGERS):
        target = logging.getLogger(name)
        for old in [h for h in target.handlers if getattr(h, _HANDLER_TAG, False)]:
            target.removeHandler(old)
            old.close()
        target.setLevel(level)
        if name in ("httprunner", "uvicorn"):
            for handler in handlers:
                target.addHandler(handler)
            target.propagate = False
        else:
            # uvicorn.error / uvicorn.access propagate into "uvicorn"
            target.propagate = True

    logging.getLogger("httprunner").info("Logging initialized at %s level", config.level)
