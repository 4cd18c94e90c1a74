from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_app_logging(level: str = "INFO") -> logging.Logger:
    """
    Set the level of the `taskhub` logger tree.

    What shows up at each level:
    - WARNING: blocked hard deletes / lifecycle-field edits, retries given up.
    - INFO: authorization denials, completed cascades, vendor reassignment.
    - DEBUG: every entity a cascade visits and every single transition.

    When the process has no root handler (a script or a shell rather than
    an ASGI server) one stream handler is attached to `taskhub` so those
    records are not dropped.
    """

    logger = logging.getLogger("taskhub")
    logger.setLevel(level.upper())
    logger.propagate = True

    if not logging.getLogger().handlers and not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
