from __future__ import annotations

import logging


def configure_app_logging(level: str = "INFO") -> None:
    """
    Set the level for the ``civic_authz`` logger tree.

    Notes:
    - Plain stdlib logging; uvicorn already installs handlers.
    - ``APP_LOG_LEVEL=DEBUG`` shows every decision and cache invalidation;
      denials are logged at WARNING, store failures at ERROR.
    """

    normalized = level.upper()
    logging.getLogger("civic_authz").setLevel(normalized)
    logging.getLogger("civic_authz").propagate = True
