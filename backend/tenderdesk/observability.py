"""Logfire cloud observability initialization and instrumentation."""

import logging

import logfire
from fastapi import FastAPI

from tenderdesk import __version__
from tenderdesk.config import Settings

logger = logging.getLogger(__name__)

_configured = False


def initialize_logfire(settings: Settings) -> bool:
    """
    Initialize Logfire and bridge Python logging to it.

    Call once at startup. Instruments:
    - pymongo (when the Mongo store is in use)
    - Python logging (root logger handler)

    Returns:
        True if Logfire is active. Failures are logged, never raised.
    """
    global _configured

    if not settings.logfire_token:
        logger.warning("Logfire token not set - observability disabled")
        return False

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="tenderdesk",
            service_version=__version__,
            environment=settings.environment,
        )

        if settings.store_backend == "mongo":
            logfire.instrument_pymongo()

        logging.getLogger().addHandler(logfire.LogfireLoggingHandler())

        _configured = True
        logger.info("✓ Logfire cloud tracking initialized")
        return True

    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")
        return False


def instrument_app(app: FastAPI) -> None:
    """Trace FastAPI requests if Logfire was configured."""
    if not _configured:
        return
    try:
        logfire.instrument_fastapi(app)
    except Exception as e:
        logger.debug(f"FastAPI instrumentation skipped: {e}")
