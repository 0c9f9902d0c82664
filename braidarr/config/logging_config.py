"""Logging setup."""

import logging

from braidarr.config.settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once at application start-up."""
    logging.basicConfig(level=(level or settings.log_level).upper(), format=LOG_FORMAT)

    # SQL echo is controlled by database_echo, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
