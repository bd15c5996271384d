from __future__ import annotations

import logging

from envrecon.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(*, level: str | None = None, force: bool = False) -> None:
    # Configure the root logger once per process; API and worker share the format.
    settings = get_settings()
    resolved = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(level=resolved, format=_LOG_FORMAT, force=force)
    # Keep SQL echo out of application logs unless explicitly requested.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
