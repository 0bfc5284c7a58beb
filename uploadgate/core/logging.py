from __future__ import annotations

import logging

from uploadgate.core.config import DEV_TOKEN_PEPPER, get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def configure_logging() -> None:
    # Configure root logging once per process; later calls only refresh the level.
    global _configured
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    if not _configured:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
        _configured = True
    root.setLevel(level)
    # Keep driver chatter out of request logs unless explicitly debugging.
    logging.getLogger("botocore").setLevel(max(level, logging.WARNING))
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))
    if settings.upload_token_pepper == DEV_TOKEN_PEPPER:
        logging.getLogger(__name__).warning(
            "upload_token_pepper_is_default set UPLOAD_TOKEN_PEPPER before serving vendor traffic"
        )
