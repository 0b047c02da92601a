import logging

from opsdesk.core.config import settings

ROOT = "opsdesk"
_configured = False


def _configure_root() -> None:
    global _configured
    root = logging.getLogger(ROOT)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
        root.addHandler(handler)
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Child of the `opsdesk` logger, so one handler and one level cover every component."""
    if not _configured:
        _configure_root()
    return logging.getLogger(f"{ROOT}.{name}")


"""
Logging setup and it configures:
- One stream handler on the `opsdesk` root logger
- Log level from LOG_LEVEL
- Per-component child loggers (opsdesk.agent.engine, opsdesk.backend.session, ...)

The main purpose:
Standardized application logging.
"""
