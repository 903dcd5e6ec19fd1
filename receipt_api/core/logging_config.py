"""
Centralized logging configuration for the API.
This ensures consistent logging setup across the application and tests.
"""
import logging
import sys
from contextvars import ContextVar

_request_id: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Stamp every record with the id of the request being handled."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


def set_request_id(request_id: str):
    return _request_id.set(request_id)


def reset_request_id(token) -> None:
    _request_id.reset(token)


def get_request_id() -> str:
    return _request_id.get()


def setup_logging(level: str = "INFO"):
    """
    Configure logging for the application.

    Uses basicConfig to set up:
    - Root logger level: INFO unless overridden (LOG_LEVEL)
    - Format: timestamp, level, name, request id, message
    - Handler: StreamHandler to stdout
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [rid=%(request_id)s]: %(message)s",
        handlers=[handler],
    )
