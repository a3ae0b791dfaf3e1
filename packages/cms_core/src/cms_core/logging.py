import logging
import sys
import time
from contextvars import ContextVar, Token
from typing import Optional, Union

# Request-scoped id stamped on every log line emitted while serving a request
request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestIdFormatter(logging.Formatter):
    """
    Formatter that prefixes records with the current request id and
    renders timestamps in UTC.
    """

    converter = time.gmtime

    def formatTime(self, record, datefmt=None):  # noqa: N802
        ct = self.converter(record.created)
        if datefmt:
            return time.strftime(datefmt, ct)
        t = time.strftime("%Y-%m-%dT%H:%M:%S", ct)
        return "%s.%03dZ" % (t, record.msecs)

    def format(self, record: logging.LogRecord) -> str:
        rid = request_id.get()
        # Distinct attribute name so callers' extra={} cannot collide with it
        record.rid_str = f"[{rid}] " if rid else ""
        return super().format(record)


def setup_logging(
    level: Union[int, str] = logging.INFO,
    *,
    capture_roots: bool = True,
    module_name: str = "cms",
) -> None:
    """
    Global logging configuration.

    Args:
        level: Logging level (INFO, DEBUG, etc.)
        capture_roots: If True, configures the root logger so third-party
            loggers (uvicorn, sqlalchemy) share the same format.
            If False, only loggers under ``module_name`` are configured.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    target_logger = (
        logging.getLogger() if capture_roots else logging.getLogger(module_name)
    )

    # Allows reconfiguration during tests
    target_logger.handlers.clear()
    target_logger.setLevel(level)

    formatter = RequestIdFormatter(
        "%(asctime)s %(levelname)-8s %(rid_str)s%(name)s: %(message)s"
    )
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    target_logger.addHandler(console)

    if not capture_roots:
        target_logger.propagate = False


def set_request_id(value: str) -> Token:
    """
    Sets the request id and returns a token for cleanup.

    >>> token = set_request_id("req-555")
    >>> reset_request_id(token)
    """
    return request_id.set(value)


def reset_request_id(token: Token) -> None:
    request_id.reset(token)
