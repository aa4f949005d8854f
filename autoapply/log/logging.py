"""Logging setup for the auto-apply batch and its tools.

One Loguru logger is configured on import:
  • stdout sink, human readable or JSON lines (``LOG_JSON``) for the cron runner
  • Datadog Logs sink when DD_API_KEY is set
  • standard-library ``logging`` records (psycopg, SQLAlchemy, tenacity) are
    re-emitted through Loguru
"""

from __future__ import annotations

import inspect
import logging
import sys
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from datadog_api_client.v2 import ApiClient, Configuration
from datadog_api_client.v2.api.logs_api import LogsApi
from datadog_api_client.v2.model.content_encoding import ContentEncoding
from datadog_api_client.v2.model.http_log import HTTPLog
from datadog_api_client.v2.model.http_log_item import HTTPLogItem
from loguru import logger as loguru_logger

from autoapply.core.config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS Z}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level> | <level>{extra}</level>"
)


class InterceptHandler(logging.Handler):
    """Forwards standard-library log records to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so the caller's file and line are reported
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        loguru_logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


class DatadogSink:
    """
    Loguru sink that submits each record to Datadog Logs.

    Bound context (``run_id``, ``candidate_id``...) becomes top-level log
    attributes so it can be faceted in Datadog.
    """

    def __init__(self) -> None:
        # DD_SITE and DD_API_KEY are read from the environment by the client
        self.api = LogsApi(ApiClient(Configuration()))

    def build_item(self, record: Dict[str, Any]) -> HTTPLogItem:
        level = record["level"].name
        attributes = {key: str(value) for key, value in record["extra"].items()}
        # Bound context wins over the defaults on key collisions (e.g. status=)
        item: Dict[str, str] = {
            "ddsource": "loguru",
            "ddtags": f"level:{level},env:{settings.environment},service:{settings.service_name}",
            "hostname": settings.hostname,
            "message": record["message"],
            "service": settings.service_name,
            "status": level,
            "timestamp": str(record["time"].timestamp()),
            **attributes,
        }
        return HTTPLogItem(**item)

    def __call__(self, message) -> None:
        try:
            self.api.submit_log(
                content_encoding=ContentEncoding.DEFLATE,
                body=HTTPLog([self.build_item(message.record)]),
            )
        except Exception as exc:  # noqa: BLE001
            # A log sink must never raise into the caller
            sys.stderr.write(f"[LOGGING] Datadog submission failed: {exc}\n")


def init_logging():
    """Configure Loguru once and return it."""
    if getattr(init_logging, "_configured", False):
        return loguru_logger

    loguru_logger.remove()
    if settings.log_json:
        loguru_logger.add(sys.stdout, level=settings.log_level, serialize=True)
    else:
        loguru_logger.add(sys.stdout, level=settings.log_level, format=CONSOLE_FORMAT)

    if settings.datadog_api_key:
        loguru_logger.add(DatadogSink(), level=settings.log_level_datadog)
    else:
        loguru_logger.debug("Datadog API key missing, logs will not be forwarded to DD")

    # Loguru does the level filtering
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    init_logging._configured = True  # type: ignore[attr-defined]
    return loguru_logger


@contextmanager
def run_context(**context: Any) -> Iterator[None]:
    """
    Attach ``context`` to every record logged inside the block, including
    records from tasks started within it.

    Example:
        with run_context(run_id=run_id):
            await process_page(...)
    """
    with loguru_logger.contextualize(**context):
        yield


# The logger instance used throughout the package
logger = init_logging()
