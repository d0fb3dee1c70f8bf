"""Logging setup for tracker-sync.

Library modules only call ``logging.getLogger(__name__)``; whoever drives
a sync (a CLI, a hook, a test) calls ``setup_logging()`` once.
"""

import json
import logging
import os
import sys

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
_TEXT_FORMAT_WITH_NAME = "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ``ts``, ``level``, ``logger``, ``msg``.

    A traceback, when the record carries one, is added under ``exc``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, self.datefmt or DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _formatter(log_format: str, with_name: bool) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter(datefmt=DATE_FORMAT)
    return logging.Formatter(
        _TEXT_FORMAT_WITH_NAME if with_name else _TEXT_FORMAT, datefmt=DATE_FORMAT
    )


def _resolve_level(debug: bool, default: str) -> int:
    if debug:
        return logging.DEBUG
    name = os.getenv("LOG_LEVEL", default).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(
    debug: bool = False,
    log_file: str | None = None,
    log_format: str = "text",
    level: str = "INFO",
) -> None:
    """
    Send log records to stderr, and also to *log_file* when given.

    Args:
        debug: Force DEBUG, which includes every git command run.
        log_file: Append records here too; file lines carry the logger name.
        log_format: "text" (default) or "json".
        level: Level used when LOG_LEVEL is unset, usually from config.

    Environment variables:
        LOG_LEVEL: DEBUG, INFO, WARNING or ERROR; ignored when *debug* is set.
            Default: *level*.
    """
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(log_format, with_name=False))
    handlers: list[logging.Handler] = [console]

    if log_file:
        to_file = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        to_file.setFormatter(_formatter(log_format, with_name=True))
        handlers.append(to_file)

    logging.basicConfig(level=_resolve_level(debug, level), handlers=handlers, force=True)
