"""Logging setup for hosts embedding docsync.

Every module logs through ``logging.getLogger(__name__)``; this module
only decides where records go.  Two modes:

* ``cli`` -- records go to stderr, plus an optional file.
* ``background`` -- a long-running sync manager with no terminal; records
  go to a file only.
"""

import json
import logging
import os
import sys

from .config_schema import LoggingConfig

# Attributes a caller may attach with ``extra=`` to tie a record to a
# document; copied into JSON output when present.
CONTEXT_FIELDS = ("path", "identifier", "action")

DEFAULT_LOG_FILE = "/tmp/docsync.log"

_TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, msg.

    ``exc`` carries the formatted traceback and any of ``CONTEXT_FIELDS``
    set on the record are added verbatim.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(debug_format: str) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=_DATE_FORMAT)
    return logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT)


def _resolve_level(mode: str, debug: bool, config: LoggingConfig) -> int:
    if debug:
        return logging.DEBUG
    name = os.getenv("LOG_LEVEL") or config.level
    if name is None:
        name = "WARNING" if mode == "background" else "INFO"
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    config: LoggingConfig | None = None,
) -> None:
    """Configure the root logger.

    Args:
        mode: ``"cli"`` or ``"background"``.
        debug: Force DEBUG regardless of environment and config.
        log_file: Log file path; wins over ``config.file``.  Only
            ``background`` mode falls back to ``LOG_FILE`` and then
            ``DEFAULT_LOG_FILE``; ``cli`` mode writes a file only when
            one of the first two is set.
        debug_format: ``"text"`` or ``"json"``.
        config: The ``logging`` section of the unified config.

    Level precedence is ``debug``, then ``LOG_LEVEL``, then
    ``config.level``, then the mode default (WARNING for background,
    INFO for cli).  Calling again replaces the handlers installed by an
    earlier call.
    """
    config = config or LoggingConfig()
    level = _resolve_level(mode, debug, config)
    path = log_file or config.file
    fmt = _formatter(debug_format)

    handlers: list[logging.Handler] = []
    if mode == "background":
        path = path or os.getenv("LOG_FILE", DEFAULT_LOG_FILE)
    else:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(fmt)
        handlers.append(stream)
    if path:
        handler = logging.FileHandler(path, mode="a")
        handler.setFormatter(fmt)
        handlers.append(handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    if level != logging.DEBUG:
        logging.getLogger("asyncio").setLevel(logging.WARNING)
