"""Log formatting for the deployer: human-readable text or structured JSON."""

import json
import logging
import logging.config
from datetime import datetime, timezone

# Attributes every LogRecord carries; anything else came in through extra=
_STANDARD_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message", "asctime", "taskName",
}


def _extra_fields(record: logging.LogRecord) -> dict:
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """Emit each log record as a single-line JSON object.

    Standard fields:
        ts: ISO-8601 UTC timestamp
        level: DEBUG / INFO / WARNING / ERROR / CRITICAL
        logger: logger name
        msg: formatted message
        exc: exception traceback (only when an exception is present)

    Any keys passed via ``extra=`` (network, step, tx_hash, explorer, ...)
    are merged into the top-level object.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(_extra_fields(record))

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Plain console lines; tx hashes and explorer links are appended when present."""

    def __init__(self):
        super().__init__("%(levelname)-7s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        explorer = getattr(record, "explorer", None)
        if explorer:
            line += f"\n        Explorer: {explorer}"
        return line


def build_logging_config(level: str = "INFO", fmt: str = "text") -> dict:
    if fmt not in ("text", "json"):
        raise ValueError(f"Unknown log format {fmt!r}")
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": "deployer.logging_setup.JsonFormatter"},
            "text": {"()": "deployer.logging_setup.TextFormatter"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": fmt,
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": level.upper(),
            "handlers": ["console"],
        },
        "loggers": {
            "httpx": {"level": "WARNING"},  # one line per request otherwise
            "httpcore": {"level": "WARNING"},
        },
    }


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    logging.config.dictConfig(build_logging_config(level, fmt))
