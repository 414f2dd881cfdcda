import json
import logging
import os
import sys

_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Chatty HTTP/AWS libraries, silenced below DEBUG
_THIRD_PARTY_LOGGERS = ("urllib3", "botocore", "boto3", "s3transfer")


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured output.

    Produces one JSON object per log record with fields: ts, level, logger, msg.
    Exception info is included as an "exc" field when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _make_formatter(debug_format: str, with_name: bool) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=_DATEFMT)
    fmt = "[%(asctime)s] [%(levelname)s] "
    if with_name:
        fmt += "%(name)s "
    return logging.Formatter(fmt + "%(message)s", datefmt=_DATEFMT)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure logging for the CLI or for embedding in another process.

    Args:
        mode: "cli" logs to stderr (stdout stays clean for --json output).
              "embedded" logs only to a file so a host application's
              streams are never touched.
        debug: If True, overrides LOG_LEVEL to DEBUG.
        log_file: Log file path; in CLI mode written in addition to stderr.
        debug_format: "text" (default) or "json" for structured output.
        level: Level from the config file, used when LOG_LEVEL is unset.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Default: INFO for CLI mode, WARNING for embedded mode.
        LOG_FILE: Log file path for embedded mode.
                  Default: /tmp/brew-sync.log
    """
    default_level = level or ("WARNING" if mode == "embedded" else "INFO")
    env_level = os.getenv("LOG_LEVEL", default_level).upper()

    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, env_level, logging.INFO)

    if mode == "embedded":
        final_log_file = log_file or os.getenv("LOG_FILE", "/tmp/brew-sync.log")
        logging.basicConfig(
            level=log_level,
            format="[%(asctime)s] [%(levelname)s] %(name)s %(message)s",
            datefmt=_DATEFMT,
            filename=final_log_file,
            filemode="a",
        )
    else:
        handlers: list[logging.Handler] = []
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            _make_formatter(debug_format, with_name=debug)
        )
        handlers.append(stderr_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file, mode="a")
            file_handler.setFormatter(
                _make_formatter(debug_format, with_name=True)
            )
            handlers.append(file_handler)

        logging.basicConfig(
            level=log_level,
            handlers=handlers,
        )

    if log_level != logging.DEBUG:
        for name in _THIRD_PARTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
