import json
import logging
import os
import sys
from datetime import datetime, timezone


# Reserved LogRecord attributes that cannot be overwritten
_RESERVED_ATTRS = {
    "name", "msg", "args", "levelname", "levelno",
    "pathname", "filename", "module", "exc_info",
    "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread",
    "threadName", "processName", "process", "message",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logs.

    Guarantees:
    • Never crashes on non-serializable extra values
    • Extra fields land at the top level of the record
    """

    def format(self, record: logging.LogRecord) -> str:

        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key, value in record.__dict__.items():

            if key.startswith("_"):
                continue

            if key in _RESERVED_ATTRS:
                continue

            # Avoid overwriting existing fields
            if key in log_data:
                log_data[f"extra_{key}"] = value
            else:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = "INFO", log_dir: str = "logs"):

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter())
    root_logger.addHandler(console_handler)

    if log_dir:

        os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.FileHandler(os.path.join(log_dir, "app.log"))
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Silence noisy libs
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


# ============================================================
# REQUEST LOG HELPERS
# ============================================================

def _request_extra(request_id, endpoint, expert_id=None, **kwargs) -> dict:
    """
    Common fields of every request log line. expert_id is omitted for
    endpoints that are not scoped to an expert.
    """

    extra = {"request_id": request_id, "endpoint": endpoint}

    if expert_id is not None:
        extra["expert_id"] = expert_id

    extra.update(kwargs)

    return extra


def log_request_start(logger, request_id, endpoint, expert_id=None, **kwargs):

    logger.info(
        f"{endpoint}_started",
        extra=_request_extra(request_id, endpoint, expert_id, **kwargs),
    )


def log_request_complete(logger, request_id, endpoint, latency_seconds, expert_id=None, **kwargs):

    logger.info(
        f"{endpoint}_completed",
        extra=_request_extra(
            request_id,
            endpoint,
            expert_id,
            latency_seconds=round(latency_seconds, 3),
            **kwargs,
        ),
    )


def log_request_error(logger, request_id, endpoint, error, expert_id=None, **kwargs):

    logger.error(
        f"{endpoint}_failed",
        extra=_request_extra(
            request_id,
            endpoint,
            expert_id,
            error=str(error),
            error_type=type(error).__name__,
            **kwargs,
        ),
        exc_info=True,
    )
