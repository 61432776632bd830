import atexit
import io
import logging
import sys
from contextvars import ContextVar
from typing import List, Optional

import structlog

from .config import Settings

REQUEST_ID_CTX: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"

logger = logging.getLogger("segmerge")
struct_logger = structlog.get_logger("segmerge")

_configured = False


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging infrastructure
        record.request_id = REQUEST_ID_CTX.get(None) or "-"
        return True


def configure_logging(settings: Settings, level: int = logging.INFO) -> None:
    """Install console/file handlers and the structlog JSON pipeline once per process."""
    global _configured
    if _configured:
        return

    try:
        sys.stdout.reconfigure(line_buffering=True)
    except (AttributeError, io.UnsupportedOperation):
        pass

    request_id_filter = RequestIdFilter()
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.addFilter(request_id_filter)
    console_handler.setFormatter(formatter)
    handlers: List[logging.Handler] = [console_handler]

    if settings.LOG_FILE is not None:
        settings.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        file_stream = open(settings.LOG_FILE, "a", encoding="utf-8", buffering=1)
        atexit.register(file_stream.close)
        file_handler = logging.StreamHandler(file_stream)
        file_handler.setLevel(level)
        file_handler.addFilter(request_id_filter)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
        # uvicorn installs its own handlers; mirror them to the file as well
        for name in ("uvicorn", "uvicorn.access"):
            logging.getLogger(name).addHandler(file_handler)

    logging.basicConfig(level=level, handlers=handlers)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    _configured = True


def flush_logs() -> None:
    """Force flush all log handlers."""
    for handler in logging.getLogger().handlers:
        handler.flush()
