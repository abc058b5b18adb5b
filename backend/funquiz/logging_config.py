import logging
import sys

import structlog

SERVICE_NAME = "funquiz"

# per-request chatter from the SDKs would drown out game events
NOISY_LOGGERS = (
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.data.tables",
    "httpx",
    "httpcore",
)


def _add_service(_, __, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(log_level: str = "INFO", library_level: str = "WARNING") -> None:
    """Route structlog through stdlib logging and emit one JSON object per line."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)

    quiet = getattr(logging, library_level.upper(), logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, quiet))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            _add_service,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
