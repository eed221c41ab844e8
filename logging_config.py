import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from config import Settings

# Third-party loggers that follow the service level instead of their own defaults
ALIGNED_LOGGERS = ("uvicorn.access", "uvicorn.error")
# Driver heartbeat and topology chatter stays out of INFO output
QUIET_LOGGERS = ("pymongo", "stripe")


def build_formatter(settings: Settings) -> JsonFormatter:
    return JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger"},
        static_fields={"service": settings.app_name},
    )


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(settings))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    for name in ALIGNED_LOGGERS:
        logging.getLogger(name).setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
