# Overview: Logging configuration for the bakery application and its services.

import json
import logging
from datetime import datetime, timezone

LOGGER_NAME = "bakery"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def configure_logging(app) -> None:
    """
    Attach one stream handler to the package logger and the Flask app logger.

    Service modules log through logging.getLogger(__name__), which lands
    under the "bakery" namespace; routes use current_app.logger.
    """
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    handler = logging.StreamHandler()
    if app.config.get("LOG_JSON"):
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s %(name)s - %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S",
            )
        )

    for logger in {logging.getLogger(LOGGER_NAME), app.logger}:
        logger.setLevel(level)
        for existing in list(logger.handlers):
            if getattr(existing, "_bakery_handler", False):
                logger.removeHandler(existing)
        handler._bakery_handler = True
        logger.addHandler(handler)
