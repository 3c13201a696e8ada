import logging.config
import os

from config import Settings


def configure_logging(settings: Settings) -> None:
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    }
    if settings.log_dir:
        os.makedirs(settings.log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "default",
            "filename": os.path.join(settings.log_dir, "app.log"),
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 3,
        }
        handlers["errors"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": os.path.join(settings.log_dir, "error.log"),
            "level": "ERROR",
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
        },
        "handlers": handlers,
        "root": {"level": settings.log_level.upper(), "handlers": list(handlers)},
    })
