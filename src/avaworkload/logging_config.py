import logging
import logging.config
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "/tmp/avaworkload.log")  # empty string disables the file handler

# Third party loggers and the level they are held at
QUIET = {
    "fastapi": "INFO",
    "uvicorn.error": "INFO",
    "uvicorn.access": "WARNING",
    "httpx": "WARNING",
    "httpcore": "WARNING",
}


def build_config(level: str = LOG_LEVEL, log_file: str | None = LOG_FILE) -> dict:
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": sys.stdout,
        },
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": log_file,
            "mode": "a",
        }
    names = list(handlers)

    loggers = {
        "avaworkload": {"level": level, "handlers": names, "propagate": False},
    }
    loggers.update({name: {"level": lvl, "handlers": names, "propagate": False} for name, lvl in QUIET.items()})

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s.%(msecs)03d %(levelname)-7s %(name)s:%(lineno)d %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": "WARNING", "handlers": names},
    }


def setup_logging(level: str | None = None, log_file: str | None = LOG_FILE) -> None:
    logging.config.dictConfig(build_config((level or LOG_LEVEL).upper(), log_file))
    os.environ.setdefault("PYTHONUNBUFFERED", "1")
