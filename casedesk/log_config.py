from __future__ import annotations

import logging.config

from casedesk.config import settings


def get_logging_config(level: str | None = None) -> dict:
    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'default': {
                'format': settings.log_format,
            },
        },
        'handlers': {
            'default': {
                'formatter': 'default',
                'class': 'logging.StreamHandler',
                'stream': 'ext://sys.stdout',
            },
        },
        'loggers': {
            # httpx logs every request at INFO
            'httpx': {'level': 'WARNING'},
            'apscheduler': {'level': 'WARNING'},
        },
        'root': {
            'level': (level or settings.log_level).upper(),
            'handlers': ['default'],
        },
    }


def configure_logging(level: str | None = None) -> None:
    logging.config.dictConfig(get_logging_config(level))
