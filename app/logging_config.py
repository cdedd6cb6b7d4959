from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone

from app.config import settings


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'line': record.lineno,
        }
        for key in ('order_id', 'payment_id', 'refund_id', 'user_id'):
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry)


def build_logging_config(*, level: str, fmt: str) -> dict:
    formatter = 'json' if fmt.strip().lower() == 'json' else 'standard'
    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'standard': {
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
            'json': {'()': JSONFormatter},
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': formatter,
                'stream': 'ext://sys.stdout',
            },
        },
        'loggers': {
            'app': {'handlers': ['console'], 'level': level.upper(), 'propagate': False},
            'sqlalchemy.engine': {'handlers': ['console'], 'level': 'WARNING', 'propagate': False},
            'uvicorn.access': {'handlers': ['console'], 'level': 'INFO', 'propagate': False},
        },
        'root': {'handlers': ['console'], 'level': 'WARNING'},
    }


def setup_logging() -> None:
    logging.config.dictConfig(build_logging_config(level=settings.log_level, fmt=settings.log_format))
