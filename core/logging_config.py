"""
Structured JSON logging configuration.
"""

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from config.settings import get_settings

LOGGER_NAME = 'tokenauth'


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for attr in ('token_id', 'username', 'operation', 'error_id'):
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        return json.dumps(log_entry)


def configure_logging(level: str = None, fmt: str = None, log_file: str = None):
    """Configure logging for the tokenauth, config and core loggers.

    Arguments default to LOG_LEVEL, LOG_FORMAT and LOG_FILE from settings.

    Returns:
        Configured 'tokenauth' logger instance.
    """
    settings = get_settings()
    log_level = (level or settings.log_level).upper()
    log_format = fmt or settings.log_format
    log_file = settings.log_file if log_file is None else log_file

    handlers = []

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)

    if log_format == 'json':
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
    handlers.append(console_handler)

    # File handler (if configured)
    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    for name in (LOGGER_NAME, 'config', 'core'):
        target = logging.getLogger(name)
        target.setLevel(getattr(logging, log_level, logging.INFO))
        target.handlers = list(handlers)

    return logging.getLogger(LOGGER_NAME)
