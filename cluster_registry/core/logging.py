"""Logging setup with colored, filename-only output."""

import logging
import sys

from cluster_registry.config import settings


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors and filename-only logger names."""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'        # Reset
    }

    def format(self, record):
        # 'cluster_registry.services.cluster_service' -> 'cluster_service'
        logger_name = record.name
        if '.' in logger_name:
            filename = logger_name.split('.')[-1]
        else:
            filename = logger_name

        level_color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset_color = self.COLORS['RESET']

        record.name = filename
        record.levelname = f"{level_color}{record.levelname}{reset_color}"

        return super().format(record)


def setup_logging(level: str | None = None):
    """Configure root logging with colored output and filename-only names."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root_logger.handlers = [handler]
