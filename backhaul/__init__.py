import os
import logging
from logging.handlers import RotatingFileHandler

__version__ = '1.0.0'


def configure_logging(level=None, log_dir=None):
    """Configure application logging"""

    if level is None:
        level = os.environ.get('LOG_LEVEL', 'INFO')
    log_level = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handlers = []

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers.append(console_handler)

    # File handler (only when a log directory is configured)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'backhaul.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Cloud SDKs are chatty at DEBUG/INFO
    for noisy in ('botocore', 'boto3', 's3transfer', 'urllib3', 'googleapiclient.discovery_cache'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured (level: {logging.getLevelName(log_level)})"
    )
