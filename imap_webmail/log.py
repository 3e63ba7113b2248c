import sys

from loguru import logger

from imap_webmail.config import get_settings

logger.remove()
logger.add(sys.stderr, level=get_settings().log_level.upper())

__all__ = ["logger"]
