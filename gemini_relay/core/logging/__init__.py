"""
Logging infrastructure for the Gemini relay.

Provides a single shared Logger instance for the whole package.
"""

from .config import setup_logging, mask_secrets
from .logger import Logger

_logger_instance = None


def get_logger():
    """Получить единый экземпляр логгера."""
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = Logger()
    return _logger_instance


logger = get_logger()

__all__ = ['logger', 'Logger', 'setup_logging', 'mask_secrets', 'get_logger']
