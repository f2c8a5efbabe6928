"""
Error Handling Module

Centralized error classification for the Gemini relay. Every failure surface
is mapped onto one ErrorType before it leaves a component; raw transport and
decode errors only survive as the debug detail of a RelayError.

Components:
- ErrorType: Enumeration of relay error kinds
- ErrorContext: Context information for error handling
- ErrorHandler: Classification and HTTP mapping utility
- ErrorLogger: Centralized error logging utility
"""

from .error_types import ErrorType, ErrorContext
from .error_logger import ErrorLogger
from .error_handler import ErrorHandler

__all__ = [
    'ErrorType',
    'ErrorContext',
    'ErrorHandler',
    'ErrorLogger'
]
