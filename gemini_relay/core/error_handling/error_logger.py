"""
Error Logging Utility

Centralized error logging for classified relay failures.
"""

from typing import Dict, Any, Optional
import json
import re
from .error_types import ErrorType, ErrorContext
from ..logging import get_logger, mask_secrets


class ErrorLogger:
    """Единый логгер ошибок, использующий общую систему."""

    @staticmethod
    def _decode_unicode_escapes(text):
        """
        Decode Unicode escape sequences in error messages.

        Args:
            text (str): Text that may contain Unicode escape sequences

        Returns:
            str: Text with Unicode escape sequences decoded to actual characters
        """
        if not text:
            return text

        try:
            if '\\u' in text and text.startswith('{') and text.endswith('}'):
                decoded = json.loads(text)
                if isinstance(decoded, dict):
                    return json.dumps(decoded, ensure_ascii=False)
        except (json.JSONDecodeError, ValueError):
            pass

        unicode_pattern = re.compile(r'\\u([0-9a-fA-F]{4})')

        def replace_unicode(match):
            try:
                return chr(int(match.group(1), 16))
            except ValueError:
                return match.group(0)

        return unicode_pattern.sub(replace_unicode, text)

    @staticmethod
    def log_error(
        error_type: ErrorType,
        message: str,
        context: ErrorContext,
        debug_detail: Optional[str] = None,
        original_exception: Optional[Exception] = None,
        additional_data: Optional[Dict[str, Any]] = None
    ):
        """Логировать классифицированную ошибку."""
        logger = get_logger()

        log_extra = context.to_log_extra()
        log_extra["error_code"] = error_type.code
        log_extra["http_status_code"] = error_type.status_code

        if debug_detail:
            log_extra["debug_detail"] = mask_secrets(ErrorLogger._decode_unicode_escapes(debug_detail))

        if additional_data:
            log_extra.update(additional_data)

        if original_exception is not None:
            log_extra["original_exception"] = mask_secrets(str(original_exception))
            log_extra["original_exception_type"] = type(original_exception).__name__

        log_message = f"[{error_type.code}] {message}"
        if debug_detail:
            log_message += f" | detail={log_extra['debug_detail']}"

        logger.error(log_message, exc_info=original_exception is not None, **log_extra)

    @staticmethod
    def log_provider_error(
        status_code: int,
        error_details: str,
        context: ErrorContext
    ):
        """Log a non-success response from Gemini."""
        logger = get_logger()

        decoded_error_details = mask_secrets(ErrorLogger._decode_unicode_escapes(error_details))

        log_extra = context.to_log_extra()
        log_extra.update({
            "provider_error_details": decoded_error_details,
            "provider_status_code": status_code,
            "error_code": ErrorType.PROVIDER_ERROR.code,
        })

        logger.error(
            f"Gemini returned error {status_code}: {decoded_error_details}",
            exc_info=False,
            **log_extra
        )
