"""
Main Error Handler

Maps every failure surface of the relay (configuration, transport, HTTP
status, decode, empty answer, consumer capability, consumer write) onto a
classified RelayError, and converts RelayErrors into HTTPExceptions for the
API layer.
"""

import asyncio
import json
from typing import Optional
from fastapi import HTTPException
import httpx

from .error_types import ErrorType, ErrorContext
from .error_logger import ErrorLogger
from ..exceptions import RelayError, ConsumerDisconnectedError
from ..logging import mask_secrets


class ErrorHandler:
    """Centralized error classification utility."""

    @staticmethod
    def create_relay_error(
        error_type: ErrorType,
        context: Optional[ErrorContext] = None,
        debug_detail: Optional[str] = None,
        original_exception: Optional[Exception] = None,
        provider_status_code: Optional[int] = None,
        log_error: bool = True,
        **format_kwargs
    ) -> RelayError:
        """
        Create a classified RelayError with proper logging.

        Args:
            error_type: The kind of failure
            context: Error context information
            debug_detail: Raw body or underlying error text (logs only)
            original_exception: Exception that caused this error
            provider_status_code: Status code returned by Gemini, if any
            log_error: Whether to log the error
            **format_kwargs: Additional kwargs for message formatting

        Returns:
            RelayError ready to be raised
        """
        if context is None:
            context = ErrorContext()

        if debug_detail is None and original_exception is not None:
            debug_detail = str(original_exception) or type(original_exception).__name__
        if debug_detail is not None:
            debug_detail = mask_secrets(debug_detail)

        format_dict = {
            **context.__dict__,
            "provider_status_code": provider_status_code,
            **format_kwargs
        }
        message = error_type.format_message(**format_dict)

        if log_error:
            ErrorLogger.log_error(
                error_type=error_type,
                message=message,
                context=context,
                debug_detail=debug_detail,
                original_exception=original_exception
            )

        return RelayError(
            kind=error_type,
            message=message,
            debug_detail=debug_detail,
            provider_status_code=provider_status_code
        )

    @staticmethod
    def handle_configuration_error(error_details: str, context: ErrorContext) -> RelayError:
        """Handle missing credential or broken configuration."""
        return ErrorHandler.create_relay_error(
            error_type=ErrorType.CONFIGURATION,
            context=context,
            error_details=error_details
        )

    @staticmethod
    def handle_invalid_input(error_details: str, context: ErrorContext, original_exception: Optional[Exception] = None) -> RelayError:
        """Handle empty or unusable input."""
        return ErrorHandler.create_relay_error(
            error_type=ErrorType.VALIDATION_INVALID_INPUT,
            context=context,
            original_exception=original_exception,
            error_details=error_details
        )

    @staticmethod
    def handle_transport_error(original_exception: Exception, context: ErrorContext) -> RelayError:
        """Handle errors raised while sending the request or reading the body."""
        if isinstance(original_exception, (httpx.TimeoutException, asyncio.TimeoutError)):
            error_details = "request timed out"
        else:
            error_details = type(original_exception).__name__
        return ErrorHandler.create_relay_error(
            error_type=ErrorType.TRANSPORT_FAILURE,
            context=context,
            original_exception=original_exception,
            error_details=error_details
        )

    @staticmethod
    def handle_provider_status(status_code: int, response_text: str, context: ErrorContext) -> RelayError:
        """Handle a non-success status; the raw body is kept as debug detail."""
        ErrorLogger.log_provider_error(
            status_code=status_code,
            error_details=response_text,
            context=context
        )
        return ErrorHandler.create_relay_error(
            error_type=ErrorType.PROVIDER_ERROR,
            context=context,
            debug_detail=response_text,
            provider_status_code=status_code,
            log_error=False  # Already logged above
        )

    @staticmethod
    def handle_decode_failure(context: ErrorContext, debug_detail: Optional[str] = None, original_exception: Optional[Exception] = None) -> RelayError:
        """Handle a body that is not the expected JSON envelope."""
        return ErrorHandler.create_relay_error(
            error_type=ErrorType.DECODE_FAILURE,
            context=context,
            debug_detail=debug_detail,
            original_exception=original_exception
        )

    @staticmethod
    def handle_empty_answer(context: ErrorContext, debug_detail: Optional[str] = None) -> RelayError:
        """Handle a well-formed response that carries no usable text."""
        return ErrorHandler.create_relay_error(
            error_type=ErrorType.EMPTY_ANSWER,
            context=context,
            debug_detail=debug_detail
        )

    @staticmethod
    def handle_stream_unsupported(context: ErrorContext, consumer: object = None) -> RelayError:
        """Handle a consumer that cannot be flushed incrementally."""
        debug_detail = f"consumer type {type(consumer).__name__} is not flushable" if consumer is not None else None
        return ErrorHandler.create_relay_error(
            error_type=ErrorType.STREAM_UNSUPPORTED,
            context=context,
            debug_detail=debug_detail
        )

    @staticmethod
    def handle_consumer_write_failure(original_exception: Exception, context: ErrorContext) -> RelayError:
        """Handle a failed write or flush to the downstream consumer."""
        return ErrorHandler.create_relay_error(
            error_type=ErrorType.CONSUMER_WRITE_FAILURE,
            context=context,
            original_exception=original_exception
        )

    @staticmethod
    def classify_exception(original_exception: Exception, context: ErrorContext) -> RelayError:
        """
        Map a raw exception onto the relay taxonomy.

        Already classified errors are returned unchanged.
        """
        if isinstance(original_exception, RelayError):
            return original_exception
        if isinstance(original_exception, httpx.HTTPStatusError):
            response = original_exception.response
            try:
                response_text = response.text
            except httpx.ResponseNotRead:
                response_text = "Unable to read error response from provider"
            return ErrorHandler.handle_provider_status(response.status_code, response_text, context)
        if isinstance(original_exception, (httpx.RequestError, httpx.StreamError, asyncio.TimeoutError, OSError)):
            return ErrorHandler.handle_transport_error(original_exception, context)
        if isinstance(original_exception, ConsumerDisconnectedError):
            return ErrorHandler.handle_consumer_write_failure(original_exception, context)
        if isinstance(original_exception, (json.JSONDecodeError, UnicodeDecodeError)):
            return ErrorHandler.handle_decode_failure(context, original_exception=original_exception)
        if isinstance(original_exception, ValueError):
            return ErrorHandler.handle_invalid_input(str(original_exception), context, original_exception)
        return ErrorHandler.create_relay_error(
            error_type=ErrorType.TRANSPORT_FAILURE,
            context=context,
            original_exception=original_exception,
            error_details=f"unexpected {type(original_exception).__name__}"
        )

    @staticmethod
    def to_http_exception(error: RelayError) -> HTTPException:
        """Convert a RelayError into the API error shape. Debug detail stays in the logs."""
        detail = {
            "error": {
                "message": error.message,
                "code": error.kind.code
            }
        }
        if error.provider_status_code is not None:
            detail["error"]["provider_status_code"] = error.provider_status_code
        return HTTPException(status_code=error.kind.status_code, detail=detail)
