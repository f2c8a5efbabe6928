"""
Error Types and Context Definitions

This module defines the stable error taxonomy of the relay and the context
information attached to every classified failure.
"""

from enum import Enum
from typing import Dict, Any, Optional
from fastapi import status


class ErrorType(Enum):
    """Enumeration of relay error kinds."""

    # Missing credential or broken configuration
    CONFIGURATION = ("configuration", status.HTTP_500_INTERNAL_SERVER_ERROR, "Relay configuration error: {error_details}")

    # Empty required text, unusable conversation
    VALIDATION_INVALID_INPUT = ("validation_invalid_input", status.HTTP_400_BAD_REQUEST, "Invalid input: {error_details}")

    # Request could not be sent, connection dropped, timeout
    TRANSPORT_FAILURE = ("transport_failure", status.HTTP_502_BAD_GATEWAY, "Failed to communicate with Gemini: {error_details}")

    # Non-success status from Gemini
    PROVIDER_ERROR = ("provider_error", status.HTTP_502_BAD_GATEWAY, "Gemini API error: {provider_status_code}")

    # Body is not the expected JSON envelope
    DECODE_FAILURE = ("decode_failure", status.HTTP_502_BAD_GATEWAY, "Failed to parse Gemini response")

    # Well-formed response without usable text
    EMPTY_ANSWER = ("empty_answer", status.HTTP_502_BAD_GATEWAY, "Empty response from Gemini")

    # Consumer cannot be flushed incrementally
    STREAM_UNSUPPORTED = ("stream_unsupported", status.HTTP_500_INTERNAL_SERVER_ERROR, "Streaming unsupported by client")

    # Forwarding to the consumer failed (disconnect)
    CONSUMER_WRITE_FAILURE = ("consumer_write_failure", status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to forward stream to client")

    def __init__(self, code: str, status_code: int, message_template: str):
        self.code = code
        self.status_code = status_code
        self.message_template = message_template

    def format_message(self, **kwargs) -> str:
        """Format the error message with provided parameters."""
        try:
            return self.message_template.format(**kwargs)
        except (KeyError, IndexError):
            return self.message_template


class ErrorContext:
    """Context information for error handling."""

    def __init__(
        self,
        request_id: Optional[str] = None,
        model_id: Optional[str] = None,
        answer_id: Optional[str] = None,
        endpoint_path: Optional[str] = None,
        **additional_context
    ):
        self.request_id = request_id
        self.model_id = model_id
        self.answer_id = answer_id
        self.endpoint_path = endpoint_path
        self.additional_context = additional_context

    def to_log_extra(self) -> Dict[str, Any]:
        """Convert context to logging extra dictionary."""
        extra = {
            "log_type": "error"
        }

        if self.request_id:
            extra["request_id"] = self.request_id
        if self.model_id:
            extra["model_id"] = self.model_id
        if self.answer_id:
            extra["answer_id"] = self.answer_id
        if self.endpoint_path:
            extra["endpoint_path"] = self.endpoint_path

        extra.update(self.additional_context)
        return extra
