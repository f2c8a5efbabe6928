from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .error_handling.error_types import ErrorType


class RelayError(Exception):
    """Classified relay failure.

    ``message`` is safe to show a user. ``debug_detail`` holds the raw
    provider body or underlying error text and is meant for logs only.
    """

    def __init__(
        self,
        kind: "ErrorType",
        message: str,
        debug_detail: Optional[str] = None,
        provider_status_code: Optional[int] = None,
        partial_answer: Any = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.debug_detail = debug_detail
        self.provider_status_code = provider_status_code
        self.partial_answer = partial_answer

    @property
    def code(self) -> str:
        return self.kind.code

    def __repr__(self) -> str:
        return f"RelayError(kind={self.kind.name}, message={self.message!r})"


class ConsumerDisconnectedError(Exception):
    """Raised by a stream consumer when the downstream client has gone away."""
