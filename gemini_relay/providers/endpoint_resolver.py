from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import quote

from ..core.config_manager import DEFAULT_BASE_URL
from ..core.error_handling import ErrorHandler, ErrorContext


SINGLE_SHOT_METHOD = "generateContent"
STREAMING_METHOD = "streamGenerateContent"


@dataclass(frozen=True)
class ProviderEndpoint:
    """Fully qualified request target. The credential lives in the headers only."""
    url: str
    headers: Dict[str, str] = field(repr=False)
    stream: bool = False

    def __repr__(self) -> str:
        return f"ProviderEndpoint(url={self.url!r}, stream={self.stream})"


class EndpointResolver:
    """
    Selects the Gemini URL variant for a model and injects the credential.

    The shape is decided by the streaming flag alone: ``:generateContent``
    for single-shot, ``:streamGenerateContent?alt=sse`` for streaming.
    """

    def __init__(self, api_key: Optional[str], base_url: str = DEFAULT_BASE_URL):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def has_credential(self) -> bool:
        return bool(self._api_key and self._api_key.strip())

    def ensure_configured(self, context: Optional[ErrorContext] = None):
        """Fail fast with a configuration error when no credential is set."""
        if not self.has_credential:
            raise ErrorHandler.handle_configuration_error(
                "GEMINI_API_KEY environment variable not set",
                context or ErrorContext()
            )

    def resolve(self, model: str, stream: bool, context: Optional[ErrorContext] = None) -> ProviderEndpoint:
        context = context or ErrorContext(model_id=model)
        self.ensure_configured(context)
        if not isinstance(model, str) or not model.strip():
            raise ErrorHandler.handle_invalid_input("model cannot be empty", context)

        model_path = quote(model.strip(), safe="-._~")
        if stream:
            url = f"{self.base_url}/models/{model_path}:{STREAMING_METHOD}?alt=sse"
        else:
            url = f"{self.base_url}/models/{model_path}:{SINGLE_SHOT_METHOD}"

        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self._api_key.strip()
        }
        return ProviderEndpoint(url=url, headers=headers, stream=stream)
