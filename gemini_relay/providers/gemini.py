import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from .endpoint_resolver import ProviderEndpoint
from ..core.error_handling import ErrorHandler, ErrorContext
from ..core.logging import logger


# Сколько тела ответа сохранять как debug detail
MAX_DEBUG_BODY = 4000


def extract_candidate_text(envelope: Dict[str, Any]) -> Optional[str]:
    """First text part of the first candidate, or None when there is none."""
    candidates = envelope.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return None
    content = candidates[0].get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return None
    for part in parts:
        if isinstance(part, dict) and isinstance(part.get("text"), str):
            return part["text"]
    return None


class GeminiProvider:
    """
    HTTP exchange with the Gemini generativelanguage API.

    Transport and status failures are classified here; the caller only ever
    sees RelayError.
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def generate_content(self, endpoint: ProviderEndpoint, body: bytes, timeout: float,
                               context: ErrorContext) -> Dict[str, Any]:
        """
        Send a single-shot request and decode the JSON envelope.

        Raises:
            RelayError: TRANSPORT_FAILURE, PROVIDER_ERROR or DECODE_FAILURE
        """
        logger.debug_data(
            title="Gemini Request",
            data={"url": endpoint.url, "body_bytes": len(body)},
            request_id=context.request_id or "unknown",
            component="gemini_provider",
            data_flow="to_provider"
        )

        try:
            response = await self.client.post(
                endpoint.url,
                headers=endpoint.headers,
                content=body,
                timeout=httpx.Timeout(timeout)
            )
        except httpx.RequestError as e:
            raise ErrorHandler.handle_transport_error(e, context) from e

        if not response.is_success:
            raise ErrorHandler.handle_provider_status(
                response.status_code, response.text[:MAX_DEBUG_BODY], context
            )

        try:
            envelope = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ErrorHandler.handle_decode_failure(
                context, debug_detail=f"{e}: {response.text[:MAX_DEBUG_BODY]}", original_exception=e
            ) from e

        if not isinstance(envelope, dict):
            raise ErrorHandler.handle_decode_failure(
                context, debug_detail=f"expected JSON object, got {type(envelope).__name__}"
            )

        logger.debug_data(
            title="Gemini Response",
            data=envelope,
            request_id=context.request_id or "unknown",
            component="gemini_provider",
            data_flow="from_provider"
        )
        return envelope

    @asynccontextmanager
    async def open_stream(self, endpoint: ProviderEndpoint, body: bytes, timeout: float,
                          context: ErrorContext) -> AsyncIterator[httpx.Response]:
        """
        Open a streaming exchange; the response is closed when the block exits.

        Read errors raised inside the block are classified as transport failures.
        """
        logger.debug_data(
            title="Gemini Stream Request",
            data={"url": endpoint.url, "body_bytes": len(body)},
            request_id=context.request_id or "unknown",
            component="gemini_provider",
            data_flow="to_provider"
        )

        try:
            async with self.client.stream(
                "POST",
                endpoint.url,
                headers=endpoint.headers,
                content=body,
                timeout=httpx.Timeout(timeout)
            ) as response:
                if not response.is_success:
                    # Сначала читаем тело, иначе ResponseNotRead
                    await response.aread()
                    raise ErrorHandler.handle_provider_status(
                        response.status_code, response.text[:MAX_DEBUG_BODY], context
                    )
                yield response
        except (httpx.RequestError, httpx.StreamError) as e:
            raise ErrorHandler.handle_transport_error(e, context) from e
