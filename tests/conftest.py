"""
Pytest configuration and fixtures for the Gemini relay test suite.

Gemini is replaced by ``httpx.MockTransport``; nothing here touches the network.
"""

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from gemini_relay.core.config_manager import RelaySettings
from gemini_relay.core.exceptions import ConsumerDisconnectedError


TEST_API_KEY = "test-gemini-key-0123456789"
TEST_BASE_URL = "https://gemini.test/v1beta"


@pytest.fixture
def api_key() -> str:
    return TEST_API_KEY


@pytest.fixture
def settings() -> RelaySettings:
    """Relay settings with a credential and short timeouts."""
    return RelaySettings(
        api_key=TEST_API_KEY,
        base_url=TEST_BASE_URL,
        generation_timeout=5.0,
        title_timeout=5.0,
        max_stream_lines=10000,
        title_max_length=100,
        stream_queue_size=8,
    )


@pytest.fixture
def gemini_envelope() -> Callable[..., Dict[str, Any]]:
    """Factory for a Gemini response envelope with the given text parts."""
    def make(*texts: str) -> Dict[str, Any]:
        return {
            "candidates": [
                {
                    "content": {"role": "model", "parts": [{"text": text} for text in texts]},
                    "finishReason": "STOP"
                }
            ]
        }
    return make


@pytest.fixture
def sse_body(gemini_envelope) -> Callable[..., bytes]:
    """Factory for an SSE body with one ``data:`` event per text fragment."""
    def make(*fragments: str) -> bytes:
        events = [f"data: {json.dumps(gemini_envelope(fragment))}\r\n\r\n" for fragment in fragments]
        return "".join(events).encode("utf-8")
    return make


class RecordingConsumer:
    """Flushable consumer that records every flushed delivery."""

    def __init__(self, fail_on_delivery: Optional[int] = None):
        self.headers: Dict[str, str] = {}
        self.deliveries: List[bytes] = []
        self.pending = bytearray()
        self.fail_on_delivery = fail_on_delivery
        self.bytes_written = 0

    def set_headers(self, headers):
        self.headers.update(headers)

    async def write(self, data: bytes):
        if self.fail_on_delivery is not None and len(self.deliveries) + 1 >= self.fail_on_delivery:
            raise ConsumerDisconnectedError("client went away")
        self.pending.extend(data)
        self.bytes_written += len(data)

    async def flush(self):
        self.deliveries.append(bytes(self.pending))
        self.pending.clear()

    def chunks(self) -> List[Dict[str, Any]]:
        """Decoded JSON of every delivery."""
        result = []
        for delivery in self.deliveries:
            assert delivery.startswith(b"data: ") and delivery.endswith(b"\n\n")
            result.append(json.loads(delivery[len(b"data: "):-2]))
        return result


class WriteOnlyConsumer:
    """Consumer without the flush capability."""

    def __init__(self):
        self.headers: Dict[str, str] = {}
        self.bytes_written = 0

    def set_headers(self, headers):
        self.headers.update(headers)

    async def write(self, data: bytes):
        self.bytes_written += len(data)


@pytest.fixture
def recording_consumer() -> RecordingConsumer:
    return RecordingConsumer()


@pytest.fixture
def consumer_factory() -> Callable[..., RecordingConsumer]:
    return RecordingConsumer


@pytest.fixture
def write_only_consumer() -> WriteOnlyConsumer:
    return WriteOnlyConsumer()


@pytest.fixture
def mock_client_factory():
    """
    Build an AsyncClient on top of a MockTransport handler.

    Every request seen by the transport is appended to ``client.seen_requests``.
    """

    def make(handler) -> httpx.AsyncClient:
        seen = []

        async def recording_handler(request: httpx.Request):
            seen.append(request)
            result = handler(request)
            if hasattr(result, "__await__"):
                result = await result
            return result

        client = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
        client.seen_requests = seen
        return client

    return make


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "streaming: mark test as streaming test")
    config.addinivalue_line("markers", "integration: mark test as integration test")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        if "streaming" in str(item.fspath):
            item.add_marker(pytest.mark.streaming)
        if "/api/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
