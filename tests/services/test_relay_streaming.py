"""
Тесты для стримингового режима ResponseRelay
"""
import asyncio
import json
from dataclasses import replace

import httpx
import pytest

from gemini_relay.core.error_handling import ErrorType
from gemini_relay.core.exceptions import RelayError
from gemini_relay.services.relay import SSE_HEADERS, ConversationTurn, ResponseRelay


MESSAGES = [ConversationTurn(role="user", content="Count to three")]
SSE_RESPONSE_HEADERS = {"content-type": "text/event-stream"}


def data_line(text: str) -> bytes:
    envelope = {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}
    return f"data: {json.dumps(envelope)}\n\n".encode("utf-8")


class TestRunStreaming:
    """Пошаговая доставка растущего ответа"""

    @pytest.mark.asyncio
    async def test_one_delivery_per_fragment(self, settings, mock_client_factory, sse_body, recording_consumer, api_key):
        body = sse_body("One", ", two", ", three")
        client = mock_client_factory(lambda request: httpx.Response(200, content=body, headers=SSE_RESPONSE_HEADERS))
        relay = ResponseRelay(settings, client)

        answer = await relay.run_streaming(recording_consumer, "gemini-2.0-flash", MESSAGES, answer_id="ans-1")

        assert answer.text == "One, two, three"
        assert answer.id == "ans-1"
        assert answer.truncated is False

        chunks = recording_consumer.chunks()
        assert [c["choices"][0]["delta"]["content"] for c in chunks] == ["One", "One, two", "One, two, three"]
        assert all(c["id"] == "ans-1" for c in chunks)
        assert all(c["object"] == "chat.completion.chunk" for c in chunks)
        assert all(c["choices"][0]["finish_reason"] is None for c in chunks)
        assert recording_consumer.headers == SSE_HEADERS

        request = client.seen_requests[0]
        assert request.url.path == "/v1beta/models/gemini-2.0-flash:streamGenerateContent"
        assert request.url.params["alt"] == "sse"
        assert request.headers["x-goog-api-key"] == api_key
        assert "key" not in request.url.params

    @pytest.mark.asyncio
    async def test_delivered_text_never_shrinks(self, settings, mock_client_factory, recording_consumer):
        body = b"".join([data_line("a"), b"data: {broken\n\n", data_line(""), data_line("bc"), b"data: []\n\n"])
        client = mock_client_factory(lambda request: httpx.Response(200, content=body, headers=SSE_RESPONSE_HEADERS))

        answer = await ResponseRelay(settings, client).run_streaming(recording_consumer, "gemini-pro", MESSAGES)

        lengths = [len(c["choices"][0]["delta"]["content"]) for c in recording_consumer.chunks()]
        assert lengths == sorted(lengths)
        assert answer.text == "abc"
        # Битый фрагмент тоже доставляется, но текст не меняется
        assert len(recording_consumer.deliveries) == 5

    @pytest.mark.asyncio
    async def test_non_data_lines_are_skipped(self, settings, mock_client_factory, consumer_factory):
        plain = b"".join([data_line("x"), data_line("y")])
        noisy = b"".join([
            b": keep-alive\n", b"event: message\n", data_line("x"),
            b"id: 7\n", b"retry: 100\n", b"data: \n", data_line("y"), b"\n"
        ])

        results = []
        for body in (plain, noisy):
            consumer = consumer_factory()
            client = mock_client_factory(lambda request, body=body: httpx.Response(200, content=body, headers=SSE_RESPONSE_HEADERS))
            answer = await ResponseRelay(settings, client).run_streaming(consumer, "gemini-pro", MESSAGES, answer_id="same")
            results.append((answer.text, consumer.deliveries))

        assert results[0] == results[1]

    @pytest.mark.asyncio
    async def test_line_cap_ends_endless_stream(self, settings, mock_client_factory, recording_consumer):
        async def endless():
            while True:
                yield data_line("a")

        client = mock_client_factory(lambda request: httpx.Response(200, content=endless(), headers=SSE_RESPONSE_HEADERS))
        relay = ResponseRelay(replace(settings, max_stream_lines=20), client)

        answer = await asyncio.wait_for(relay.run_streaming(recording_consumer, "gemini-pro", MESSAGES), timeout=5)

        assert answer.truncated is True
        assert 0 < len(recording_consumer.deliveries) <= 20
        assert answer.text == "a" * len(recording_consumer.deliveries)

    @pytest.mark.asyncio
    async def test_line_cap_never_reads_past_cap(self, settings, mock_client_factory, recording_consumer):
        pulled = []

        async def one_line_per_chunk():
            while True:
                pulled.append(1)
                yield data_line("b").rstrip(b"\n") + b"\n"

        client = mock_client_factory(
            lambda request: httpx.Response(200, content=one_line_per_chunk(), headers=SSE_RESPONSE_HEADERS)
        )
        relay = ResponseRelay(replace(settings, max_stream_lines=5), client)

        answer = await asyncio.wait_for(relay.run_streaming(recording_consumer, "gemini-pro", MESSAGES), timeout=5)

        assert answer.truncated is True
        assert answer.text == "bbbbb"
        assert len(pulled) <= 5

    @pytest.mark.asyncio
    async def test_non_flushable_consumer(self, settings, mock_client_factory, write_only_consumer):
        client = mock_client_factory(lambda request: httpx.Response(200, content=data_line("x")))

        with pytest.raises(RelayError) as exc_info:
            await ResponseRelay(settings, client).run_streaming(write_only_consumer, "gemini-pro", MESSAGES)

        assert exc_info.value.kind is ErrorType.STREAM_UNSUPPORTED
        assert write_only_consumer.bytes_written == 0
        assert write_only_consumer.headers == {}
        assert client.seen_requests == []

    @pytest.mark.asyncio
    async def test_missing_credential(self, settings, mock_client_factory, recording_consumer):
        client = mock_client_factory(lambda request: httpx.Response(200, content=data_line("x")))

        with pytest.raises(RelayError) as exc_info:
            await ResponseRelay(replace(settings, api_key=""), client).run_streaming(recording_consumer, "gemini-pro", MESSAGES)

        assert exc_info.value.kind is ErrorType.CONFIGURATION
        assert client.seen_requests == []
        assert recording_consumer.deliveries == []

    @pytest.mark.asyncio
    async def test_provider_status_before_headers(self, settings, mock_client_factory, recording_consumer):
        client = mock_client_factory(lambda request: httpx.Response(400, json={"error": {"message": "API key not valid"}}))

        with pytest.raises(RelayError) as exc_info:
            await ResponseRelay(settings, client).run_streaming(recording_consumer, "gemini-pro", MESSAGES)

        assert exc_info.value.kind is ErrorType.PROVIDER_ERROR
        assert exc_info.value.provider_status_code == 400
        assert "API key not valid" in exc_info.value.debug_detail
        assert recording_consumer.headers == {}
        assert recording_consumer.deliveries == []

    @pytest.mark.asyncio
    async def test_consumer_disconnect_stops_reading(self, settings, mock_client_factory, consumer_factory):
        produced = 0

        async def endless():
            nonlocal produced
            while True:
                produced += 1
                yield data_line("a")

        client = mock_client_factory(lambda request: httpx.Response(200, content=endless(), headers=SSE_RESPONSE_HEADERS))
        consumer = consumer_factory(fail_on_delivery=3)

        with pytest.raises(RelayError) as exc_info:
            await asyncio.wait_for(
                ResponseRelay(settings, client).run_streaming(consumer, "gemini-pro", MESSAGES), timeout=5
            )

        assert exc_info.value.kind is ErrorType.CONSUMER_WRITE_FAILURE
        assert len(consumer.deliveries) == 2
        assert produced <= 4

    @pytest.mark.asyncio
    async def test_read_error_mid_stream_keeps_partial_answer(self, settings, mock_client_factory, recording_consumer):
        async def broken():
            yield data_line("Hel")
            yield data_line("lo")
            raise httpx.ReadError("connection reset")

        client = mock_client_factory(lambda request: httpx.Response(200, content=broken(), headers=SSE_RESPONSE_HEADERS))

        with pytest.raises(RelayError) as exc_info:
            await ResponseRelay(settings, client).run_streaming(
                recording_consumer, "gemini-pro", MESSAGES, answer_id="ans-7", partial_on_error=True
            )

        error = exc_info.value
        assert error.kind is ErrorType.TRANSPORT_FAILURE
        assert error.partial_answer.id == "ans-7"
        assert error.partial_answer.text == "Hello"
        assert len(recording_consumer.deliveries) == 2

    @pytest.mark.asyncio
    async def test_partial_answer_not_attached_by_default(self, settings, mock_client_factory, recording_consumer):
        async def broken():
            yield data_line("Hel")
            raise httpx.ReadError("connection reset")

        client = mock_client_factory(lambda request: httpx.Response(200, content=broken(), headers=SSE_RESPONSE_HEADERS))

        with pytest.raises(RelayError) as exc_info:
            await ResponseRelay(settings, client).run_streaming(recording_consumer, "gemini-pro", MESSAGES)
        assert exc_info.value.partial_answer is None

    @pytest.mark.asyncio
    async def test_stream_timeout(self, settings, mock_client_factory, recording_consumer):
        async def stalled():
            yield data_line("first")
            await asyncio.sleep(5)
            yield data_line("never")

        client = mock_client_factory(lambda request: httpx.Response(200, content=stalled(), headers=SSE_RESPONSE_HEADERS))
        relay = ResponseRelay(replace(settings, generation_timeout=0.2), client)

        with pytest.raises(RelayError) as exc_info:
            await relay.run_streaming(recording_consumer, "gemini-pro", MESSAGES, partial_on_error=True)

        assert exc_info.value.kind is ErrorType.TRANSPORT_FAILURE
        assert exc_info.value.partial_answer.text == "first"

    @pytest.mark.asyncio
    async def test_empty_stream_completes_with_empty_answer(self, settings, mock_client_factory, recording_consumer):
        client = mock_client_factory(lambda request: httpx.Response(200, content=b"", headers=SSE_RESPONSE_HEADERS))

        answer = await ResponseRelay(settings, client).run_streaming(recording_consumer, "gemini-pro", MESSAGES)

        assert answer.text == ""
        assert recording_consumer.deliveries == []
        assert recording_consumer.headers == SSE_HEADERS
