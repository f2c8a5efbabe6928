"""
Response Relay Module

Drives one Gemini completion from request assembly to the last delivery,
in either single-shot or streaming mode.

Single-shot:  BUILT -> SENT -> BUFFERED -> COMPLETE | FAILED
Streaming:    BUILT -> SENT -> STREAMING -> COMPLETE | FAILED

Every failure leaves this module as a RelayError. The relay never retries;
retry policy belongs to the caller.
"""

import asyncio
import json
import time
from typing import Callable, Optional, Sequence

import httpx

from ...core.config_manager import RelaySettings
from ...core.error_handling import ErrorHandler, ErrorContext
from ...core.exceptions import RelayError
from ...core.logging import logger
from ...providers.chunk_parser import parse_stream_fragment, strip_data_prefix
from ...providers.endpoint_resolver import EndpointResolver, ProviderEndpoint
from ...providers.gemini import GeminiProvider, extract_candidate_text
from ...providers.gemini_payload import PayloadError, build_gemini_payload
from .consumer import SSE_HEADERS, Flushable, StreamConsumer
from .labels import TITLE_INSTRUCTION, clean_label
from .models import Answer, ChatAttachment, ConversationTurn, RelayState

PayloadBuilder = Callable[[Sequence[ConversationTurn], Optional[Sequence[ChatAttachment]]], bytes]


class ResponseRelay:
    """
    Relays a Gemini completion to its caller.

    One instance may serve many concurrent requests: the only mutable state
    of an invocation is its own Answer.

    Attributes:
        settings (RelaySettings): timeouts, line cap, credential
        resolver (EndpointResolver): URL selection and credential injection
        provider (GeminiProvider): HTTP exchange with Gemini
        payload_builder: turns conversation turns into a request body
    """

    def __init__(self, settings: RelaySettings, client: httpx.AsyncClient,
                 payload_builder: PayloadBuilder = build_gemini_payload):
        self.settings = settings
        self.resolver = EndpointResolver(settings.api_key, settings.base_url)
        self.provider = GeminiProvider(client)
        self.payload_builder = payload_builder

    # ---- single-shot ----

    async def run_single_shot(self, model: str, messages: Sequence[ConversationTurn],
                              attachments: Optional[Sequence[ChatAttachment]] = None,
                              answer_id: str = "", timeout: Optional[float] = None,
                              context: Optional[ErrorContext] = None) -> Answer:
        """
        Wait for the full answer.

        Args:
            model: Gemini model identifier
            messages: Conversation to complete
            attachments: Files sent inline with the first user turn
            answer_id: Identity assigned by the caller, copied to the Answer
            timeout: Ceiling for the whole exchange, defaults to generation_timeout
            context: Error context for logging

        Raises:
            RelayError: any classified failure, including EMPTY_ANSWER
        """
        context = context or ErrorContext(model_id=model, answer_id=answer_id or None)
        timeout = timeout or self.settings.generation_timeout
        start_time = time.time()

        try:
            endpoint, body = self._build_request(model, messages, attachments, stream=False, context=context)
            self._transition(RelayState.SENT, context)
            try:
                envelope = await asyncio.wait_for(
                    self.provider.generate_content(endpoint, body, timeout, context),
                    timeout=timeout
                )
            except asyncio.TimeoutError as e:
                raise ErrorHandler.handle_transport_error(e, context) from e
            self._transition(RelayState.BUFFERED, context)

            text = extract_candidate_text(envelope)
            if text is None or not text.strip():
                raise ErrorHandler.handle_empty_answer(
                    context, debug_detail=json.dumps(envelope, ensure_ascii=False)[:2000]
                )
        except RelayError:
            self._transition(RelayState.FAILED, context)
            raise

        self._transition(RelayState.COMPLETE, context)
        logger.performance("Gemini single-shot", start_time, request_id=context.request_id or "unknown",
                           model_id=model, answer_length=len(text))
        return Answer(id=answer_id, text=text)

    # ---- streaming ----

    async def run_streaming(self, consumer: StreamConsumer, model: str,
                            messages: Sequence[ConversationTurn],
                            attachments: Optional[Sequence[ChatAttachment]] = None,
                            answer_id: str = "", partial_on_error: bool = False,
                            context: Optional[ErrorContext] = None) -> Answer:
        """
        Forward the growing answer to ``consumer`` as server-sent events.

        Every significant line produces one ``data: <json>\\n\\n`` delivery
        followed by a flush. The stream ends successfully on end-of-input or
        when the line cap is reached (``Answer.truncated``).

        Args:
            consumer: Write target; must also be Flushable
            partial_on_error: Attach the accumulated Answer to a raised error

        Raises:
            RelayError: any classified failure; with ``partial_on_error`` the
                accumulated answer is in ``error.partial_answer``
        """
        context = context or ErrorContext(model_id=model, answer_id=answer_id or None)
        answer = Answer(id=answer_id)
        start_time = time.time()

        try:
            self.resolver.ensure_configured(context)
            # Проверка возможности flush выполняется один раз, до запроса
            if not isinstance(consumer, StreamConsumer) or not isinstance(consumer, Flushable):
                raise ErrorHandler.handle_stream_unsupported(context, consumer)
            endpoint, body = self._build_request(model, messages, attachments, stream=True, context=context)
            try:
                await asyncio.wait_for(
                    self._relay_stream(consumer, endpoint, body, answer, context),
                    timeout=self.settings.generation_timeout
                )
            except asyncio.TimeoutError as e:
                raise ErrorHandler.handle_transport_error(e, context) from e
        except RelayError as error:
            self._transition(RelayState.FAILED, context)
            if partial_on_error:
                error.partial_answer = Answer(id=answer.id, text=answer.text, truncated=answer.truncated)
            raise

        self._transition(RelayState.COMPLETE, context)
        logger.info("Stream completed", request_id=context.request_id or "unknown", model_id=model,
                    answer_id=answer.id, content_length=len(answer.text), truncated=answer.truncated,
                    duration_ms=int((time.time() - start_time) * 1000))
        return answer

    async def _relay_stream(self, consumer: StreamConsumer, endpoint: ProviderEndpoint, body: bytes,
                            answer: Answer, context: ErrorContext):
        max_lines = self.settings.max_stream_lines

        async with self.provider.open_stream(endpoint, body, self.settings.generation_timeout, context) as response:
            self._transition(RelayState.SENT, context)
            try:
                consumer.set_headers(SSE_HEADERS)
            except Exception as e:
                raise ErrorHandler.handle_consumer_write_failure(e, context) from e
            self._transition(RelayState.STREAMING, context)

            lines_read = 0
            async for line in response.aiter_lines():
                lines_read += 1

                payload = strip_data_prefix(line)
                if payload:
                    answer.text = parse_stream_fragment(payload, answer.text)
                    await self._forward(consumer, answer, context)

                # Cap checked after the line is handled: never pull more than max_lines
                if lines_read >= max_lines:
                    answer.truncated = True
                    logger.warning(f"Stream line cap reached ({max_lines}), ending stream",
                                   request_id=context.request_id or "unknown", answer_id=answer.id)
                    break

    async def _forward(self, consumer, answer: Answer, context: ErrorContext):
        data = f"data: {json.dumps(answer.to_chunk(), ensure_ascii=False)}\n\n".encode("utf-8")
        try:
            await consumer.write(data)
            await consumer.flush()
        except Exception as e:
            # Клиент отключился: дальше из Gemini не читаем
            raise ErrorHandler.handle_consumer_write_failure(e, context) from e

    # ---- short label ----

    async def generate_short_label(self, model: str, transcript_text: str,
                                   context: Optional[ErrorContext] = None) -> str:
        """
        Derive a short title for a conversation transcript.

        Raises:
            RelayError: CONFIGURATION, VALIDATION_INVALID_INPUT (blank
                transcript, checked before any network call), EMPTY_ANSWER
                (nothing usable after cleanup) or any single-shot failure
        """
        context = context or ErrorContext(model_id=model)
        self.resolver.ensure_configured(context)
        if not transcript_text or not transcript_text.strip():
            raise ErrorHandler.handle_invalid_input("chat text cannot be empty", context)

        messages = [
            ConversationTurn(role="user", content=TITLE_INSTRUCTION),
            ConversationTurn(role="user", content=transcript_text),
        ]
        answer = await self.run_single_shot(model, messages, timeout=self.settings.title_timeout, context=context)

        label = clean_label(answer.text, self.settings.title_max_length)
        if not label:
            raise ErrorHandler.handle_empty_answer(context, debug_detail=f"unusable title: {answer.text!r}")
        return label

    # ---- helpers ----

    def _build_request(self, model: str, messages: Sequence[ConversationTurn],
                       attachments: Optional[Sequence[ChatAttachment]], stream: bool,
                       context: ErrorContext):
        self.resolver.ensure_configured(context)
        if not messages:
            raise ErrorHandler.handle_invalid_input("messages cannot be empty", context)
        try:
            body = self.payload_builder(messages, attachments)
        except PayloadError as e:
            raise ErrorHandler.handle_invalid_input(str(e), context, e) from e
        endpoint = self.resolver.resolve(model, stream=stream, context=context)
        self._transition(RelayState.BUILT, context)
        return endpoint, body

    def _transition(self, state: RelayState, context: ErrorContext):
        logger.debug(f"Relay state -> {state.value}", request_id=context.request_id or "unknown",
                     relay_state=state.value)
