"""
Chat Service Module

Coordinates chat requests coming from the HTTP layer:
- request body validation and conversion into relay types
- answer id allocation (fresh id, or the existing one on regenerate)
- running the Response Relay in single-shot or streaming mode
- turning relay results and RelayErrors into FastAPI responses

The relay itself knows nothing about FastAPI; this service is the only
place where the two meet.
"""

import asyncio
import base64
import binascii
import json
import uuid
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, StreamingResponse

from ..core.config_manager import ConfigManager
from ..core.error_handling import ErrorHandler, ErrorContext
from ..core.exceptions import RelayError
from ..core.logging import logger
from .relay import ChatAttachment, ConversationTurn, ResponseRelay, SSEQueueConsumer


def parse_messages(raw: Any) -> List[ConversationTurn]:
    """
    Convert ``[{"role", "content"}]`` into conversation turns.

    Content given as a list of parts keeps only the text parts.

    Raises:
        ValueError: malformed message list
    """
    if not isinstance(raw, list) or not raw:
        raise ValueError("messages must be a non-empty list")

    turns = []
    for index, message in enumerate(raw):
        if not isinstance(message, dict):
            raise ValueError(f"messages[{index}] must be an object")
        role = message.get("role")
        content = message.get("content", "")
        if not isinstance(role, str) or not role:
            raise ValueError(f"messages[{index}].role is required")
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") for part in content
                if isinstance(part, dict) and part.get("type", "text") == "text"
            )
        if not isinstance(content, str):
            raise ValueError(f"messages[{index}].content must be a string")
        turns.append(ConversationTurn(role=role, content=content))
    return turns


def parse_attachments(raw: Any) -> List[ChatAttachment]:
    """
    Convert ``[{"name", "mime_type", "data"}]`` (base64 data) into attachments.

    Raises:
        ValueError: malformed attachment or invalid base64
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("attachments must be a list")

    attachments = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict) or not isinstance(item.get("data"), str):
            raise ValueError(f"attachments[{index}].data must be a base64 string")
        try:
            data = base64.b64decode(item["data"], validate=True)
        except binascii.Error as e:
            raise ValueError(f"attachments[{index}].data is not valid base64") from e
        attachments.append(ChatAttachment(
            name=str(item.get("name") or f"attachment-{index}"),
            mime_type=str(item.get("mime_type") or "application/octet-stream"),
            data=data
        ))
    return attachments


def allocate_answer_id(chat_uuid: Optional[str], regenerate: bool) -> str:
    """Reuse the chat id when regenerating an answer, otherwise issue a new one."""
    if regenerate:
        if not chat_uuid or not str(chat_uuid).strip():
            raise ValueError("chat_uuid is required when regenerate is true")
        return str(chat_uuid).strip()
    return str(uuid.uuid4())


class ChatService:
    """
    Main service for chat completion and chat title requests.

    Attributes:
        config_manager (ConfigManager): source of RelaySettings; settings are
            read per request so a reloaded relay.yaml takes effect
        httpx_client (httpx.AsyncClient): shared client for Gemini requests
    """

    def __init__(self, config_manager: ConfigManager, httpx_client: httpx.AsyncClient):
        self.config_manager = config_manager
        self.httpx_client = httpx_client

    def _relay(self) -> ResponseRelay:
        return ResponseRelay(self.config_manager.get_settings(), self.httpx_client)

    async def chat_completions(self, request: Request) -> Any:
        """
        Handle ``POST /v1/chat/completions``.

        Returns:
            StreamingResponse: for ``"stream": true``, SSE with one chunk per
                partial delivery
            JSONResponse: otherwise, the chunk-shaped full answer

        Raises:
            HTTPException: any RelayError raised before the first streamed byte
        """
        request_id = getattr(request.state, "request_id", "unknown")
        context = ErrorContext(request_id=request_id, endpoint_path="/v1/chat/completions")

        try:
            request_body = await self._read_json(request, context)
            relay = self._relay()
            model = self._requested_model(request_body, relay, context)
            context.model_id = model

            try:
                messages = parse_messages(request_body.get("messages"))
                attachments = parse_attachments(request_body.get("attachments"))
                answer_id = allocate_answer_id(request_body.get("chat_uuid"), bool(request_body.get("regenerate")))
            except ValueError as e:
                raise ErrorHandler.handle_invalid_input(str(e), context, e) from e
            context.answer_id = answer_id

            stream = bool(request_body.get("stream"))
            with logger.request_context(
                operation="Chat Completion",
                request_id=request_id,
                model_id=model,
                answer_id=answer_id,
                stream=stream,
                message_count=len(messages),
                attachment_count=len(attachments)
            ):
                if stream:
                    return await self._stream_response(relay, model, messages, attachments, answer_id, context)
                answer = await relay.run_single_shot(model, messages, attachments, answer_id=answer_id, context=context)
            return JSONResponse(content=answer.to_chunk())

        except RelayError as e:
            raise ErrorHandler.to_http_exception(e) from e

    async def create_title(self, request: Request) -> Dict[str, str]:
        """Handle ``POST /v1/chat/title``: ``{"model", "transcript"}`` -> ``{"title"}``."""
        request_id = getattr(request.state, "request_id", "unknown")
        context = ErrorContext(request_id=request_id, endpoint_path="/v1/chat/title")

        try:
            request_body = await self._read_json(request, context)
            relay = self._relay()
            model = self._requested_model(request_body, relay, context)
            context.model_id = model

            transcript = request_body.get("transcript", "")
            if not isinstance(transcript, str):
                raise ErrorHandler.handle_invalid_input("transcript must be a string", context)

            title = await relay.generate_short_label(model, transcript, context=context)
        except RelayError as e:
            raise ErrorHandler.to_http_exception(e) from e

        logger.info("Chat title generated", request_id=request_id, model_id=model, title_length=len(title))
        return {"title": title}

    async def _stream_response(self, relay: ResponseRelay, model: str, messages: List[ConversationTurn],
                               attachments: List[ChatAttachment], answer_id: str,
                               context: ErrorContext) -> StreamingResponse:
        consumer = SSEQueueConsumer(max_pending=relay.settings.stream_queue_size)

        async def run():
            try:
                return await relay.run_streaming(
                    consumer, model, messages, attachments, answer_id=answer_id, context=context
                )
            finally:
                await consumer.close()

        relay_task = asyncio.create_task(run())
        headers_task = asyncio.create_task(consumer.headers_ready.wait())
        await asyncio.wait({relay_task, headers_task}, return_when=asyncio.FIRST_COMPLETED)
        headers_task.cancel()

        if not consumer.headers_ready.is_set():
            # Ошибка до первого байта: отдаём обычный HTTP-ответ с ошибкой
            error = relay_task.exception()
            if error is not None:
                raise ErrorHandler.classify_exception(error, context) from error
            raise ErrorHandler.handle_consumer_write_failure(
                RuntimeError("stream ended before headers were set"), context
            )

        relay_task.add_done_callback(lambda task: self._log_stream_outcome(task, context))
        logger.debug_data(
            title="Streaming Response Started",
            data={"model": model, "answer_id": answer_id},
            request_id=context.request_id or "unknown",
            component="chat_service",
            data_flow="to_client"
        )
        return StreamingResponse(
            consumer.iter_events(),
            headers=dict(consumer.headers),
            media_type="text/event-stream"
        )

    @staticmethod
    def _log_stream_outcome(task: asyncio.Task, context: ErrorContext):
        if task.cancelled():
            logger.warning("Stream task cancelled", request_id=context.request_id or "unknown")
            return
        error = task.exception()
        if error is not None:
            # Заголовки уже отправлены, клиент видит оборванный стрим
            classified = ErrorHandler.classify_exception(error, context)
            logger.warning(f"Stream ended with error after first byte: {classified.code}",
                           request_id=context.request_id or "unknown", answer_id=context.answer_id)

    @staticmethod
    def _requested_model(request_body: Dict[str, Any], relay: ResponseRelay, context: ErrorContext) -> str:
        model = request_body.get("model")
        if model is None or model == "":
            return relay.settings.default_model
        if not isinstance(model, str):
            raise ErrorHandler.handle_invalid_input("model must be a string", context)
        return model

    @staticmethod
    async def _read_json(request: Request, context: ErrorContext) -> Dict[str, Any]:
        try:
            request_body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ErrorHandler.handle_invalid_input("request body is not valid JSON", context, e) from e
        if not isinstance(request_body, dict):
            raise ErrorHandler.handle_invalid_input("request body must be a JSON object", context)

        logger.debug_data(
            title="Chat Request JSON",
            data=_redact_attachment_data(request_body),
            request_id=context.request_id or "unknown",
            component="chat_service",
            data_flow="incoming"
        )
        return request_body


def _redact_attachment_data(request_body: Dict[str, Any]) -> Dict[str, Any]:
    attachments = request_body.get("attachments")
    if not isinstance(attachments, list):
        return request_body
    redacted = []
    for item in attachments:
        if isinstance(item, dict) and isinstance(item.get("data"), str):
            item = {**item, "data": f"<{len(item['data'])} base64 chars>"}
        redacted.append(item)
    return {**request_body, "attachments": redacted}
