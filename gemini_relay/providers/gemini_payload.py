"""
Построение тела запроса к Gemini из истории диалога
"""
import base64
import json
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    # Только для аннотаций: services.relay сам импортирует этот модуль
    from ..services.relay.models import ChatAttachment, ConversationTurn


class PayloadError(ValueError):
    """The conversation cannot be turned into a Gemini request body."""


def _gemini_role(role: str) -> Optional[str]:
    role = (role or "").lower()
    if role == "user":
        return "user"
    if role in ("model", "assistant"):
        return "model"
    if role == "system":
        return None
    raise PayloadError(f"unsupported role: {role!r}")


def _attachment_part(attachment: "ChatAttachment") -> Dict[str, Any]:
    return {
        "inline_data": {
            "mime_type": attachment.mime_type or "application/octet-stream",
            "data": base64.b64encode(attachment.data).decode("ascii")
        }
    }


def build_gemini_contents(
    messages: Sequence["ConversationTurn"],
    attachments: Optional[Sequence["ChatAttachment"]] = None
) -> Dict[str, Any]:
    """
    Build the Gemini request dictionary.

    System turns are joined into ``system_instruction``; attachments are
    prepended to the first user turn as inline data parts.

    Raises:
        PayloadError: no turn carries text, or a role is unknown
    """
    contents: List[Dict[str, Any]] = []
    system_parts: List[Dict[str, str]] = []

    for turn in messages:
        role = _gemini_role(turn.role)
        if not turn.content or not turn.content.strip():
            continue
        if role is None:
            system_parts.append({"text": turn.content})
            continue
        contents.append({"role": role, "parts": [{"text": turn.content}]})

    if not contents:
        raise PayloadError("conversation has no user or model content")

    if attachments:
        first_user = next((c for c in contents if c["role"] == "user"), contents[0])
        first_user["parts"] = [_attachment_part(a) for a in attachments] + first_user["parts"]

    payload: Dict[str, Any] = {"contents": contents}
    if system_parts:
        payload["system_instruction"] = {"parts": system_parts}
    return payload


def build_gemini_payload(
    messages: Sequence["ConversationTurn"],
    attachments: Optional[Sequence["ChatAttachment"]] = None
) -> bytes:
    """Serialized request body for generateContent / streamGenerateContent."""
    return json.dumps(build_gemini_contents(messages, attachments), ensure_ascii=False).encode("utf-8")
