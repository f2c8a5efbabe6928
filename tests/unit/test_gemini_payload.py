import base64
import json

import pytest

from gemini_relay.providers.gemini_payload import PayloadError, build_gemini_contents, build_gemini_payload
from gemini_relay.services.relay.models import ChatAttachment, ConversationTurn


class TestGeminiPayload:
    """Построение тела запроса"""

    def test_roles_are_mapped(self):
        payload = build_gemini_contents([
            ConversationTurn("user", "Hi"),
            ConversationTurn("assistant", "Hello!"),
            ConversationTurn("user", "How are you?"),
        ])
        assert [c["role"] for c in payload["contents"]] == ["user", "model", "user"]
        assert payload["contents"][1]["parts"] == [{"text": "Hello!"}]
        assert "system_instruction" not in payload

    def test_system_turns_become_system_instruction(self):
        payload = build_gemini_contents([
            ConversationTurn("system", "Be brief."),
            ConversationTurn("user", "Hi"),
        ])
        assert payload["system_instruction"] == {"parts": [{"text": "Be brief."}]}
        assert len(payload["contents"]) == 1

    def test_blank_turns_are_skipped(self):
        payload = build_gemini_contents([
            ConversationTurn("user", "  "),
            ConversationTurn("user", "Hi"),
        ])
        assert len(payload["contents"]) == 1

    def test_attachments_prepend_to_first_user_turn(self):
        attachment = ChatAttachment(name="notes.txt", mime_type="text/plain", data=b"hello")
        payload = build_gemini_contents(
            [ConversationTurn("model", "Send a file"), ConversationTurn("user", "Summarize")],
            [attachment]
        )
        user_parts = payload["contents"][1]["parts"]
        assert user_parts[0] == {
            "inline_data": {"mime_type": "text/plain", "data": base64.b64encode(b"hello").decode("ascii")}
        }
        assert user_parts[1] == {"text": "Summarize"}

    def test_no_content_raises(self):
        with pytest.raises(PayloadError):
            build_gemini_contents([ConversationTurn("system", "only system")])

    def test_unknown_role_raises(self):
        with pytest.raises(PayloadError):
            build_gemini_contents([ConversationTurn("tool", "x")])

    def test_payload_is_utf8_json(self):
        body = build_gemini_payload([ConversationTurn("user", "Привет 🤖")])
        assert isinstance(body, bytes)
        assert json.loads(body.decode("utf-8"))["contents"][0]["parts"][0]["text"] == "Привет 🤖"
