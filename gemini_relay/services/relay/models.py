from dataclasses import dataclass, field
from enum import Enum
from typing import Literal


Role = Literal["user", "model", "system", "assistant"]


@dataclass(frozen=True)
class ConversationTurn:
    """
    Один ход диалога

    Attributes:
        role: 'user', 'model' or 'system' ('assistant' is treated as 'model')
        content: Text of the turn
    """
    role: Role
    content: str


@dataclass(frozen=True)
class ChatAttachment:
    """File content attached to a conversation, sent inline to Gemini."""
    name: str
    mime_type: str
    data: bytes = field(repr=False)


@dataclass
class Answer:
    """
    Evolving result of one completion request.

    Attributes:
        id: Correlates every partial and final delivery of one answer
        text: Accumulated text, only ever grows during a request
        truncated: True when the stream was cut by the line cap
    """
    id: str = ""
    text: str = ""
    truncated: bool = False

    def to_chunk(self) -> dict:
        """Wire shape of a partial (or final) delivery."""
        return {
            "id": self.id,
            "object": "chat.completion.chunk",
            "choices": [
                {
                    "index": 0,
                    "delta": {"content": self.text},
                    "finish_reason": None
                }
            ]
        }


class RelayState(str, Enum):
    """Lifecycle states of one relay invocation."""
    BUILT = "built"
    SENT = "sent"
    STREAMING = "streaming"
    BUFFERED = "buffered"
    COMPLETE = "complete"
    FAILED = "failed"


