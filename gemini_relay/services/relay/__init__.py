from .models import Answer, ChatAttachment, ConversationTurn, RelayState
from .consumer import SSE_HEADERS, StreamConsumer, Flushable, SSEQueueConsumer
from .labels import clean_label, strip_enclosing
from .response_relay import ResponseRelay

__all__ = [
    'Answer',
    'ChatAttachment',
    'ConversationTurn',
    'RelayState',
    'SSE_HEADERS',
    'StreamConsumer',
    'Flushable',
    'SSEQueueConsumer',
    'clean_label',
    'strip_enclosing',
    'ResponseRelay',
]
