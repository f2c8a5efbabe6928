"""
Разбор одной строки стрима Gemini
"""
import json
from dataclasses import dataclass
from typing import Any, Optional, Union

SSE_DATA_PREFIX = "data: "


@dataclass(frozen=True)
class StreamFragment:
    """
    Decoded increment of provider output from one stream line

    Attributes:
        text: New text carried by the fragment ('' for an empty increment)
        is_valid: False when the line was not valid Gemini JSON
        error: Decode error description for invalid fragments
    """
    text: str = ""
    is_valid: bool = True
    error: Optional[str] = None

    @property
    def has_content(self) -> bool:
        return self.is_valid and bool(self.text)


def _candidate_text(envelope: Any) -> str:
    if not isinstance(envelope, dict):
        return ""
    candidates = envelope.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    first = candidates[0]
    if not isinstance(first, dict):
        return ""
    content = first.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    return "".join(
        part["text"] for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    )


def decode_fragment(raw: Union[bytes, str]) -> StreamFragment:
    """Decode the JSON payload of one ``data:`` line."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            return StreamFragment(is_valid=False, error=str(e))

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        return StreamFragment(is_valid=False, error=str(e))

    # Gemini may batch several envelopes into one JSON array
    if isinstance(data, list):
        return StreamFragment(text="".join(_candidate_text(item) for item in data))
    if not isinstance(data, dict):
        return StreamFragment(is_valid=False, error=f"unexpected JSON type {type(data).__name__}")
    return StreamFragment(text=_candidate_text(data))


def parse_stream_fragment(raw: Union[bytes, str], accumulated: str) -> str:
    """
    Fold one stream fragment into the accumulated answer.

    Pure function. A malformed fragment or an increment without text leaves
    ``accumulated`` unchanged, so one corrupt line never ends a stream.
    """
    fragment = decode_fragment(raw)
    if not fragment.is_valid:
        return accumulated
    if not fragment.has_content:
        return accumulated
    return accumulated + fragment.text


def strip_data_prefix(line: str) -> Optional[str]:
    """Payload of an SSE data line, or None if the line is not one."""
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    return line[len(SSE_DATA_PREFIX):]
