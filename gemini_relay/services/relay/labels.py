"""
Post-processing of generated short labels (chat titles)
"""

TITLE_INSTRUCTION = (
    "Generate a concise and descriptive title (max 10 words) for this chat conversation, "
    "no special characters."
)

# Opening mark -> closing mark
QUOTE_MARKS = {
    '"': '"',
    "'": "'",
    "“": "”",
    "«": "»",
}
EMPHASIS_MARKS = {
    "_": "_",
    "`": "`",
}

# Two-character emphasis counts as a single layer
DOUBLE_MARKS = ("**", "__")


def _strip_pair(text: str, marks) -> str:
    if len(text) >= 2 and text[0] in marks and text[-1] == marks[text[0]]:
        return text[1:-1].strip()
    return text


def _strip_quotes(text: str) -> str:
    # Straight double quotes are trimmed even when unbalanced or repeated
    if text.startswith('"') or text.endswith('"'):
        return text.strip('"').strip()
    return _strip_pair(text, QUOTE_MARKS)


def _strip_emphasis(text: str) -> str:
    if text.startswith("*") or text.endswith("*"):
        return text.strip("*").strip()
    for mark in DOUBLE_MARKS:
        if len(text) > 2 * len(mark) and text.startswith(mark) and text.endswith(mark):
            return text[len(mark):-len(mark)].strip()
    return _strip_pair(text, EMPHASIS_MARKS)


def strip_enclosing(text: str) -> str:
    """
    Remove surrounding whitespace, then the quote layer, then the emphasis
    layer, e.g. ``"**Title**"`` -> ``Title``.

    Stray ``"`` and ``*`` at either end are dropped as well; other marks
    only come off as a matched pair.
    """
    return _strip_emphasis(_strip_quotes(text.strip()))


def clean_label(text: str, max_length: int) -> str:
    """
    Normalize a generated label.

    Returns '' when nothing usable is left; the caller decides whether that
    is an error. Truncation counts raw characters and ignores word boundaries.
    """
    label = strip_enclosing(text or "")
    if not label:
        return ""
    return label[:max_length]
