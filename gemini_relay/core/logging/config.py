"""
Logging configuration and setup for the Gemini relay.

Plain text formatting with Unicode escape decoding, console output plus
file handlers under LOG_DIR. Credentials that leak into a formatted line
are masked before the record is written.
"""

import logging
import os
import json
import re


# Query-string and header style credentials (`key=...`, `x-goog-api-key: ...`)
SECRET_PATTERN = re.compile(r'(?i)((?:[?&]key=)|(?:x-goog-api-key["\']?\s*[:=]\s*["\']?))([^&\s"\',}]+)')


def mask_secrets(text: str) -> str:
    """Replace credential values in ``text`` with ``***``."""
    if not text:
        return text
    return SECRET_PATTERN.sub(lambda m: f"{m.group(1)}***", text)


class UnicodeFormatter(logging.Formatter):
    """
    Formatter that decodes Unicode escape sequences and masks credentials.
    """

    def __init__(self, fmt=None, datefmt=None):
        super().__init__(fmt, datefmt)
        self.unicode_pattern = re.compile(r'\\u([0-9a-fA-F]{4})')

    def _decode_unicode_escapes(self, text):
        """
        Decode Unicode escape sequences in the given text.

        Args:
            text (str): Text that may contain Unicode escape sequences

        Returns:
            str: Text with Unicode escape sequences decoded to actual characters
        """
        if not text:
            return text

        # Gemini error bodies are JSON with escaped non-ASCII text
        try:
            if '"error":' in text and '\\u' in text:
                decoded = json.loads(text)
                if isinstance(decoded, dict):
                    return json.dumps(decoded, ensure_ascii=False)
        except (json.JSONDecodeError, ValueError):
            pass

        def replace_unicode(match):
            hex_code = match.group(1)
            try:
                return chr(int(hex_code, 16))
            except ValueError:
                return match.group(0)

        return self.unicode_pattern.sub(replace_unicode, text)

    def format(self, record):
        formatted = super().format(record)
        formatted = self._decode_unicode_escapes(formatted)
        return mask_secrets(formatted)


def setup_logging():
    """
    Единая настройка логирования для всего проекта.

    Returns:
        logging.Logger: Configured logger instance
    """
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    if not isinstance(getattr(logging, log_level, None), int):
        log_level = "INFO"

    logger = logging.getLogger("gemini-relay")
    logger.setLevel(getattr(logging, log_level))

    # Повторный вызов не должен дублировать обработчики
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    log_dir = os.environ.get("LOG_DIR", "logs")
    os.makedirs(log_dir, exist_ok=True)

    formatter = UnicodeFormatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z"
    )

    file_handler = logging.FileHandler(os.path.join(log_dir, "app.log"))
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.INFO)
    logger.addHandler(file_handler)

    if log_level == "DEBUG":
        debug_handler = logging.FileHandler(os.path.join(log_dir, "debug.log"))
        debug_handler.setFormatter(formatter)
        debug_handler.setLevel(logging.DEBUG)
        logger.addHandler(debug_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.DEBUG if log_level == "DEBUG" else logging.INFO)
    logger.addHandler(console_handler)

    return logger
