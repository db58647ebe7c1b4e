"""Utilities for input sanitization in the PDF render service."""

import re
import time
from urllib.parse import urlparse

UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.\- ]")
WHITESPACE_RUN = re.compile(r"\s+")


def sanitize_for_logging(text: str, max_length: int = 1000) -> str:
    """Sanitize text for safe logging by:
    - Converting non-string input to string
    - Removing all control characters
    - Replacing newlines with spaces
    - Truncating to `max_length` and appending '...[truncated]' if necessary

    Args:
        text (str): The input text to sanitize.
        max_length (int, optional): Maximum allowed length of the sanitized text. Defaults to 1000.

    Returns:
        str: The sanitized text safe for logging.

    """
    if not isinstance(text, str):
        text = str(text)

    # Newlines become spaces before the remaining control characters are dropped
    text = text.replace("\n", " ").replace("\r", " ")
    text = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", text)

    if len(text) > max_length:
        text = text[:max_length] + "...[truncated]"

    return text


def sanitize_url_for_logging(url: str | None) -> str:
    """Sanitize URL for safe logging by removing query parameters and credentials.

    Args:
        url: The URL to sanitize. If None, returns 'None'.

    Returns:
        str: Sanitized URL with query parameters and credentials removed.

    """
    if url is None:
        return "None"

    try:
        parsed = urlparse(url)
        safe_url = f"{parsed.scheme}://{parsed.hostname or ''}"
        if parsed.port:
            safe_url += f":{parsed.port}"
        safe_url += parsed.path or "/"
        return sanitize_for_logging(safe_url, max_length=200)
    except Exception:
        # Fallback to generic sanitization if URL parsing fails
        return sanitize_for_logging(url, max_length=200)


def default_filename() -> str:
    """Synthesize ``document-<unix millis>.pdf``."""
    return f"document-{int(time.time() * 1000)}.pdf"


def sanitize_filename(filename: str | None) -> str:
    """Turn a caller supplied name into a safe Content-Disposition filename.

    Characters outside ``[A-Za-z0-9_.- ]`` are dropped, whitespace runs become a
    single hyphen, the result is lowercased and ``.pdf`` is appended if missing.
    ``"My Report #1.pdf"`` becomes ``"my-report-1.pdf"``.

    Args:
        filename: Requested filename, or None.

    Returns:
        str: The sanitized filename, or ``document-<unix millis>.pdf`` when no
        usable name was given.

    """
    if not filename:
        return default_filename()

    safe_name = UNSAFE_FILENAME_CHARS.sub("", filename)
    safe_name = WHITESPACE_RUN.sub("-", safe_name).lower()

    # Nothing usable left (e.g. "###" or ".pdf")
    if not safe_name.strip("-.") or safe_name == ".pdf":
        return default_filename()

    return safe_name if safe_name.endswith(".pdf") else f"{safe_name}.pdf"
