"""Error taxonomy for the PDF render service."""

from __future__ import annotations

# Lowercase fragments of messages raised when the transport to the browser
# process is gone. The last three are Playwright's wording for the same event.
CONNECTION_ERROR_MARKERS: tuple[str, ...] = (
    "connection closed",
    "protocol error",
    "session closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "browser closed",
)

# Protocol errors caused by the request itself; the connection is still fine
REQUEST_ERROR_MARKERS: tuple[str, ...] = (
    "cannot navigate to invalid url",
)


class ValidationError(Exception):
    """The inbound request cannot be turned into a render (HTTP 400)."""


class RenderFailure(Exception):
    """Base class for every failure raised while rendering."""


class LaunchError(RenderFailure):
    """The browser process could not be started."""


class PageError(RenderFailure):
    """A page level operation failed on an otherwise valid handle."""


class ContentLoadTimeout(RenderFailure):
    """HTML content or URL navigation did not become ready in time."""


class SelectorTimeout(RenderFailure):
    """The awaited selector did not appear in time."""


class RenderError(RenderFailure):
    """Rasterizing the page to PDF failed."""


class CleanupError(RenderFailure):
    """Closing a page or browser failed. Logged only, never propagated."""


def first_line(error: BaseException | str) -> str:
    """
    Return the first non-empty line of an error message.

    Playwright appends call logs after the first line; those never reach callers.
    """
    text = str(error)
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return type(error).__name__ if isinstance(error, BaseException) else ""


def is_connection_error(error: BaseException) -> bool:
    """Check whether an error means the connection to the browser was lost."""
    message = str(error).lower()
    if any(marker in message for marker in REQUEST_ERROR_MARKERS):
        return False
    return any(marker in message for marker in CONNECTION_ERROR_MARKERS)
