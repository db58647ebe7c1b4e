"""
Steps that turn one ContentSpec and one live BrowserHandle into PDF bytes.

Each step has its own deadline; there is no end-to-end deadline. Content is
considered ready at ``domcontentloaded`` rather than network idle: pages with
long-polling or analytics beacons never reach network idle, so late-loading
assets may be missing from the PDF in exchange for never hanging.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import ViewportSize

from app.errors import ContentLoadTimeout, PageError, RenderError, SelectorTimeout, first_line
from app.models import HtmlSource
from app.pdf_options import to_playwright_pdf_kwargs
from app.sanitization import sanitize_for_logging, sanitize_url_for_logging

if TYPE_CHECKING:
    from playwright.async_api import Page

    from app.browser_handle import BrowserHandle
    from app.models import ContentSpec, Viewport

logger = logging.getLogger(__name__)

PDF_SIGNATURE = b"%PDF"
READY_STATE = "domcontentloaded"


@dataclass(frozen=True)
class RenderTimeouts:
    """
    Per-step deadlines in seconds.

    Attributes:
        html_load: Injecting HTML until the DOM is parsed (default 15).
        url_load: Navigating to a URL until the DOM is parsed (default 30).
        selector: Waiting for ``wait_for_selector`` to match (default 10).
    """

    html_load: float = 15
    url_load: float = 30
    selector: float = 10


async def render_pdf(
    handle: BrowserHandle,
    spec: ContentSpec,
    timeouts: RenderTimeouts | None = None,
    log: logging.Logger | None = None,
) -> bytes:
    """
    Render one ContentSpec to PDF bytes on the given browser handle.

    The page opened here is always closed before returning, whichever step failed.

    Raises:
        PageError: Opening the page, setting the viewport or loading content failed.
        ContentLoadTimeout: HTML or URL did not reach the ready state in time.
        SelectorTimeout: ``wait_for_selector`` did not match in time.
        RenderError: Rasterizing to PDF failed.
    """
    timeouts = timeouts or RenderTimeouts()
    log = log or logger

    page = await handle.new_page()
    try:
        if spec.viewport is not None:
            await _apply_viewport(page, spec.viewport)

        await _load_content(page, spec, timeouts, log)

        if spec.wait_for_selector:
            await _wait_for_selector(page, spec.wait_for_selector, timeouts.selector, log)

        if spec.wait_for_delay_ms:
            log.debug("Waiting %d ms before printing", spec.wait_for_delay_ms)
            await asyncio.sleep(spec.wait_for_delay_ms / 1000)

        return await _print_pdf(page, spec.pdf_options, log)
    finally:
        await _close_page(page, log)


async def _apply_viewport(page: Page, viewport: Viewport) -> None:
    try:
        await page.set_viewport_size(ViewportSize(width=viewport.width, height=viewport.height))
    except PlaywrightError as e:
        raise PageError(f"Failed to set viewport: {first_line(e)}") from e


async def _load_content(page: Page, spec: ContentSpec, timeouts: RenderTimeouts, log: logging.Logger) -> None:
    source = spec.source
    if isinstance(source, HtmlSource):
        log.debug("Setting page content (%d characters)", len(source.html))
        try:
            await page.set_content(source.html, wait_until=READY_STATE, timeout=timeouts.html_load * 1000)
        except PlaywrightTimeoutError as e:
            raise ContentLoadTimeout(f"HTML content was not ready within {timeouts.html_load:g}s") from e
        except PlaywrightError as e:
            raise PageError(f"Failed to set page content: {first_line(e)}") from e
        return

    log.debug("Navigating to %s", sanitize_url_for_logging(source.url))
    try:
        await page.goto(source.url, wait_until=READY_STATE, timeout=timeouts.url_load * 1000)
    except PlaywrightTimeoutError as e:
        raise ContentLoadTimeout(f"URL was not ready within {timeouts.url_load:g}s") from e
    except PlaywrightError as e:
        raise PageError(f"Failed to navigate to URL: {first_line(e)}") from e


async def _wait_for_selector(page: Page, selector: str, timeout: float, log: logging.Logger) -> None:
    log.debug("Waiting for selector: %s", sanitize_for_logging(selector, max_length=200))
    try:
        await page.wait_for_selector(selector, timeout=timeout * 1000)
    except PlaywrightTimeoutError as e:
        raise SelectorTimeout(f"Selector '{selector}' did not appear within {timeout:g}s") from e
    except PlaywrightError as e:
        raise PageError(f"Failed waiting for selector '{selector}': {first_line(e)}") from e


async def _print_pdf(page: Page, pdf_options: Mapping[str, Any], log: logging.Logger) -> bytes:
    kwargs = to_playwright_pdf_kwargs(pdf_options)
    log.debug("Generating PDF with options: %s", kwargs)
    try:
        pdf = await page.pdf(**kwargs)
    except PlaywrightError as e:
        raise RenderError(f"Failed to generate PDF: {first_line(e)}") from e

    if not pdf or not pdf.startswith(PDF_SIGNATURE):
        raise RenderError("Failed to generate PDF: browser returned an invalid document")
    return pdf


async def _close_page(page: Page, log: logging.Logger) -> None:
    try:
        await page.close()
    except Exception as e:  # noqa: BLE001
        log.warning("Error closing page: %s", first_line(e))
