from unittest.mock import AsyncMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from app.errors import ContentLoadTimeout, PageError, RenderError, SelectorTimeout, is_connection_error
from app.models import ContentSpec, Viewport
from app.render_pipeline import RenderTimeouts, render_pdf
from tests.fakes import MINIMAL_PDF, FakeBrowserHandle, FakePage


def handle_with(page: FakePage) -> FakeBrowserHandle:
    handle = FakeBrowserHandle()
    handle.new_page = AsyncMock(return_value=page)  # type: ignore[method-assign]
    return handle


@pytest.mark.asyncio
async def test_html_render_steps():
    page = FakePage()

    pdf = await render_pdf(handle_with(page), ContentSpec.from_html("<p>Hi</p>"))

    assert pdf == MINIMAL_PDF
    assert page.calls == ["set_content", "pdf", "close"]
    page.set_content.assert_awaited_once_with("<p>Hi</p>", wait_until="domcontentloaded", timeout=15000)
    page.pdf.assert_awaited_once_with(
        format="A4",
        print_background=True,
        margin={"top": "20px", "right": "20px", "bottom": "20px", "left": "20px"},
    )


@pytest.mark.asyncio
async def test_url_render_with_viewport_selector_and_delay():
    page = FakePage()
    spec = ContentSpec.from_url(
        "https://example.com/report",
        {"landscape": True},
        viewport=Viewport(width=375, height=667),
        wait_for_selector="#ready",
        wait_for_delay_ms=1,
    )

    await render_pdf(handle_with(page), spec, RenderTimeouts(url_load=5, selector=2))

    assert page.calls == ["set_viewport_size", "goto", "wait_for_selector", "pdf", "close"]
    page.set_viewport_size.assert_awaited_once_with({"width": 375, "height": 667})
    page.goto.assert_awaited_once_with("https://example.com/report", wait_until="domcontentloaded", timeout=5000)
    page.wait_for_selector.assert_awaited_once_with("#ready", timeout=2000)
    assert page.pdf.await_args.kwargs["landscape"] is True


@pytest.mark.asyncio
async def test_html_load_timeout():
    page = FakePage()
    page.set_content.side_effect = PlaywrightTimeoutError("Timeout 15000ms exceeded.")

    with pytest.raises(ContentLoadTimeout, match="HTML content was not ready within 15s"):
        await render_pdf(handle_with(page), ContentSpec.from_html("<p>slow</p>"))

    page.close.assert_awaited_once()
    page.pdf.assert_not_awaited()


@pytest.mark.asyncio
async def test_url_load_timeout():
    page = FakePage()
    page.goto.side_effect = PlaywrightTimeoutError("Timeout 30000ms exceeded.")

    with pytest.raises(ContentLoadTimeout, match="URL was not ready within 30s"):
        await render_pdf(handle_with(page), ContentSpec.from_url("https://example.com"))

    page.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_navigation_error_is_page_error():
    page = FakePage()
    page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://nope.invalid/\nCall log:\n  - navigating")

    with pytest.raises(PageError) as exc_info:
        await render_pdf(handle_with(page), ContentSpec.from_url("https://nope.invalid/"))

    assert str(exc_info.value) == "Failed to navigate to URL: net::ERR_NAME_NOT_RESOLVED at https://nope.invalid/"
    page.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_selector_timeout():
    page = FakePage()
    page.wait_for_selector.side_effect = PlaywrightTimeoutError("Timeout 10000ms exceeded.")
    spec = ContentSpec.from_html("<p>no marker</p>", wait_for_selector="#ready")

    with pytest.raises(SelectorTimeout, match="Selector '#ready' did not appear within 10s"):
        await render_pdf(handle_with(page), spec)

    page.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_pdf_failure_keeps_connection_error_recognizable():
    page = FakePage()
    page.pdf.side_effect = PlaywrightError("Target page, context or browser has been closed")

    with pytest.raises(RenderError) as exc_info:
        await render_pdf(handle_with(page), ContentSpec.from_html("<p>Hi</p>"))

    assert is_connection_error(exc_info.value)
    page.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_invalid_pdf_output_is_render_error():
    page = FakePage(pdf=b"<html>not a pdf</html>")

    with pytest.raises(RenderError, match="invalid document"):
        await render_pdf(handle_with(page), ContentSpec.from_html("<p>Hi</p>"))


@pytest.mark.asyncio
async def test_page_close_error_is_swallowed(caplog):
    page = FakePage()
    page.close.side_effect = PlaywrightError("Target closed")

    pdf = await render_pdf(handle_with(page), ContentSpec.from_html("<p>Hi</p>"))

    assert pdf == MINIMAL_PDF
    assert "Error closing page" in caplog.text


@pytest.mark.asyncio
async def test_new_page_failure_propagates():
    handle = FakeBrowserHandle(fail_with=PageError("Cannot open page: browser connection closed"))

    with pytest.raises(PageError, match="browser connection closed"):
        await render_pdf(handle, ContentSpec.from_html("<p>Hi</p>"))
