import pytest

from app.errors import CleanupError, LaunchError, PageError, RenderFailure, ValidationError, first_line, is_connection_error
from app.models import BrowserStatus, ContentSpec, HtmlSource, RenderResult, Viewport


class TestErrors:
    @pytest.mark.parametrize(
        "message",
        [
            "Protocol error (Page.printToPDF): Target closed",
            "Connection closed",
            "Session closed. Most likely the page has been closed.",
            "Page.pdf: Target page, context or browser has been closed",
            "Browser has been closed",
            "browser closed while waiting",
        ],
    )
    def test_connection_errors(self, message):
        assert is_connection_error(PageError(message))
        assert is_connection_error(RuntimeError(message.upper()))

    @pytest.mark.parametrize(
        "message",
        [
            "Timeout 30000ms exceeded.",
            "net::ERR_CONNECTION_REFUSED",
            "Failed to launch browser: spawn ENOENT",
            "Page.goto: Protocol error (Page.navigate): Cannot navigate to invalid URL",
        ],
    )
    def test_other_errors(self, message):
        assert not is_connection_error(RuntimeError(message))

    def test_first_line(self):
        assert first_line(RuntimeError("\n  first\nsecond")) == "first"
        assert first_line(RuntimeError()) == "RuntimeError"

    def test_hierarchy(self):
        assert issubclass(LaunchError, RenderFailure)
        assert issubclass(CleanupError, RenderFailure)
        assert not issubclass(ValidationError, RenderFailure)


class TestContentSpec:
    def test_defaults(self):
        spec = ContentSpec.from_html("<p>x</p>")

        assert spec.pdf_options["format"] == "A4"
        assert spec.viewport is None

    def test_pdf_options_are_read_only(self):
        spec = ContentSpec.from_html("<p>x</p>", {"format": "Letter"})

        with pytest.raises(TypeError):
            spec.pdf_options["format"] = "A3"  # type: ignore[index]

    def test_nested_pdf_options_are_read_only(self):
        margin = {"top": "1cm", "bottom": "1cm"}
        spec = ContentSpec.from_html("<p>x</p>", {"margin": margin})
        margin["top"] = "5cm"

        with pytest.raises(TypeError):
            spec.pdf_options["margin"]["top"] = "0"  # type: ignore[index]
        assert spec.pdf_options["margin"]["top"] == "1cm"

    def test_direct_construction_freezes_options(self):
        spec = ContentSpec(source=HtmlSource("<p>x</p>"), pdf_options={"margin": {"top": "1cm"}})

        with pytest.raises(TypeError):
            spec.pdf_options["margin"]["top"] = "0"  # type: ignore[index]

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError):
            ContentSpec.from_url("https://example.com", wait_for_delay_ms=-1)

    def test_viewport_must_be_positive(self):
        with pytest.raises(ValueError):
            Viewport(width=0, height=100)


def test_render_result():
    assert RenderResult.ok(b"%PDF").success
    assert RenderResult.failed("").error == "Unknown error occurred"


def test_browser_status_as_dict():
    assert BrowserStatus(connected=True, alive=False).as_dict() == {"connected": True, "isConnected": False}
