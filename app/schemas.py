from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field

from app.errors import ValidationError
from app.models import ContentSpec, Viewport
from app.sanitization import sanitize_for_logging

MISSING_SOURCE_ERROR = "Either html content or url is required"

# Schemes a page may navigate to; the network ones also need a host
NETWORK_URL_SCHEMES = ("http", "https")
LOCAL_URL_SCHEMES = ("file", "data", "about")

VIEWPORT_PRESETS: dict[str, Viewport] = {
    "desktop": Viewport(width=1920, height=1080),
    "tablet": Viewport(width=768, height=1024),
    "mobile": Viewport(width=375, height=667),
}


class ViewportSchema(BaseModel):
    """Schema for an explicit viewport size"""

    width: int = Field(gt=0, title="Width", description="Viewport width in CSS pixels")
    height: int = Field(gt=0, title="Height", description="Viewport height in CSS pixels")


class RenderRequest(BaseModel):
    """Schema for request POST /render"""

    model_config = ConfigDict(extra="ignore")

    html: str | None = Field(default=None, title="HTML", description="HTML document to render. Takes precedence over url.")
    url: str | None = Field(default=None, title="URL", description="URL to navigate to and render")
    filename: str | None = Field(default=None, title="Filename", description="Suggested download filename, sanitized before use")
    options: dict[str, Any] | None = Field(default=None, title="PDF Options", description="PDF options (format, printBackground, margin, landscape, ...) merged over the defaults")
    waitForSelector: str | None = Field(default=None, title="Wait For Selector", description="CSS selector that must appear before printing")
    waitForTimeout: float | None = Field(default=None, ge=0, title="Wait For Timeout", description="Fixed delay in milliseconds before printing, rounded to whole milliseconds")
    viewport: ViewportSchema | str | None = Field(default=None, title="Viewport", description="Viewport size, or one of the presets: desktop, tablet, mobile")

    def to_content_spec(self) -> ContentSpec:
        """
        Build the ContentSpec for this request.

        Raises:
            ValidationError: If neither html nor url is given, the url is malformed, or the viewport preset is unknown.
        """
        html = self.html if self.html and self.html.strip() else None
        url = self.url.strip() if self.url and self.url.strip() else None
        if html is None and url is None:
            raise ValidationError(MISSING_SOURCE_ERROR)

        spec_kwargs: dict[str, Any] = {
            "viewport": self._resolve_viewport(),
            "wait_for_selector": self.waitForSelector or None,
            "wait_for_delay_ms": round(self.waitForTimeout) if self.waitForTimeout is not None else None,
        }
        if html is not None:
            return ContentSpec.from_html(html, self.options, **spec_kwargs)
        _validate_url(url)  # type: ignore[arg-type]
        return ContentSpec.from_url(url, self.options, **spec_kwargs)  # type: ignore[arg-type]

    def _resolve_viewport(self) -> Viewport | None:
        if self.viewport is None:
            return None
        if isinstance(self.viewport, ViewportSchema):
            return Viewport(width=self.viewport.width, height=self.viewport.height)
        preset = VIEWPORT_PRESETS.get(self.viewport.strip().lower())
        if preset is None:
            raise ValidationError(f"Unknown viewport preset '{self.viewport}', expected one of: {', '.join(VIEWPORT_PRESETS)}")
        return preset


def _validate_url(url: str) -> None:
    """Reject URLs the browser cannot navigate to, before any browser work is done."""
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise ValidationError(f"Invalid URL: {sanitize_for_logging(url, max_length=200)}") from e

    scheme = parts.scheme.lower()
    if scheme in LOCAL_URL_SCHEMES or (scheme in NETWORK_URL_SCHEMES and parts.hostname):
        return
    raise ValidationError(f"Invalid URL: {sanitize_for_logging(url, max_length=200)}")


class ErrorSchema(BaseModel):
    """Schema for JSON error responses"""

    error: str = Field(title="Error", description="Human readable error message")


class BrowserStatusSchema(BaseModel):
    """Schema for the browser status snapshot"""

    connected: bool = Field(title="Connected", description="Whether a browser is currently held")
    isConnected: bool = Field(title="Is Connected", description="Whether the held browser connection is alive")


class ServiceStatusSchema(BaseModel):
    """Schema for response GET /render"""

    service: str = Field(title="Service", description="Service name")
    status: str = Field(title="Status", description="healthy or restarted")
    browser: BrowserStatusSchema = Field(title="Browser", description="Browser status")
    message: str | None = Field(default=None, title="Message", description="Present after a restart")


class VersionSchema(BaseModel):
    """Schema for response /version"""

    python: str = Field(title="Python", description="Python version")
    playwright: str | None = Field(title="Playwright", description="Playwright version")
    pdfService: str | None = Field(title="PDF Service", description="Service version")
    timestamp: str | None = Field(title="Build Timestamp", description="Build timestamp")
    chromium: str | None = Field(title="Chromium", description="Chromium version")


class RenderMetricsSchema(BaseModel):
    """Schema for render and browser lifecycle metrics"""

    strategy: str = Field(title="Strategy", description="Browser strategy: shared or fresh")
    total_renders: int = Field(title="Renders", description="Total successful PDF renders")
    failed_renders: int = Field(title="Failed Renders", description="Total failed PDF renders")
    error_rate_percent: float = Field(title="Error Rate (%)", description="Failed renders as percentage of all renders")
    avg_render_time_ms: float = Field(title="Avg Render Time (ms)", description="Average successful render time in milliseconds")
    active_renders: int = Field(title="Active Renders", description="Renders currently in progress")
    total_launches: int = Field(title="Browser Launches", description="Browsers launched since startup")
    failed_launches: int = Field(title="Failed Launches", description="Browser launches that failed")
    total_retries: int = Field(title="Retries", description="Renders retried after a lost browser connection")
    total_restarts: int = Field(title="Restarts", description="Forced browser restarts")
    total_disconnects: int = Field(title="Disconnects", description="Shared browsers found disconnected before use")
    browser_connected: bool = Field(title="Browser Connected", description="Whether a browser is currently held")
    browser_alive: bool = Field(title="Browser Alive", description="Whether the held browser connection is alive")
    last_health_check: str = Field(title="Last Health Check", description="Formatted timestamp of last health check (HH:MM:SS DD.MM.YYYY)")
    last_health_status: bool = Field(title="Last Health Status", description="Result of last health check (true=healthy)")
    uptime_seconds: float = Field(title="Uptime (seconds)", description="Render manager uptime in seconds")
    total_memory_mb: float = Field(title="Total Memory (MB)", description="Total system memory in MB")
    available_memory_mb: float = Field(title="Available Memory (MB)", description="Available system memory in MB")


class HealthSchema(BaseModel):
    """Schema for detailed health status response"""

    status: str = Field(title="Status", description="Overall health status: healthy or unhealthy")
    version: str = Field(title="Version", description="PDF service version")
    chromium_version: str | None = Field(title="Chromium Version", description="Chromium version if a browser is held")
    browser: BrowserStatusSchema = Field(title="Browser", description="Browser status")
    metrics: RenderMetricsSchema = Field(title="Metrics", description="Render and browser lifecycle metrics")
