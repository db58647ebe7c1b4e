"""
Domain types shared by the render manager, the render pipeline and the HTTP layer.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from app.pdf_options import merge_pdf_options


@dataclass(frozen=True)
class HtmlSource:
    """Raw HTML injected into the page without any network fetch."""

    html: str


@dataclass(frozen=True)
class UrlSource:
    """A URL the page navigates to."""

    url: str


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Viewport dimensions must be positive, got {self.width}x{self.height}")


@dataclass(frozen=True)
class ContentSpec:
    """
    Input of one render operation.

    Attributes:
        source: What to load, either HtmlSource or UrlSource.
        viewport: Optional viewport applied before loading.
        wait_for_selector: Optional selector that must appear before rasterizing.
        wait_for_delay_ms: Optional fixed delay in milliseconds before rasterizing.
        pdf_options: Effective PDF options (defaults merged with caller overrides).
    """

    source: HtmlSource | UrlSource
    viewport: Viewport | None = None
    wait_for_selector: str | None = None
    wait_for_delay_ms: int | None = None
    pdf_options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType(merge_pdf_options(None)))

    def __post_init__(self) -> None:
        if self.wait_for_delay_ms is not None and self.wait_for_delay_ms < 0:
            raise ValueError("wait_for_delay_ms must be non-negative")
        object.__setattr__(self, "pdf_options", _freeze(self.pdf_options))

    @classmethod
    def from_html(cls, html: str, pdf_options: Mapping[str, Any] | None = None, **kwargs: Any) -> ContentSpec:
        return cls(source=HtmlSource(html), pdf_options=merge_pdf_options(pdf_options), **kwargs)

    @classmethod
    def from_url(cls, url: str, pdf_options: Mapping[str, Any] | None = None, **kwargs: Any) -> ContentSpec:
        return cls(source=UrlSource(url), pdf_options=merge_pdf_options(pdf_options), **kwargs)

    @property
    def is_html(self) -> bool:
        return isinstance(self.source, HtmlSource)


def _freeze(options: Mapping[str, Any]) -> MappingProxyType[str, Any]:
    """Read-only copy of ``options``, nested mappings (such as margin) included."""
    return MappingProxyType({key: _freeze(value) if isinstance(value, Mapping) else value for key, value in options.items()})


@dataclass(frozen=True)
class RenderResult:
    """Outcome of RenderManager.render(): PDF bytes on success, an error message otherwise."""

    success: bool
    pdf: bytes | None = None
    error: str | None = None

    @classmethod
    def ok(cls, pdf: bytes) -> RenderResult:
        return cls(success=True, pdf=pdf)

    @classmethod
    def failed(cls, error: str) -> RenderResult:
        return cls(success=False, error=error or "Unknown error occurred")


@dataclass(frozen=True)
class BrowserStatus:
    """Snapshot of the manager's browser: whether a handle is held and whether it is alive."""

    connected: bool
    alive: bool

    def as_dict(self) -> dict[str, bool]:
        return {"connected": self.connected, "isConnected": self.alive}
