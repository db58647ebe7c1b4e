"""In-memory stand-ins for Playwright pages and browser handles."""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from unittest.mock import AsyncMock

from playwright.async_api import Error as PlaywrightError

from app.browser_handle import BrowserHandle, LaunchConfig

MINIMAL_PDF = b"%PDF-1.4\n%fake\n%%EOF\n"


class FakePage:
    """Stands in for a Playwright Page; records the calls made on it."""

    def __init__(self, pdf: bytes = MINIMAL_PDF) -> None:
        self.calls: list[str] = []
        self.set_viewport_size = AsyncMock(side_effect=self._record("set_viewport_size"))
        self.set_content = AsyncMock(side_effect=self._record("set_content"))
        self.goto = AsyncMock(side_effect=self._record("goto"))
        self.wait_for_selector = AsyncMock(side_effect=self._record("wait_for_selector"))
        self.pdf = AsyncMock(side_effect=self._record("pdf", pdf))
        self.close = AsyncMock(side_effect=self._record("close"))

    def _record(self, name: str, result: Any = None):
        def side_effect(*args: Any, **kwargs: Any) -> Any:
            self.calls.append(name)
            return result

        return side_effect


class FakeBrowserHandle:
    """
    In-memory replacement for BrowserHandle.

    ``fail_with`` makes new_page() raise, which is how the render pipeline first
    touches the browser. ``kill()`` simulates the browser process dying.
    With ``gate`` set, new_page() waits for it and then fails like Playwright
    does if the handle was closed meanwhile.
    """

    def __init__(
        self,
        name: str = "handle",
        fail_with: Exception | None = None,
        pdf: bytes = MINIMAL_PDF,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.name = name
        self.fail_with = fail_with
        self.pdf = pdf
        self.gate = gate
        self.entered = asyncio.Event()
        self.alive = True
        self.closed = False
        self.close_calls = 0
        self.pages: list[FakePage] = []

    @property
    def version(self) -> str | None:
        return "131.0.6778.69" if self.alive else None

    @property
    def is_closed(self) -> bool:
        return self.closed

    def is_alive(self) -> bool:
        return self.alive and not self.closed

    def kill(self) -> None:
        self.alive = False

    async def new_page(self) -> FakePage:
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
            if self.closed:
                raise PlaywrightError("Browser.new_page: Target page, context or browser has been closed")
        if self.fail_with is not None:
            raise self.fail_with
        page = FakePage(self.pdf)
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        self.alive = False

    def __repr__(self) -> str:
        return f"FakeBrowserHandle({self.name!r})"


class FakeLauncher:
    """
    Launcher for RenderManager returning prepared FakeBrowserHandles.

    Each call pops the next entry of ``plan``: a handle is returned, an
    exception is raised. When the plan runs out, healthy handles are created.
    """

    def __init__(self, plan: list[FakeBrowserHandle | Exception] | None = None) -> None:
        self.plan = list(plan or [])
        self.launched: list[FakeBrowserHandle] = []
        self.calls = 0

    async def __call__(self, config: LaunchConfig, logger: logging.Logger) -> BrowserHandle:
        self.calls += 1
        entry = self.plan.pop(0) if self.plan else FakeBrowserHandle(name=f"auto-{self.calls}")
        if isinstance(entry, Exception):
            raise entry
        self.launched.append(entry)
        return entry  # type: ignore[return-value]
