"""
A live connection to one headless Chromium process driven through Playwright.

A BrowserHandle is created by ``BrowserHandle.launch()`` and becomes invalid
once the browser disconnects or the handle is closed. An invalid handle is
never repaired: the owner discards it and launches a new one.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from playwright.async_api import async_playwright

from app.errors import CleanupError, LaunchError, PageError, first_line

if TYPE_CHECKING:
    from playwright.async_api import Browser, Page, Playwright

DEFAULT_LAUNCH_TIMEOUT = 30

DEFAULT_BROWSER_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-web-security",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--no-first-run",
)


@dataclass(frozen=True)
class LaunchConfig:
    """
    Settings for launching a browser process.

    Attributes:
        headless: Run Chromium without a visible window (always True in the service).
        timeout: Seconds to wait for the browser to become ready.
        args: Command line switches passed to Chromium.
    """

    headless: bool = True
    timeout: float = DEFAULT_LAUNCH_TIMEOUT
    args: tuple[str, ...] = DEFAULT_BROWSER_ARGS


class BrowserHandle:
    """
    Wraps one running Chromium process and its Playwright driver.

    Disconnects are detected without polling: the ``disconnected`` listener only
    sets an event, and a watcher task awaiting that event marks the handle dead.
    """

    def __init__(self, playwright: Playwright, browser: Browser, logger: logging.Logger | None = None) -> None:
        self.log = logger or logging.getLogger(__name__)
        self._playwright = playwright
        self._browser = browser
        self._alive = True
        self._closed = False
        self._disconnected = asyncio.Event()
        self.launched_at = time.time()

        self._browser.on("disconnected", self._on_disconnected)
        self._watcher: asyncio.Task[None] | None = asyncio.create_task(self._watch_disconnect())

    @classmethod
    async def launch(cls, config: LaunchConfig | None = None, logger: logging.Logger | None = None) -> BrowserHandle:
        """
        Start a Playwright driver and a headless Chromium.

        Raises:
            LaunchError: If the driver or the browser fails to start, or the browser
                is not ready within ``config.timeout`` seconds.
        """
        config = config or LaunchConfig()
        log = logger or logging.getLogger(__name__)
        playwright: Playwright | None = None

        try:
            log.info("Launching Chromium browser process (headless=%s, timeout=%ss)...", config.headless, config.timeout)
            playwright = await async_playwright().start()
            browser = await playwright.chromium.launch(
                headless=config.headless,
                args=list(config.args),
                timeout=config.timeout * 1000,
            )
        except Exception as e:
            log.error("Failed to launch Chromium: %s", first_line(e))
            if playwright is not None:
                try:
                    await playwright.stop()
                except Exception as stop_error:  # noqa: BLE001
                    log.warning("Error stopping Playwright after failed launch: %s", stop_error)
            raise LaunchError(f"Failed to launch browser: {first_line(e)}") from e

        handle = cls(playwright, browser, logger=log)
        log.info("Chromium browser launched (version %s)", handle.version)
        return handle

    def _on_disconnected(self, _browser: Browser) -> None:
        self._disconnected.set()

    async def _watch_disconnect(self) -> None:
        await self._disconnected.wait()
        self._alive = False
        if not self._closed:
            self.log.warning("Chromium process disconnected unexpectedly, handle is no longer usable")

    @property
    def version(self) -> str | None:
        """Browser version string such as ``131.0.6778.69``, or None if unavailable."""
        try:
            version_string = self._browser.version
        except Exception as e:  # noqa: BLE001
            self.log.debug("Failed to read Chromium version: %s", e)
            return None
        # "HeadlessChrome/131.0.6778.69" -> "131.0.6778.69"
        if "/" in version_string:
            return version_string.split("/", 1)[1]
        return version_string

    def is_alive(self) -> bool:
        """Check, without blocking, whether the browser connection is still usable."""
        if self._closed or not self._alive or self._disconnected.is_set():
            return False
        try:
            return self._browser.is_connected()
        except Exception as e:  # noqa: BLE001
            self.log.warning("Error checking browser connection: %s", e)
            return False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def new_page(self) -> Page:
        """
        Open a new page in its own browser context.

        Raises:
            PageError: If the handle is dead or the page cannot be created.
        """
        if not self.is_alive():
            raise PageError("Cannot open page: browser connection closed")
        try:
            return await self._browser.new_page()
        except Exception as e:
            raise PageError(f"Failed to open page: {first_line(e)}") from e

    async def close(self) -> None:
        """
        Close the browser and stop the Playwright driver.

        Safe to call any number of times. Errors met while shutting down an
        already broken connection are logged and swallowed.
        """
        if self._closed:
            return
        self._closed = True
        self._alive = False

        if self._watcher is not None:
            self._watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watcher
            self._watcher = None

        try:
            await self._shutdown()
        except CleanupError as e:
            self.log.warning("%s", e)
        else:
            self.log.info("Chromium browser closed")

    async def _shutdown(self) -> None:
        """Close the browser, then stop the driver; both steps always run."""
        failures: list[str] = []

        try:
            await self._browser.close()
        except Exception as e:  # noqa: BLE001
            failures.append(f"closing browser: {first_line(e)}")

        try:
            await self._playwright.stop()
        except Exception as e:  # noqa: BLE001
            failures.append(f"stopping Playwright: {first_line(e)}")

        if failures:
            raise CleanupError("Errors during browser shutdown: " + "; ".join(failures))
