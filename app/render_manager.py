"""
Browser lifecycle management and PDF rendering.

This module provides the RenderManager, which decides when to launch, reuse or
discard the headless Chromium used to render PDFs, retries renders that lost
their browser connection, and guarantees that no browser process outlives the
service.

Two strategies are available (``BROWSER_STRATEGY``):

- ``shared``: one long-lived browser serves every request. A dead browser is
  replaced before use, and a render that fails with a connection error is
  retried on a freshly launched browser.
- ``fresh``: every render launches its own browser and closes it afterwards.
  Nothing can go stale, so nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

import psutil

from app import prometheus_metrics
from app.browser_handle import DEFAULT_LAUNCH_TIMEOUT, BrowserHandle, LaunchConfig
from app.errors import LaunchError, RenderFailure, first_line, is_connection_error
from app.models import BrowserStatus, RenderResult
from app.render_pipeline import RenderTimeouts, render_pdf

if TYPE_CHECKING:
    from app.models import ContentSpec

Launcher = Callable[[LaunchConfig, logging.Logger], Awaitable[BrowserHandle]]


class RenderStrategy(str, Enum):
    SHARED = "shared"
    FRESH = "fresh"


@dataclass
class RenderManagerConfig:
    """
    Configuration settings for RenderManager.

    Every attribute left as None is read from its environment variable, falling
    back to the default when unset or out of range.

    Attributes:
        strategy: ``shared`` or ``fresh`` (BROWSER_STRATEGY, default shared).
        prelaunch: Launch the shared browser in start() (BROWSER_PRELAUNCH, default True).
        max_render_retries: Retries after a connection error, shared strategy only
            (BROWSER_MAX_RENDER_RETRIES, 0-5, default 2).
        launch_timeout: Seconds to wait for the browser to start (BROWSER_LAUNCH_TIMEOUT, 5-300, default 30).
        html_load_timeout: Seconds to wait for injected HTML (RENDER_HTML_TIMEOUT, 1-300, default 15).
        url_load_timeout: Seconds to wait for URL navigation (RENDER_URL_TIMEOUT, 1-300, default 30).
        selector_timeout: Seconds to wait for a selector (RENDER_SELECTOR_TIMEOUT, 1-300, default 10).
    """

    strategy: RenderStrategy | str | None = None
    prelaunch: bool | None = None
    max_render_retries: int | None = None
    launch_timeout: int | None = None
    html_load_timeout: int | None = None
    url_load_timeout: int | None = None
    selector_timeout: int | None = None


@dataclass
class RenderMetrics:
    """
    Counters for render and browser lifecycle monitoring.

    Attributes:
        total_renders: Successful renders since start.
        failed_renders: Failed renders since start.
        total_render_time_ms: Time spent in successful renders (for averaging).
        avg_render_time_ms: Average successful render time.
        total_launches: Browsers launched.
        failed_launches: Browser launches that failed.
        total_retries: Renders retried after a connection error.
        total_restarts: Forced restarts.
        total_disconnects: Shared browsers found disconnected before use.
        active_renders: Renders currently in progress.
        last_health_check: Timestamp of the last health check.
        last_health_status: Result of the last health check.
    """

    total_renders: int = 0
    failed_renders: int = 0
    total_render_time_ms: float = 0.0
    avg_render_time_ms: float = 0.0

    total_launches: int = 0
    failed_launches: int = 0
    total_retries: int = 0
    total_restarts: int = 0
    total_disconnects: int = 0

    active_renders: int = 0
    last_health_check: float = 0.0
    last_health_status: bool = False
    start_time: float = field(default_factory=time.time)

    def record_success(self, duration_ms: float) -> None:
        self.total_renders += 1
        self.total_render_time_ms += duration_ms
        self.avg_render_time_ms = self.total_render_time_ms / self.total_renders

    def record_failure(self) -> None:
        self.failed_renders += 1

    def record_health_check(self, is_healthy: bool) -> None:
        self.last_health_check = time.time()
        self.last_health_status = is_healthy

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.start_time

    def get_error_rate(self) -> float:
        """Failed renders as a percentage of all renders."""
        total_attempts = self.total_renders + self.failed_renders
        if total_attempts == 0:
            return 0.0
        return (self.failed_renders / total_attempts) * 100.0


class RenderManager:
    """
    Owns the browser used for rendering and exposes ``render(spec) -> RenderResult``.

    One instance is created at service start-up and injected into request
    handlers. Concurrent renders on the shared browser each open their own page;
    the lock only guards acquiring and discarding the shared browser, so two
    callers never launch two browsers at once.
    """

    def __init__(
        self,
        config: RenderManagerConfig | None = None,
        logger: logging.Logger | None = None,
        launcher: Launcher | None = None,
    ) -> None:
        """
        Initialize RenderManager.

        Args:
            config: Configuration settings. If None, everything is read from environment variables.
            logger: Optional logger; if None, a module-level logger is used.
            launcher: Coroutine function creating a BrowserHandle; defaults to BrowserHandle.launch.
        """
        self.log = logger or logging.getLogger(__name__)

        if config is None:
            config = RenderManagerConfig()

        self.strategy = self._validate_strategy(config.strategy)
        self.prelaunch = self._validate_bool_config(config.prelaunch, "BROWSER_PRELAUNCH", default=True)
        self.max_render_retries = self._validate_int_config(config.max_render_retries, "BROWSER_MAX_RENDER_RETRIES", default=2, min_value=0, max_value=5)
        self.launch_config = LaunchConfig(
            timeout=self._validate_int_config(config.launch_timeout, "BROWSER_LAUNCH_TIMEOUT", default=DEFAULT_LAUNCH_TIMEOUT, min_value=5, max_value=300),
        )
        self.timeouts = RenderTimeouts(
            html_load=self._validate_int_config(config.html_load_timeout, "RENDER_HTML_TIMEOUT", default=15, min_value=1, max_value=300),
            url_load=self._validate_int_config(config.url_load_timeout, "RENDER_URL_TIMEOUT", default=30, min_value=1, max_value=300),
            selector=self._validate_int_config(config.selector_timeout, "RENDER_SELECTOR_TIMEOUT", default=10, min_value=1, max_value=300),
        )

        self._launcher: Launcher = launcher or BrowserHandle.launch
        self._handle: BrowserHandle | None = None
        self._inflight: set[BrowserHandle] = set()
        self._lock = asyncio.Lock()
        self._started = False
        # Set by cleanup(); no browser may be launched until start() runs again
        self._closed = False
        self._last_launch_failed = False
        self._metrics = RenderMetrics()

    @property
    def max_attempts(self) -> int:
        return self.max_render_retries + 1 if self.strategy is RenderStrategy.SHARED else 1

    async def start(self) -> None:
        """
        Prepare the manager for rendering.

        With the shared strategy and prelaunch enabled the browser is launched
        right away so that a broken installation fails the service at start-up.

        Raises:
            LaunchError: If the shared browser cannot be launched.
        """
        if self._started:
            self.log.warning("Render manager already started")
            return

        self.log.info("Starting render manager (strategy=%s, max retries=%d)", self.strategy.value, self.max_render_retries)
        self._closed = False
        if self.strategy is RenderStrategy.SHARED and self.prelaunch:
            await self._acquire_shared_handle()
        self._started = True

    async def render(self, spec: ContentSpec) -> RenderResult:
        """
        Render a ContentSpec to PDF.

        Never raises: every failure is returned as ``RenderResult.failed(message)``.
        """
        start_time = time.time()
        self._metrics.active_renders += 1
        try:
            if self.strategy is RenderStrategy.SHARED:
                pdf = await self._render_shared(spec)
            else:
                pdf = await self._render_fresh(spec)
            result = RenderResult.ok(pdf)
        except RenderFailure as e:
            self.log.error("PDF generation failed: %s", first_line(e))
            result = RenderResult.failed(first_line(e))
        except Exception as e:
            self.log.error("Unexpected error in PDF generation: %s", e, exc_info=True)
            result = RenderResult.failed(first_line(e))
        finally:
            self._metrics.active_renders -= 1

        duration_ms = (time.time() - start_time) * 1000
        if result.success:
            self._metrics.record_success(duration_ms)
            prometheus_metrics.increment_pdf_render_success(duration_ms / 1000)
            self.log.info("PDF generated successfully in %.0f ms, size: %d bytes", duration_ms, len(result.pdf or b""))
        else:
            self._metrics.record_failure()
            prometheus_metrics.increment_pdf_render_failure()
        return result

    async def _render_shared(self, spec: ContentSpec) -> bytes:
        max_attempts = self.max_attempts
        attempt = 0
        while True:
            attempt += 1
            handle: BrowserHandle | None = None
            try:
                handle = await self._acquire_shared_handle()
                return await render_pdf(handle, spec, self.timeouts, self.log)
            except Exception as e:
                if not is_connection_error(e):
                    raise

                # The browser this attempt used is broken: never hand it out again
                if handle is not None:
                    await self._discard_shared_handle(handle)

                if self._closed:
                    self.log.warning("PDF generation interrupted by shutdown: %s", first_line(e))
                    raise

                if attempt >= max_attempts:
                    self.log.error("PDF generation failed after %d attempts: %s", max_attempts, first_line(e))
                    raise

                self.log.warning(
                    "PDF generation lost the browser connection (attempt %d/%d): %s. Retrying with a new browser...",
                    attempt,
                    max_attempts,
                    first_line(e),
                )
                self._metrics.total_retries += 1
                prometheus_metrics.increment_render_retry()

    async def _render_fresh(self, spec: ContentSpec) -> bytes:
        handle = await self._launch()
        self._inflight.add(handle)
        try:
            return await render_pdf(handle, spec, self.timeouts, self.log)
        finally:
            self._inflight.discard(handle)
            await handle.close()

    async def _launch(self) -> BrowserHandle:
        if self._closed:
            raise LaunchError("Render manager is shut down")
        try:
            handle = await self._launcher(self.launch_config, self.log)
        except Exception as e:
            self._last_launch_failed = True
            self._metrics.failed_launches += 1
            prometheus_metrics.increment_browser_launch_failure()
            if isinstance(e, LaunchError):
                raise
            raise LaunchError(f"Failed to launch browser: {first_line(e)}") from e

        self._last_launch_failed = False
        self._metrics.total_launches += 1
        prometheus_metrics.increment_browser_launch()
        if self._closed:
            # cleanup() ran while this browser was starting
            await handle.close()
            raise LaunchError("Render manager is shut down")
        return handle

    async def _acquire_shared_handle(self) -> BrowserHandle:
        """Return the shared browser, replacing it first if it is no longer alive."""
        async with self._lock:
            handle = self._handle
            if handle is not None and not handle.is_alive():
                self.log.warning("Shared browser is no longer connected, launching a new one")
                self._handle = None
                self._metrics.total_disconnects += 1
                prometheus_metrics.increment_browser_disconnect()
                await handle.close()

            if self._handle is None:
                self._handle = await self._launch()
            return self._handle

    async def _discard_shared_handle(self, handle: BrowserHandle) -> None:
        async with self._lock:
            # Another caller may already have replaced it
            if self._handle is handle:
                self._handle = None
        await handle.close()

    def _held_handles(self) -> list[BrowserHandle]:
        handles = list(self._inflight)
        if self._handle is not None:
            handles.insert(0, self._handle)
        return handles

    def status(self) -> BrowserStatus:
        """
        Snapshot of the browser currently held.

        ``connected`` is True while a browser is held (the shared one, or a
        per-request one during a render); ``alive`` is True when every held
        browser still has a working connection.
        """
        handles = self._held_handles()
        connected = bool(handles)
        return BrowserStatus(connected=connected, alive=connected and all(handle.is_alive() for handle in handles))

    def health_check(self) -> bool:
        """
        Check that the manager can render.

        Unhealthy when the last launch attempt failed or a held browser is dead.
        """
        try:
            is_healthy = not self._last_launch_failed and all(handle.is_alive() for handle in self._held_handles())
        except Exception as e:  # noqa: BLE001
            self.log.error("Health check failed: %s", e)
            is_healthy = False
        self._metrics.record_health_check(is_healthy)
        return is_healthy

    def get_version(self) -> str | None:
        """Chromium version of a held browser, or None if no live browser is held."""
        for handle in self._held_handles():
            if handle.is_alive():
                return handle.version
        return None

    async def force_restart(self) -> None:
        """
        Discard the shared browser; the next render launches a new one.

        No-op with the fresh strategy, which holds no browser between renders.
        """
        if self.strategy is RenderStrategy.FRESH:
            self.log.info("Restart requested, but browsers are launched per request: nothing to restart")
            return

        self.log.info("Restarting browser...")
        async with self._lock:
            handle, self._handle = self._handle, None
        if handle is not None:
            await handle.close()

        self._metrics.total_restarts += 1
        prometheus_metrics.increment_browser_restart()
        self.log.info("Browser discarded, a new one will be launched on the next request")

    async def cleanup(self) -> None:
        """
        Close every browser the manager holds.

        Called on service shutdown (SIGINT/SIGTERM). Idempotent: calling it again
        when nothing is held does nothing. Renders still in flight fail instead of
        launching a replacement browser; start() lifts that again.
        """
        async with self._lock:
            handles = self._held_handles()
            self._handle = None
            self._inflight.clear()
            self._started = False
            self._closed = True

        if not handles:
            self.log.debug("Cleanup called, no browser to close")
            return

        self.log.info("Closing %d browser(s)...", len(handles))
        for handle in handles:
            await handle.close()
        self.log.info("Render manager cleaned up")

    def get_metrics(self) -> dict[str, float | int | bool | str]:
        """
        Get current metrics for monitoring and observability.

        Returns:
            Dictionary containing render counts and timings, browser lifecycle
            counters, current browser status and system memory.
        """
        system_memory = psutil.virtual_memory()

        last_health_check_str = ""
        if self._metrics.last_health_check > 0:
            last_health_check_str = datetime.fromtimestamp(self._metrics.last_health_check).strftime("%H:%M:%S %d.%m.%Y")

        status = self.status()
        return {
            "strategy": self.strategy.value,
            "total_renders": self._metrics.total_renders,
            "failed_renders": self._metrics.failed_renders,
            "error_rate_percent": round(self._metrics.get_error_rate(), 2),
            "avg_render_time_ms": round(self._metrics.avg_render_time_ms, 2),
            "active_renders": self._metrics.active_renders,
            "total_launches": self._metrics.total_launches,
            "failed_launches": self._metrics.failed_launches,
            "total_retries": self._metrics.total_retries,
            "total_restarts": self._metrics.total_restarts,
            "total_disconnects": self._metrics.total_disconnects,
            "browser_connected": status.connected,
            "browser_alive": status.alive,
            "last_health_check": last_health_check_str,
            "last_health_status": self._metrics.last_health_status,
            "uptime_seconds": round(self._metrics.uptime_seconds, 2),
            "total_memory_mb": round(system_memory.total / (1024 * 1024), 2),
            "available_memory_mb": round(system_memory.available / (1024 * 1024), 2),
        }

    def _validate_strategy(self, value: RenderStrategy | str | None) -> RenderStrategy:
        if isinstance(value, RenderStrategy):
            return value
        if value is None:
            value = os.environ.get("BROWSER_STRATEGY", RenderStrategy.SHARED.value)
        try:
            return RenderStrategy(value.strip().lower())
        except ValueError:
            self.log.warning("BROWSER_STRATEGY must be one of %s, using default: %s", [s.value for s in RenderStrategy], RenderStrategy.SHARED.value)
            return RenderStrategy.SHARED

    def _validate_int_config(
        self,
        value: int | None,
        env_var: str,
        default: int,
        min_value: int,
        max_value: int,
    ) -> int:
        """
        Validate integer configuration parameters.

        Args:
            value: Value to validate or None to read from env.
            env_var: Environment variable name.
            default: Default value if env var not set or invalid.
            min_value: Minimum valid value (inclusive).
            max_value: Maximum valid value (inclusive).

        Returns:
            Validated integer configuration value.
        """
        if value is None:
            value = self._parse_int(os.environ.get(env_var), default)
        else:
            value = int(value)

        if not (min_value <= value <= max_value):
            self.log.warning("%s must be between %s and %s, using default: %s", env_var, min_value, max_value, default)
            return default

        return value

    @staticmethod
    def _validate_bool_config(value: bool | None, env_var: str, default: bool) -> bool:
        if value is not None:
            return bool(value)

        env_value = os.environ.get(env_var)
        if env_value is None:
            return default
        return env_value.strip().lower() in ("true", "1", "yes", "on")

    @staticmethod
    def _parse_int(value: str | None, default: int) -> int:
        """Parse a string to int with a default fallback."""
        try:
            return int(value) if value is not None else default
        except (ValueError, TypeError):
            return default
