"""
Prometheus metrics collectors for the PDF render service.

This module defines custom Prometheus metrics that expose RenderManager
and browser lifecycle metrics for monitoring and observability.

Note: Counters are incremented when events occur (not synced from external state).
      Gauges are updated periodically to reflect current state.
"""

import logging
from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge, Histogram, Info

if TYPE_CHECKING:
    from app.render_manager import RenderManager


logger = logging.getLogger(__name__)


# Render counters - DO NOT set these directly, use the increment functions below
pdf_renders_total = Counter(
    "pdf_renders_total",
    "Total number of successful PDF renders",
)

pdf_render_failures_total = Counter(
    "pdf_render_failures_total",
    "Total number of failed PDF renders",
)

pdf_render_duration_seconds = Histogram(
    "pdf_render_duration_seconds",
    "PDF render duration in seconds, including browser launches and retries",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

render_retries_total = Counter(
    "render_retries_total",
    "Total number of renders retried after losing the browser connection",
)

# Browser lifecycle counters
browser_launches_total = Counter(
    "browser_launches_total",
    "Total number of Chromium browsers launched",
)

browser_launch_failures_total = Counter(
    "browser_launch_failures_total",
    "Total number of failed Chromium launches",
)

browser_restarts_total = Counter(
    "browser_restarts_total",
    "Total number of forced browser restarts",
)

browser_disconnects_total = Counter(
    "browser_disconnects_total",
    "Total number of shared browsers found disconnected",
)

# Gauges
pdf_render_error_rate_percent = Gauge(
    "pdf_render_error_rate_percent",
    "PDF render error rate as percentage",
)

avg_pdf_render_time_seconds = Gauge(
    "avg_pdf_render_time_seconds",
    "Average PDF render time in seconds",
)

active_pdf_renders = Gauge(
    "active_pdf_renders",
    "Current number of PDF renders in progress",
)

browser_connected = Gauge(
    "browser_connected",
    "1 if a browser is currently held and alive, 0 otherwise",
)

uptime_seconds = Gauge(
    "uptime_seconds",
    "Service uptime in seconds",
)

system_memory_total_bytes = Gauge(
    "system_memory_total_bytes",
    "Total system memory in bytes",
)

system_memory_available_bytes = Gauge(
    "system_memory_available_bytes",
    "Available system memory in bytes",
)

chromium_info = Info(
    "chromium",
    "Chromium browser information",
)


def increment_pdf_render_success(duration_seconds: float) -> None:
    """Increment successful render counter and record duration."""
    pdf_renders_total.inc()
    pdf_render_duration_seconds.observe(duration_seconds)


def increment_pdf_render_failure() -> None:
    """Increment failed render counter."""
    pdf_render_failures_total.inc()


def increment_render_retry() -> None:
    render_retries_total.inc()


def increment_browser_launch() -> None:
    browser_launches_total.inc()


def increment_browser_launch_failure() -> None:
    browser_launch_failures_total.inc()


def increment_browser_restart() -> None:
    browser_restarts_total.inc()


def increment_browser_disconnect() -> None:
    browser_disconnects_total.inc()


def update_gauges_from_render_manager(render_manager: "RenderManager") -> None:
    """
    Update Prometheus gauges from RenderManager current state.

    This function should be called before serving metrics to ensure
    gauges reflect the current state. It ONLY updates gauges, not counters.

    Args:
        render_manager: RenderManager instance to collect metrics from
    """
    try:
        metrics = render_manager.get_metrics()

        pdf_render_error_rate_percent.set(float(metrics["error_rate_percent"]))
        avg_pdf_render_time_seconds.set(float(metrics["avg_render_time_ms"]) / 1000.0)
        active_pdf_renders.set(float(metrics["active_renders"]))
        browser_connected.set(1.0 if metrics["browser_connected"] and metrics["browser_alive"] else 0.0)
        uptime_seconds.set(float(metrics["uptime_seconds"]))
        system_memory_total_bytes.set(float(metrics["total_memory_mb"]) * 1024 * 1024)
        system_memory_available_bytes.set(float(metrics["available_memory_mb"]) * 1024 * 1024)

        chromium_version = render_manager.get_version()
        if chromium_version:
            chromium_info.info({"version": chromium_version})

        logger.debug("Prometheus gauges updated from RenderManager")

    except Exception as e:
        logger.error("Failed to update Prometheus gauges: %s", e, exc_info=True)
