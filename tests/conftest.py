"""Pytest configuration and fixtures for pdf-render-service tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.models import BrowserStatus, RenderResult
from app.render_manager import RenderManager, RenderManagerConfig
from tests.fakes import MINIMAL_PDF, FakeBrowserHandle, FakeLauncher


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom command-line options to pytest."""
    parser.addoption(
        "--save-test-outputs",
        action="store_true",
        default=False,
        help="Save rendered PDFs to disk for manual inspection",
    )


def _chromium_installed() -> bool:
    try:
        from playwright.sync_api import sync_playwright

        with sync_playwright() as playwright:
            return Path(playwright.chromium.executable_path).exists()
    except Exception:  # noqa: BLE001
        return False


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip tests marked ``browser`` when Playwright's Chromium is not installed."""
    browser_items = [item for item in items if "browser" in item.keywords]
    if not browser_items or _chromium_installed():
        return
    skip_browser = pytest.mark.skip(reason="Playwright Chromium is not installed (run: playwright install chromium)")
    for item in browser_items:
        item.add_marker(skip_browser)


@pytest.fixture(autouse=True)
def disable_metrics_server(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the application lifespan from binding the metrics port."""
    monkeypatch.setenv("METRICS_SERVER_ENABLED", "false")


@pytest.fixture
def save_test_outputs(request: pytest.FixtureRequest) -> bool:
    """Fixture to check if test outputs should be saved to disk."""
    return request.config.getoption("--save-test-outputs")


@pytest.fixture
def make_manager():
    """Build a RenderManager wired to a FakeLauncher."""

    def factory(strategy: str = "shared", plan: list[FakeBrowserHandle | Exception] | None = None, **config: Any) -> tuple[RenderManager, FakeLauncher]:
        config.setdefault("prelaunch", False)
        config.setdefault("max_render_retries", 2)
        launcher = FakeLauncher(plan)
        manager = RenderManager(RenderManagerConfig(strategy=strategy, **config), launcher=launcher)
        return manager, launcher

    return factory


@pytest.fixture
def fake_render_manager() -> MagicMock:
    """A RenderManager double for HTTP layer tests."""
    manager = MagicMock(spec=RenderManager)
    manager.start = AsyncMock()
    manager.cleanup = AsyncMock()
    manager.force_restart = AsyncMock()
    manager.render = AsyncMock(return_value=RenderResult.ok(MINIMAL_PDF))
    manager.status.return_value = BrowserStatus(connected=True, alive=True)
    manager.health_check.return_value = True
    manager.get_version.return_value = "131.0.6778.69"
    return manager
