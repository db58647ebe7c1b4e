import logging
import sys

import pytest

from app import pdf_service_application


@pytest.fixture(autouse=True)
def isolated_logging(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("WORKERS", raising=False)
    root_logger = logging.getLogger()
    saved_handlers, saved_level = root_logger.handlers[:], root_logger.level

    yield tmp_path / "logs"

    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    for handler in saved_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(saved_level)


@pytest.fixture
def started(monkeypatch):
    calls: dict[str, tuple] = {}
    monkeypatch.setattr(pdf_service_application, "start_server_single_worker", lambda port: calls.setdefault("single", (port,)))
    monkeypatch.setattr(pdf_service_application, "start_server_multi_worker", lambda port, workers: calls.setdefault("multi", (port, workers)))
    return calls


def test_main_runs_single_worker(monkeypatch, started, isolated_logging):
    monkeypatch.setattr(sys, "argv", ["pdf_service_application.py", "--port", "9999"])

    pdf_service_application.main()

    assert started == {"single": (9999,)}
    assert any(isolated_logging.glob("pdf-service_*.log"))


def test_main_runs_multi_worker(monkeypatch, started):
    monkeypatch.setattr(sys, "argv", ["pdf_service_application.py", "--port", "9999", "--workers", "4"])

    pdf_service_application.main()

    assert started == {"multi": (9999, 4)}


def test_main_env_overrides_cli_args(monkeypatch, started):
    monkeypatch.setenv("PORT", "8888")
    monkeypatch.setenv("WORKERS", "2")
    monkeypatch.setattr(sys, "argv", ["pdf_service_application.py", "--port", "9999", "--workers", "1"])

    pdf_service_application.main()

    assert started == {"multi": (8888, 2)}


def test_main_ignores_invalid_env(monkeypatch, started):
    monkeypatch.setenv("PORT", "not-a-port")
    monkeypatch.setattr(sys, "argv", ["pdf_service_application.py"])

    pdf_service_application.main()

    assert started == {"single": (9080,)}


def test_single_worker_runs_uvicorn(monkeypatch):
    calls = {}
    monkeypatch.setattr(pdf_service_application.uvicorn, "run", lambda app, **kwargs: calls.update(app=app, **kwargs))

    pdf_service_application.start_server_single_worker(9123)

    assert calls["app"] == "app.pdf_controller:app"
    assert calls["port"] == 9123


def test_multi_worker_execs_gunicorn(monkeypatch):
    executed = {}
    # Registered with monkeypatch so the values written by the function are undone
    monkeypatch.setenv("PORT", "1")
    monkeypatch.setenv("WORKERS", "1")
    monkeypatch.setenv("METRICS_SERVER_ENABLED", "true")
    monkeypatch.setattr(pdf_service_application.shutil, "which", lambda name: "/usr/bin/gunicorn")
    monkeypatch.setattr(pdf_service_application.os, "execv", lambda path, argv: executed.update(path=path, argv=argv))

    pdf_service_application.start_server_multi_worker(9124, 3)

    assert executed["path"] == "/usr/bin/gunicorn"
    assert executed["argv"][-1] == "app.pdf_controller:app"
    assert str(pdf_service_application.GUNICORN_CONFIG) in executed["argv"]
    assert pdf_service_application.os.environ["WORKERS"] == "3"
    assert pdf_service_application.os.environ["PORT"] == "9124"
    assert pdf_service_application.os.environ["METRICS_SERVER_ENABLED"] == "false"
