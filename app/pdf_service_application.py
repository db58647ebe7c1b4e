import argparse
import logging
import os
import shutil
import sys
from datetime import datetime
from pathlib import Path

import uvicorn

GUNICORN_CONFIG = Path(__file__).resolve().parents[1] / "gunicorn.conf.py"
APP_IMPORT_STRING = "app.pdf_controller:app"


def setup_logging() -> Path:
    """
    Configure logging for the PDF render service with both file and console output.

    The function:
    - Sets log level from LOG_LEVEL environment variable (defaults to INFO)
    - Creates timestamped log files in the LOG_DIR directory (defaults to /opt/pdf-service/logs)
    - Configures both file and console logging handlers
    - Uses format: timestamp - logger name - log level - message

    The log files are not rotated and a new file is created on each service start.

    Returns:
        Path: The path to the created log file
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = Path(os.getenv("LOG_DIR", "/opt/pdf-service/logs"))
    log_dir.mkdir(parents=True, exist_ok=True)

    current_time = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_file = log_dir / f"pdf-service_{current_time}.log"

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # No rotation, the file is created immediately
    file_handler = logging.FileHandler(log_file, encoding="utf-8", delay=False)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    configured_level = getattr(logging, log_level, logging.INFO)  # Default to INFO if invalid
    root_logger.setLevel(configured_level)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Third-party loggers that set their own level
    for logger_name in ["playwright", "uvicorn", "uvicorn.error", "uvicorn.access"]:
        logging.getLogger(logger_name).setLevel(configured_level)

    root_logger.info("Logging initialized with level: %s", log_level)
    root_logger.info("Log file: %s", log_file)

    for handler in root_logger.handlers:
        handler.flush()

    return log_file


def start_server_single_worker(port: int) -> None:
    """Run uvicorn in-process; the lifespan owns the render manager and the metrics server."""
    uvicorn.run(APP_IMPORT_STRING, host="", port=port, log_config=None)


def start_server_multi_worker(port: int, workers: int) -> None:
    """
    Replace the current process with gunicorn running ``workers`` uvicorn workers.

    Every worker owns its own render manager and browser. Only one process can
    bind the metrics port, so the dedicated metrics server is disabled for workers.
    """
    gunicorn = shutil.which("gunicorn")
    if gunicorn is None:
        logging.error("gunicorn executable not found, falling back to a single worker")
        start_server_single_worker(port)
        return

    if os.environ.get("METRICS_SERVER_ENABLED", "true").lower() in ("true", "1", "yes", "on"):
        logging.warning("Metrics server is not supported with %d workers and has been disabled", workers)
    os.environ["METRICS_SERVER_ENABLED"] = "false"
    os.environ["PORT"] = str(port)
    os.environ["WORKERS"] = str(workers)

    sys.stdout.flush()
    sys.stderr.flush()
    os.execv(gunicorn, [gunicorn, "--config", str(GUNICORN_CONFIG), APP_IMPORT_STRING])


def _env_int(name: str, fallback: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return fallback
    try:
        return int(value)
    except ValueError:
        logging.warning("Invalid %s value '%s', using: %d", name, value, fallback)
        return fallback


def main() -> None:
    """
    Main entry point for the PDF render service.

    Parses command line arguments, initializes logging, and starts the server.
    PORT and WORKERS environment variables take precedence over --port and --workers.
    """
    parser = argparse.ArgumentParser(description="PDF render service")
    parser.add_argument("--port", default=9080, type=int, required=False, help="Service port")
    parser.add_argument("--workers", default=1, type=int, required=False, help="Number of worker processes")
    args = parser.parse_args()

    setup_logging()
    port = _env_int("PORT", args.port)
    workers = max(1, _env_int("WORKERS", args.workers))
    logging.info("PDF render service listening port: %d (workers: %d)", port, workers)

    if workers > 1:
        start_server_multi_worker(port, workers)
    else:
        start_server_single_worker(port)


if __name__ == "__main__":
    main()
