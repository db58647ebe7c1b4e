"""
Gunicorn configuration for running the PDF render service with several workers.

Used by ``python -m app.pdf_service_application --workers N`` when N > 1.

Environment Variables:
    WORKERS: Number of worker processes (default: 1)
    WORKER_TIMEOUT: Worker timeout in seconds (default: 120)
    GRACEFUL_TIMEOUT: Graceful shutdown timeout in seconds (default: 30)
    KEEP_ALIVE: Keep-alive timeout in seconds (default: 5)
    PORT: Service port (default: 9080)
    LOG_LEVEL: Log level (default: INFO)

Notes:
    - Each worker runs its own RenderManager and therefore its own Chromium
    - Worker class is fixed to uvicorn.workers.UvicornWorker for async FastAPI support
    - The dedicated metrics server is disabled for workers, only one process can bind its port
"""

import os
from typing import Any

bind = f"0.0.0.0:{os.getenv('PORT', '9080')}"

workers = int(os.getenv("WORKERS", "1"))
worker_class = "uvicorn.workers.UvicornWorker"

# A render that launches a browser and retries may take a while
timeout = int(os.getenv("WORKER_TIMEOUT", "120"))

# Time for in-flight renders to finish and browsers to close on shutdown
graceful_timeout = int(os.getenv("GRACEFUL_TIMEOUT", "30"))

keepalive = int(os.getenv("KEEP_ALIVE", "5"))

loglevel = os.getenv("LOG_LEVEL", "INFO").lower()
accesslog = "-"  # stdout
errorlog = "-"  # stderr
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

proc_name = "pdf-render-service"

daemon = False
pidfile = None

# Browsers must be launched after fork: each worker creates its RenderManager in the lifespan
preload_app = False


def on_starting(server: Any) -> None:
    """Called just before the master process is initialized."""
    server.log.info("Starting Gunicorn with %d worker(s)", workers)


def when_ready(server: Any) -> None:
    """Called just after the server is started."""
    server.log.info("Gunicorn is ready. Listening on: %s", bind)


def worker_int(worker: Any) -> None:
    """Called when a worker receives SIGINT or SIGQUIT signal."""
    worker.log.info("Worker %s: received SIGINT/SIGQUIT, closing browsers and shutting down", worker.pid)


def worker_abort(worker: Any) -> None:
    worker.log.warning("Worker %s: received SIGABRT, aborting", worker.pid)


def post_fork(server: Any, worker: Any) -> None:
    """Called just after a worker has been forked."""
    server.log.info("Worker %s spawned (PID: %s)", worker.age, worker.pid)


def worker_exit(server: Any, worker: Any) -> None:
    server.log.info("Worker %s exited", worker.pid)


def on_exit(server: Any) -> None:
    """Called just before the master process exits."""
    server.log.info("Shutting down: master process exiting")
