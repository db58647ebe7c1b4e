import contextlib
import logging
import os
import platform
from collections.abc import AsyncGenerator
from importlib import metadata
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaValidationError

from app.errors import ValidationError, first_line
from app.metrics_server import MetricsServer, get_metrics_port, is_metrics_server_enabled
from app.render_manager import RenderManager
from app.sanitization import sanitize_filename, sanitize_for_logging, sanitize_url_for_logging
from app.schemas import (
    BrowserStatusSchema,
    ErrorSchema,
    HealthSchema,
    RenderMetricsSchema,
    RenderRequest,
    ServiceStatusSchema,
    VersionSchema,
)

SERVICE_NAME = "PDF Generator"
RESTART_MESSAGE = "Browser service restarted successfully"

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app_instance: FastAPI) -> AsyncGenerator[None]:
    """
    Manage the lifecycle of the render manager and the metrics server.

    The render manager is created here unless one was handed to create_app().
    With the shared strategy it launches Chromium right away; if that fails the
    application does not start (fail-fast behavior for containerized environments).
    On shutdown every browser the manager still holds is closed.
    """
    render_manager: RenderManager | None = getattr(app_instance.state, "render_manager", None)
    if render_manager is None:
        render_manager = RenderManager()
        app_instance.state.render_manager = render_manager

    logger.info("Starting render manager...")
    await render_manager.start()
    logger.info("Render manager started successfully")

    metrics_server: MetricsServer | None = None
    if is_metrics_server_enabled():
        metrics_server = MetricsServer(render_manager=render_manager, port=get_metrics_port())
        try:
            await metrics_server.start()
        except Exception as e:  # noqa: BLE001
            logger.error("Failed to start metrics server: %s", e)
            metrics_server = None

    yield  # Application runs here

    try:
        logger.info("Closing browsers...")
        await render_manager.cleanup()
    except Exception as e:  # noqa: BLE001
        logger.error("Error closing browsers: %s", e)

    if metrics_server is not None:
        try:
            await metrics_server.stop()
        except Exception as e:  # noqa: BLE001
            logger.error("Error stopping metrics server: %s", e)


def get_render_manager(request: Request) -> RenderManager:
    """
    Return the RenderManager attached to the application.

    Note:
        This is intended for dependency injection in FastAPI endpoints.
    """
    return request.app.state.render_manager


router = APIRouter()


@router.post(
    "/render",
    responses={
        200: {"content": {"application/pdf": {}}, "description": "PDF file rendered from the provided HTML or URL"},
        400: {"model": ErrorSchema, "description": "Invalid Input"},
        500: {"model": ErrorSchema, "description": "PDF Rendering Error"},
    },
    summary="Render HTML or URL to PDF",
    description="Accepts a JSON body with either html or url (html wins when both are given) and returns the rendered PDF.",
    operation_id="renderPdf",
    tags=["render"],
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": RenderRequest.model_json_schema()}},
        }
    },
)
async def render(request: Request, render_manager: Annotated[RenderManager, Depends(get_render_manager)]) -> Response:
    """
    Render the requested document to a PDF attachment.
    """
    logger.info("PDF render requested")
    try:
        try:
            payload = await request.json()
        except ValueError as e:
            logger.warning("Request body is not valid JSON: %s", first_line(e))
            return __error_response(f"Invalid request body: {first_line(e)}", 400)

        try:
            render_request = RenderRequest.model_validate(payload)
            spec = render_request.to_content_spec()
        except SchemaValidationError as e:
            logger.warning("Invalid render request: %s", __describe_schema_errors(e))
            return __error_response(f"Invalid request body: {__describe_schema_errors(e)}", 400)
        except ValidationError as e:
            logger.warning("Invalid render request: %s", e)
            return __error_response(str(e), 400)

        if spec.is_html:
            logger.debug("Rendering HTML body of size: %d characters", len(render_request.html or ""))
        else:
            logger.debug("Rendering URL: %s", sanitize_url_for_logging(render_request.url))

        result = await render_manager.render(spec)
        if not result.success or result.pdf is None:
            return __error_response(result.error or "Failed to generate PDF", 500)

        return __create_response(sanitize_filename(render_request.filename), result.pdf)

    except Exception as e:
        logger.error("Unexpected error in PDF render: %s", e, exc_info=True)
        return __error_response("Internal server error", 500)


@router.get(
    "/render",
    response_model=ServiceStatusSchema,
    response_model_exclude_none=True,
    responses={503: {"model": ErrorSchema, "description": "Service is unhealthy"}},
    summary="Render service status",
    description="Returns the browser status. With action=restart the browser is discarded first and relaunched on the next render.",
    operation_id="getRenderStatus",
    tags=["render"],
)
async def render_status(
    render_manager: Annotated[RenderManager, Depends(get_render_manager)],
    action: str | None = Query(None, description="Use 'restart' to discard the current browser"),
) -> Response:
    """
    Report browser status, restarting the browser first when requested.
    """
    try:
        if action == "restart":
            logger.info("Browser restart requested")
            await render_manager.force_restart()
            body = ServiceStatusSchema(service=SERVICE_NAME, status="restarted", browser=__browser_status(render_manager), message=RESTART_MESSAGE)
        else:
            if action:
                logger.debug("Ignoring unknown action: %s", sanitize_for_logging(action, max_length=50))
            body = ServiceStatusSchema(service=SERVICE_NAME, status="healthy", browser=__browser_status(render_manager))
        return JSONResponse(body.model_dump(exclude_none=True))
    except Exception as e:  # noqa: BLE001
        logger.error("Render status check failed: %s", e, exc_info=True)
        return __error_response("Service unavailable", 503)


@router.get(
    "/health",
    summary="Health check",
    description="Returns health status with optional detailed metrics. Use ?detailed=true for JSON response with metrics.",
    operation_id="getHealth",
    tags=["meta"],
    response_model=None,
    responses={
        200: {
            "content": {
                "text/plain": {"example": "OK"},
                "application/json": {
                    "schema": HealthSchema.model_json_schema(),
                },
            },
            "description": "Service is healthy",
        },
        503: {
            "content": {
                "text/plain": {"example": "Service Unavailable"},
                "application/json": {
                    "schema": HealthSchema.model_json_schema(),
                },
            },
            "description": "Service is unhealthy",
        },
    },
)
async def health(
    render_manager: Annotated[RenderManager, Depends(get_render_manager)],
    detailed: bool = Query(False, description="Return detailed JSON response with metrics"),
) -> Response:
    """
    Health check endpoint that verifies the render manager and its browsers.

    Args:
        detailed: If True, returns detailed JSON response with metrics. If False, returns simple text response.

    Returns:
        - Simple mode: 200 with "OK" text or 503 with "Service Unavailable" text
        - Detailed mode: 200/503 with JSON containing status, browser status and metrics
    """
    healthy = render_manager.health_check()

    if detailed:
        health_response = HealthSchema(
            status="healthy" if healthy else "unhealthy",
            version=os.environ.get("PDF_SERVICE_VERSION", "unknown"),
            chromium_version=render_manager.get_version(),
            browser=__browser_status(render_manager),
            metrics=RenderMetricsSchema(**render_manager.get_metrics()),  # type: ignore[arg-type]
        )
        return Response(
            content=health_response.model_dump_json(),
            media_type="application/json",
            status_code=200 if healthy else 503,
        )

    if healthy:
        return Response("OK", media_type="text/plain", status_code=200)
    return Response("Service Unavailable", media_type="text/plain", status_code=503)


@router.get(
    "/version",
    response_model=VersionSchema,
    summary="Service version information",
    description="Returns versions of Python, Playwright, the service itself, build timestamp, and Chromium.",
    operation_id="getVersion",
    tags=["meta"],
)
async def version(render_manager: Annotated[RenderManager, Depends(get_render_manager)]) -> dict[str, str | None]:
    """
    Get version information
    """
    logger.info("Version endpoint called")
    version_info = {
        "python": platform.python_version(),
        "playwright": __playwright_version(),
        "pdfService": os.environ.get("PDF_SERVICE_VERSION"),
        "timestamp": os.environ.get("PDF_SERVICE_BUILD_TIMESTAMP"),
        "chromium": render_manager.get_version(),
    }
    logger.debug("Version info: %s", version_info)
    return version_info


def __browser_status(render_manager: RenderManager) -> BrowserStatusSchema:
    return BrowserStatusSchema(**render_manager.status().as_dict())


def __playwright_version() -> str | None:
    try:
        return metadata.version("playwright")
    except metadata.PackageNotFoundError:
        return None


def __describe_schema_errors(e: SchemaValidationError) -> str:
    parts = []
    for error in e.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(parts)


def __create_response(filename: str, output_pdf: bytes) -> Response:
    logger.debug("Creating response with filename: %s", filename)
    response = Response(output_pdf, media_type="application/pdf", status_code=200)
    response.headers.append("Content-Disposition", f'attachment; filename="{filename}"')
    response.headers.append("Python-Version", platform.python_version())
    response.headers.append("Pdf-Service-Version", os.environ.get("PDF_SERVICE_VERSION", ""))
    return response


def __error_response(message: str, status_code: int) -> JSONResponse:
    body: dict[str, Any] = ErrorSchema(error=message).model_dump()
    return JSONResponse(body, status_code=status_code)


def create_app(manager: RenderManager | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        manager: RenderManager to serve requests with. If None, one configured
            from environment variables is created when the application starts.
    """
    application = FastAPI(
        title="PDF Render Service API",
        version="1.0.0",
        openapi_url="/static/openapi.json",
        docs_url="/api/docs",
        openapi_version="3.1.0",
        lifespan=lifespan,
    )
    if manager is not None:
        application.state.render_manager = manager
    application.include_router(router)
    return application


app = create_app()
