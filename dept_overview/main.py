import asyncio
from contextlib import suppress
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dept_overview.db import create_tables
from dept_overview.dependencies import get_overview
from dept_overview.errors import ApiError, error_response
from dept_overview.logging_utils import setup_json_logging
from dept_overview.routers import departments
from dept_overview.services.overview import DepartmentOverview
from dept_overview.settings import get_cors_origins, get_log_level, get_settings

setup_json_logging(get_log_level())
logger = logging.getLogger("dept_overview.request")
startup_logger = logging.getLogger("dept_overview.startup")
settings = get_settings()


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message="Request body is invalid.",
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(departments.router)


@app.on_event("startup")
async def prepare_tables() -> None:
    if not settings.auto_create_tables:
        return
    await create_tables()
    startup_logger.info("tables_created")


@app.on_event("startup")
async def start_initial_refresh() -> None:
    if getattr(app.state, "initial_refresh_task", None) is not None:
        return
    app.state.initial_refresh_task = asyncio.create_task(get_overview().refresh())
    startup_logger.info("initial_refresh_started")


@app.on_event("shutdown")
async def stop_initial_refresh() -> None:
    task: asyncio.Task[Any] | None = getattr(app.state, "initial_refresh_task", None)
    if task is not None and not task.done():
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.initial_refresh_task = None


@app.get("/health")
def health(overview: DepartmentOverview = Depends(get_overview)) -> dict[str, Any]:
    return {
        "status": "ok",
        "overview_in_progress": overview.in_progress,
        "overview_department_count": len(overview.summaries),
        "overview_last_error": overview.last_error,
    }
