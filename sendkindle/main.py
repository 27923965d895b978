from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from sendkindle.api.routes import router
from sendkindle.dependencies import get_conversion_service, get_settings, get_telemetry
from sendkindle.logging_config import configure_application_logging
from sendkindle.models.process_contracts import ProcessErrorResponse
from sendkindle.telemetry import elapsed_ms


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    try:
        yield
    finally:
        if get_conversion_service.cache_info().currsize:
            await get_conversion_service().aclose()


async def validation_error_handler(_: Request, exc: Exception) -> JSONResponse:
    message = "Invalid request body."
    if isinstance(exc, RequestValidationError):
        for error in exc.errors():
            raw_message = str(error.get("msg", "")).strip()
            if raw_message:
                message = raw_message.removeprefix("Value error, ")
                break
    return JSONResponse(
        status_code=400,
        content=ProcessErrorResponse(message=message).model_dump(),
    )


def create_app() -> FastAPI:
    app = FastAPI(title="Send to Kindle API", version="0.1.0", lifespan=app_lifespan)

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit(
            "http.request.start",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit(
                "http.request.error",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=elapsed_ms(started_at),
                error_type=type(exc).__name__,
            )
            raise
        else:
            response.headers["X-Request-ID"] = request_id
            telemetry.emit(
                "http.request.finish",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=elapsed_ms(started_at),
                status_code=response.status_code,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    return app


app = create_app()
