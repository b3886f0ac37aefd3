"""FastAPI application for the Mohtawa API."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response

from mohtawa.api import routes
from mohtawa.api.dependencies import api_key_header, verify_api_key
from mohtawa.api.errors import to_http_exception
from mohtawa.app_version import get_app_version
from mohtawa.errors import DomainError
from mohtawa.observability.logging import get_logger, request_id_var
from mohtawa.services.context import AppContext, build_context, close_context
from mohtawa.workflows.engine import ExecutionEngine

logger = get_logger(__name__)


def create_app(context: AppContext | None = None) -> FastAPI:
    """Build the app.

    With ``context`` the app uses that AppContext as-is and does not close it;
    otherwise the lifespan builds one from settings and disposes it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        from mohtawa.observability import init_observability

        init_observability()
        logger.info("api_starting")

        owns_context = context is None
        ctx = context or await build_context()
        app.state.ctx = ctx
        app.state.engine = ExecutionEngine(ctx)

        yield

        logger.info("api_stopping")
        await app.state.engine.shutdown()
        if owns_context:
            await close_context(ctx)

    app = FastAPI(
        title="Mohtawa API",
        description="Workflow step scheduler and EDL render pipeline",
        version=get_app_version(),
        lifespan=lifespan,
    )
    if context is not None:
        app.state.ctx = context
        app.state.engine = ExecutionEngine(context)

    @app.middleware("http")
    async def request_id_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Manage the X-Request-ID header and contextvar propagation."""
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        token = request_id_var.set(request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request_complete",
            path=str(request.url.path),
            method=request.method,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
            request_id=request_id,
        )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-ms"] = f"{duration_ms:.2f}"
        return response

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Return consistent error envelope."""
        detail = exc.detail
        if isinstance(detail, dict):
            error_code = detail.get("error", "http_error")
        else:
            error_code = "http_error"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": error_code, "detail": detail},
            headers=exc.headers,
        )

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        return await http_exception_handler(request, to_http_exception(exc))

    auth_deps = [Depends(verify_api_key)]
    app.include_router(routes.health.router)  # public liveness probe
    app.include_router(routes.runs.router, prefix="/v1/runs", dependencies=auth_deps)
    app.include_router(routes.projects.router, prefix="/v1/projects", dependencies=auth_deps)
    app.include_router(routes.renders.router, prefix="/v1/renders", dependencies=auth_deps)
    app.include_router(routes.storage.router, prefix="/v1/storage", dependencies=auth_deps)
    return app


app = create_app()


__all__ = ["app", "api_key_header", "create_app", "verify_api_key"]
