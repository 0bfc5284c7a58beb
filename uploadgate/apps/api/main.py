from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from uploadgate.apps.api.errors import (
    http_exception_handler,
    org_predicate_exception_handler,
    unhandled_exception_handler,
    upload_gateway_exception_handler,
    validation_exception_handler,
)
from uploadgate.apps.api.response import API_VERSION
from uploadgate.apps.api.routes.health import router as health_router
from uploadgate.apps.api.routes.upload_requests import router as upload_requests_router
from uploadgate.apps.api.routes.vendor_portal import router as vendor_portal_router
from uploadgate.core.errors import UploadGatewayError
from uploadgate.core.logging import configure_logging
from uploadgate.persistence.guards import OrgPredicateError


logger = logging.getLogger(__name__)

_STAFF_HEADERS = ("X-Org-Id", "X-User-Id", "X-Role")
_PUBLIC_PATH_SUFFIXES = ("/status", "/files", "/finalize", "/complete")


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Upload Gateway API")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        # Path only: portal URLs carry the upload secret in the query string.
        logger.info(
            "http_request request_id=%s method=%s path=%s status=%s latency_ms=%.1f",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        # Portal responses are per-token; keep them out of shared caches.
        response.headers.setdefault("Cache-Control", "no-store")
        return response

    app.add_exception_handler(UploadGatewayError, upload_gateway_exception_handler)
    app.add_exception_handler(OrgPredicateError, org_predicate_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    # FastAPI's HTTPException subclasses Starlette's, so one handler covers both.
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for router in (health_router, upload_requests_router, vendor_portal_router):
        app.include_router(router, prefix=f"/{API_VERSION}")
        # Unversioned paths return bare payloads; /v1 wraps the same handlers in the envelope.
        app.include_router(router, include_in_schema=False)

    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title="Upload Gateway API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Document the asserted staff identity headers on staff-only operations.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(
            title="Upload Gateway API",
            version=API_VERSION,
            routes=app.routes,
        )
        schema["servers"] = [{"url": "http://localhost:8000"}]
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        for header in _STAFF_HEADERS:
            security_schemes[header] = {"type": "apiKey", "in": "header", "name": header}
        for path, operations in schema.get("paths", {}).items():
            if path == "/v1/health" or path.endswith(_PUBLIC_PATH_SUFFIXES):
                continue
            for operation in operations.values():
                operation.setdefault("security", [{header: [] for header in _STAFF_HEADERS}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
