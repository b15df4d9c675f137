import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.context import request_id_var, tenant_id_var
from app.core.errors import AppError
from app.core.logging import configure_logging
import app.models  # noqa: F401  # force model registration

from app.api.v1.admin import router as admin_router
from app.api.v1.assign_tenant import router as assign_tenant_router
from app.api.v1.auth import router as auth_router
from app.api.v1.invitations import router as invitations_router

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None) or request_id_var.get() or None


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


def create_application() -> FastAPI:
    configure_logging(settings.LOG_LEVEL, json_logs=settings.JSON_LOGS)

    app = FastAPI(title="School ERP API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        # browsers reject credentials with a wildcard origin
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Accept X-Request-ID from the client or mint one; echo it on the response."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)
        tenant_id_var.set("")
        request.state.request_id = request_id

        start = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "http.request.completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return response

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("request failed", extra={"code": exc.code, "error": exc.message})
        else:
            logger.info("request rejected", extra={"code": exc.code, "status_code": exc.status_code})
        body = exc.to_dict()
        body["requestId"] = _request_id(request)
        return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [{"field": _field_name(e.get("loc", ())), "message": e.get("msg", "")} for e in exc.errors()]
        fields = sorted({e["field"] for e in errors})
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": f"Missing or invalid fields: {', '.join(fields)}",
                "code": "ValidationError",
                "fields": fields,
                "details": errors,
                "requestId": _request_id(request),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error", extra={"path": request.url.path})
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "code": "InternalError",
                "requestId": _request_id(request),
            },
        )

    @app.get("/")
    def root():
        return {"status": "ok", "service": "school-erp"}

    # Routers
    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(invitations_router, prefix="/api/v1")
    app.include_router(admin_router, prefix="/api/v1")
    app.include_router(assign_tenant_router, prefix="/api")

    return app


app = create_application()
