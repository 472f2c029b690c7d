from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
from typing import Optional
import time
import uuid
from datetime import datetime, timezone
from .config import Settings, settings as default_settings
from .db import Database
from .deps import get_current_user
from .errors import PersistenceError, ValidationError
from .jsonlog import json_log
from .routers.audit import router as audit_router
from .routers.auth import router as auth_router
from .routers.bills import router as bills_router
from .routers.parts import router as parts_router
from .routers.sales import router as sales_router

SERVICE_NAME = "carparts-backend"


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _install_exception_handlers(app: FastAPI, settings: Settings) -> None:
    def _with_error(content: dict, exc: Exception) -> dict:
        if settings.is_dev:
            content["error"] = str(exc)
        return content

    @app.exception_handler(ValidationError)
    def _validation_error(_req: Request, exc: ValidationError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(PersistenceError)
    def _persistence_error(req: Request, exc: PersistenceError):
        content = {"detail": exc.detail, "kind": exc.kind, "request_id": _current_request_id(req)}
        return JSONResponse(status_code=exc.status_code, content=content)

    # Map common DB constraint errors to 4xx so clients get actionable responses
    # instead of generic 500s.
    @app.exception_handler(pg_errors.ForeignKeyViolation)
    def _foreign_key_violation(_req: Request, exc: Exception):
        return JSONResponse(status_code=400, content=_with_error({"detail": "invalid reference"}, exc))

    @app.exception_handler(pg_errors.UniqueViolation)
    def _unique_violation(_req: Request, exc: Exception):
        return JSONResponse(status_code=409, content=_with_error({"detail": "conflict"}, exc))

    @app.exception_handler(pg_errors.CheckViolation)
    def _check_violation(_req: Request, exc: Exception):
        return JSONResponse(status_code=400, content=_with_error({"detail": "constraint violation"}, exc))

    @app.exception_handler(RequestValidationError)
    def _request_validation_error(_req: Request, exc: Exception):
        content = {"detail": "validation failed"}
        if hasattr(exc, "errors"):
            content["errors"] = [
                {"loc": list(e.get("loc") or []), "msg": e.get("msg"), "type": e.get("type")}
                for e in exc.errors()
            ]
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(Exception)
    def _unhandled_exception(req: Request, exc: Exception):
        rid = _current_request_id(req)
        json_log(
            "error",
            "http.request.unhandled",
            request_id=rid,
            method=req.method,
            path=req.url.path,
            error=str(exc),
        )
        return JSONResponse(status_code=500, content=_with_error({"detail": "internal error", "request_id": rid}, exc))


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    settings = settings or default_settings
    app = FastAPI(title="Car Parts Billing API", version=settings.api_version)
    app.state.settings = settings
    app.state.db = db or Database(settings)
    app.state.started_at = datetime.now(timezone.utc)

    _install_exception_handlers(app, settings)

    # Correlation id + basic structured request logging.
    @app.middleware("http")
    async def _request_logging(request: Request, call_next):
        rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
        request.state.request_id = rid
        started = time.time()
        path = request.url.path
        method = request.method
        client_ip = (request.client.host if request.client else None)
        try:
            response = await call_next(request)
        except Exception as exc:
            json_log(
                "error",
                "http.request.error",
                request_id=rid,
                method=method,
                path=path,
                client_ip=client_ip,
                duration_ms=int((time.time() - started) * 1000),
                error=str(exc),
            )
            raise

        response.headers["X-Request-Id"] = rid
        response.headers["X-Content-Type-Options"] = "nosniff"
        if path != "/health":
            json_log(
                "info",
                "http.request",
                request_id=rid,
                method=method,
                path=path,
                status_code=response.status_code,
                client_ip=client_ip,
                duration_ms=int((time.time() - started) * 1000),
            )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "Idempotency-Key", "X-Request-Id"],
    )
    app.include_router(auth_router)
    app.include_router(bills_router, dependencies=[Depends(get_current_user)])
    app.include_router(sales_router, dependencies=[Depends(get_current_user)])
    app.include_router(parts_router, dependencies=[Depends(get_current_user)])
    app.include_router(audit_router, dependencies=[Depends(get_current_user)])

    @app.on_event("startup")
    def _startup():
        app.state.db.open()
        try:
            app.state.db.ping()
            json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
        except Exception as exc:
            json_log("warning", "startup.db_probe_failed", env=settings.env, error=str(exc))

    @app.on_event("shutdown")
    def _shutdown():
        app.state.db.close()

    def _db_health():
        try:
            app.state.db.ping()
            return True, None
        except Exception as exc:
            return False, str(exc)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "api"}

    @app.get("/health")
    def health(req: Request):
        request_id = _current_request_id(req)
        ok, err = _db_health()
        content = {
            "status": "ok" if ok else "degraded",
            "env": settings.env,
            "db": "ok" if ok else "down",
            "service": SERVICE_NAME,
            "version": settings.api_version,
            "started_at": app.state.started_at.isoformat(),
            "request_id": request_id,
        }
        if not ok:
            if settings.is_dev:
                content["error"] = err
            return JSONResponse(status_code=503, content=content)
        return content

    @app.get("/meta")
    def meta():
        return {
            "service": SERVICE_NAME,
            "version": settings.api_version,
            "env": settings.env,
            "uptime_seconds": int((datetime.now(timezone.utc) - app.state.started_at).total_seconds()),
            "started_at": app.state.started_at.isoformat(),
        }

    return app


app = create_app()
