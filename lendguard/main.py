"""
LendGuard: FastAPI Application Entry Point

POST /v1/auth/login              → bearer token
POST /v1/assessments/generate    → risk decision, persisted + audited
GET  /v1/audit/logs              → compliance ledger
GET  /v1/config/risk             → active risk configuration
PATCH /v1/identities/{id}/unlock → lift a lockout (ADMIN)
GET  /v1/risk/health             → health check
GET  /metrics                    → Prometheus
GET  /docs                       → OpenAPI / Swagger UI
"""
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from lendguard.api.assessment_endpoint import router as assessment_router
from lendguard.api.audit_endpoint import router as audit_router
from lendguard.api.auth_endpoint import router as auth_router
from lendguard.api.config_endpoint import router as config_router
from lendguard.api.identity_endpoint import router as identity_router
from lendguard.api.risk_endpoint import router as risk_router
from lendguard.core.clock import Clock, utcnow
from lendguard.core.config import Settings, get_settings
from lendguard.core.errors import LendGuardError, ValidationError
from lendguard.repositories.base import Store
from lendguard.services.container import bootstrap, build_services

_DEV = get_settings().app_env == "development"

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        *([] if _DEV else [structlog.processors.format_exc_info]),
        structlog.dev.ConsoleRenderer() if _DEV else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(get_settings().log_level),
)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = app.state.services
    logger.info(
        "lendguard_starting",
        engine_version=services.settings.engine_version,
        store=type(services.store).__name__,
    )
    await bootstrap(services)
    yield
    await services.store.close()
    logger.info("lendguard_shutting_down")


# ═══════════════════════════════════════════════════════════════
# Error mapping
# ═══════════════════════════════════════════════════════════════

async def handle_domain_error(request: Request, exc: LendGuardError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
    else:
        logger.info("request_rejected", path=request.url.path, code=exc.code, status=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    error = ValidationError(field or "request", first.get("msg", "invalid request"))
    return JSONResponse(status_code=error.status_code, content=error.payload())


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    # Operator logs only; never echoed to the client or the audit ledger
    logger.exception("unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": "Internal server error"},
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    clock: Clock = utcnow,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="LendGuard",
        description="Loan risk decisions with account security and a compliance audit ledger",
        version=settings.engine_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.services = build_services(settings, store=store, clock=clock)

    # ── CORS (officer front-end + internal tools) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten in production
        allow_methods=["POST", "GET", "PATCH"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LendGuardError, handle_domain_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)

    # ── Prometheus metrics ──
    app.mount("/metrics", make_asgi_app())

    # ── Routes ──
    app.include_router(auth_router)
    app.include_router(identity_router)
    app.include_router(assessment_router)
    app.include_router(audit_router)
    app.include_router(config_router)
    app.include_router(risk_router)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "service": settings.app_name,
            "version": settings.engine_version,
            "docs": "/docs",
            "login": "POST /v1/auth/login",
        }

    return app


app = create_app()
