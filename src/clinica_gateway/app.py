"""FastAPI application factory for Clinica-Gateway."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinica_gateway.common.config import get_settings
from clinica_gateway.common.exceptions import GatewayError
from clinica_gateway.common.logging import setup_logging
from clinica_gateway.common.schemas import ErrorResponse, HealthResponse, ServiceStatus


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from clinica_gateway.deps import get_db
        db = get_db()
        await db.init()
        if settings.create_schema:
            await db.create_all()
        yield
        # Shutdown
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        status = 404 if exc.code == "NOT_FOUND" else 502 if exc.code.startswith("SOAP") else 500
        body = ErrorResponse(error=type(exc).__name__, code=exc.code, detail=exc.message)
        return JSONResponse(status_code=status, content=body.model_dump())

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    @app.get("/service-status", response_model=ServiceStatus)
    async def service_status():
        from clinica_gateway.deps import get_audit_service
        return get_audit_service().get_service_status()

    # Mount routers
    from clinica_gateway.audit.router import router as audit_router
    from clinica_gateway.studies.router import router as studies_router
    from clinica_gateway.subjects.router import router as subjects_router
    from clinica_gateway.forms.router import router as forms_router
    from clinica_gateway.events.router import router as events_router

    prefix = settings.api_prefix
    app.include_router(audit_router, prefix=f"{prefix}/audit", tags=["audit"])
    app.include_router(studies_router, prefix=f"{prefix}/studies", tags=["studies"])
    app.include_router(subjects_router, prefix=f"{prefix}/subjects", tags=["subjects"])
    app.include_router(forms_router, prefix=f"{prefix}/forms", tags=["forms"])
    app.include_router(events_router, prefix=f"{prefix}/events", tags=["events"])

    return app
