import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .db import Base, engine, SessionLocal
from .logging import setup_logging, RequestIdMiddleware, structlog
from .auth.router import router as auth_router, ensure_role
from .routes.bases import router as bases_router
from .routes.assets import router as assets_router
from .routes.assignments import router as assignments_router
from .routes.expenditures import router as expenditures_router
from .routes.transfers import router as transfers_router
from .routes.dashboard import router as dashboard_router
from .routes.audit import router as audit_router
from .services.errors import ServiceError
from .services.permissions import ALL_ROLES


logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Errors: clients read the message from "error"
    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log("service_error", code=exc.code, status=exc.status_code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    # Routers
    app.include_router(auth_router)
    app.include_router(bases_router)
    app.include_router(assets_router)
    app.include_router(assignments_router)
    app.include_router(expenditures_router)
    app.include_router(transfers_router)
    app.include_router(dashboard_router)
    app.include_router(audit_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # Metrics
    if settings.enable_metrics:
        Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        logger.info("startup", database=settings.database_url.split("@")[-1], receipt_step=settings.transfer_receipt_step)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            db = SessionLocal()
            try:
                for name in ALL_ROLES:
                    ensure_role(db, name)
                db.commit()
            finally:
                db.close()

    return app


app = create_app()
