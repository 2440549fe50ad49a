import os
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import settings
from .db import Base, engine
from .errors import WorkflowError, locale_from_header, render_message
from .logging import setup_logging, RequestIdMiddleware
from .routes.inventory import router as inventory_router
from .routes.notifications import router as notifications_router
from .routes.orders import router as orders_router, ws_router as orders_ws_router
from .routes.purchase_requests import router as purchase_requests_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_db:
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        Base.metadata.create_all(bind=engine)
    logger.info("startup_complete", app=settings.app_name, environment=settings.environment)
    yield
    logger.info("shutdown_complete", app=settings.app_name)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(WorkflowError)
    async def _workflow_error(request: Request, exc: WorkflowError):
        locale = locale_from_header(request.headers.get("accept-language"), settings.default_locale)
        if exc.http_status >= 500:
            logger.error("workflow_error", code=exc.code, path=request.url.path, context=exc.to_dict()["context"])
        return JSONResponse(
            status_code=exc.http_status,
            content={"detail": render_message(exc, locale), **exc.to_dict()},
        )

    # Routers
    app.include_router(orders_router)
    app.include_router(orders_ws_router)
    app.include_router(inventory_router)
    app.include_router(notifications_router)
    app.include_router(purchase_requests_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.environment}

    return app


app = create_app()
