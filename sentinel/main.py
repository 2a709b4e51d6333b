import logging
import os
from datetime import datetime, timezone
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.templating import Jinja2Templates
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from sentinel.core.config import Settings, get_settings
from sentinel.core.database import MongoDatabase
from sentinel.routers.analytics import router as analytics_router
from sentinel.routers.auth import router as auth_router
from sentinel.routers.contact import router as contact_router
from sentinel.routers.security import router as security_router
from sentinel.security.classifier import RequestClassifier, default_rules
from sentinel.security.counter_store import CounterStore, build_counter_store
from sentinel.security.rate_limiter import RateLimiter
from sentinel.security.request_gate import RequestGateMiddleware
from sentinel.services.container import build_services
from sentinel.utils.background import drain
from sentinel.utils.timing_middleware import TimingMiddleware

logger = logging.getLogger(__name__)

template_dir = os.path.join(os.path.dirname(__file__), "templates")
templates = Jinja2Templates(directory=template_dir)


def configure_logging():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("performance").setLevel(logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_app(settings: Optional[Settings] = None, database=None,
               counter_store: Optional[CounterStore] = None) -> FastAPI:
    """
    Build the portfolio backend.

    Args:
        settings: overrides the environment-derived settings
        database: anything exposing .visits and .threats collections; when
            omitted a MongoDatabase is connected on startup
        counter_store: rate limit counter backend; defaults to RATE_LIMIT_BACKEND
    """
    settings = settings or get_settings()
    app = FastAPI(title="Portfolio Sentinel")

    app.state.settings = settings
    app.state.rate_limiter = RateLimiter(counter_store or build_counter_store(settings))
    app.state.classifier = RequestClassifier(default_rules(settings.extra_scanner_agents))
    app.state.services = None
    app.dependency_overrides[get_settings] = lambda: settings

    # Added innermost first: timing wraps CORS, CORS wraps the gate
    app.add_middleware(RequestGateMiddleware, settings=settings, classifier=app.state.classifier)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Accept", "Content-Type", "Authorization", "X-Requested-With", "Origin"],
    )
    app.add_middleware(TimingMiddleware)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"💥 Unhandled exception in {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "Portfolio Sentinel",
            "database": "connected" if app.state.services is not None else "unavailable",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.environment,
        }

    @app.get("/metrics")
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/forbidden", response_class=HTMLResponse)
    async def forbidden_page(request: Request):
        return templates.TemplateResponse(
            "forbidden.html",
            {"request": request, "timestamp": datetime.now(timezone.utc).isoformat()},
            status_code=403,
        )

    app.include_router(security_router, prefix="/api/analytics/security", tags=["security"])
    app.include_router(analytics_router, prefix="/api/analytics", tags=["analytics"])
    app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
    app.include_router(contact_router, prefix="/api/contact", tags=["contact"])

    @app.on_event("startup")
    async def startup_event():
        logger.info("🚀 Starting Portfolio Sentinel...")
        db = database
        if db is None:
            mongo = MongoDatabase(settings)
            await mongo.connect()
            app.state.mongo = mongo
            if mongo.db is None:
                logger.error("❌ No database client; analytics and visit logging are disabled")
                return
            db = mongo
        app.state.services = build_services(db, settings)
        logger.info(f"✅ Sentinel started (rate limit backend: {settings.rate_limit_backend})")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("🔄 Shutting down Portfolio Sentinel...")
        await drain()
        mongo = getattr(app.state, "mongo", None)
        if mongo is not None:
            await mongo.disconnect()
        await app.state.rate_limiter.store.close()
        logger.info("✅ Shutdown completed successfully")

    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    logger.info(f"Starting server on port {settings.port}")
    uvicorn.run("sentinel.main:app", host="0.0.0.0", port=settings.port, log_level="info")
