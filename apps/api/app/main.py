from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.context import RequestContextMiddleware
from app.core.database import Database
from app.core.errors import register_exception_handlers
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.rate_limit import ApiRateLimitMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import configure_tracing
from app.staff.accounts import account_service


settings = get_settings()
configure_logging(settings)
configure_tracing(settings)
logger = logging.getLogger("app.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # settings are re-read so that the environment at startup wins over import time
    runtime_settings = get_settings()
    database = Database(runtime_settings.database_url)
    app.state.database = database
    if runtime_settings.auto_create_schema:
        database.create_schema()
    with database.session() as session:
        account_service.ensure_bootstrap_admin(session, runtime_settings)
    logger.info("system.started")
    try:
        yield
    finally:
        database.dispose()
        logger.info("system.stopped")


app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)

# added innermost first: CORS wraps everything, the rate limiter sits next to the routes
app.add_middleware(ApiRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "x-correlation-id", "Retry-After", "X-RateLimit-Remaining"],
)
register_exception_handlers(app)
app.include_router(api_router)

FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")
