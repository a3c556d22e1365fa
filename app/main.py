from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
import asyncio
import logging
import uuid

from .config import settings
from .database import create_tables, SessionLocal
from .utils.logging_config import setup_logging, set_request_context
from .utils.rate_limiter import limiter

from .routers import stripe_webhook, passes, payment_intents, webhook_subscriptions, cron, health

setup_logging(level=settings.log_level, json_format=settings.log_json)
logger = logging.getLogger(__name__)


def run_delivery_pass() -> dict:
    """One webhook delivery pass on its own session"""
    from .services.webhook_delivery import WebhookDeliveryWorker

    db = SessionLocal()
    try:
        return WebhookDeliveryWorker(db).run_once()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("🚀 Starting day-pass backend...")
    logger.info(f"📍 Environment: {settings.environment}")
    logger.info(f"🔐 CORS Origins: {settings.cors_origins}")

    create_tables()
    logger.info("✅ Database ready")

    if not settings.stripe_secret_key:
        logger.warning("⚠️  STRIPE_SECRET_KEY is not set; checkout and webhooks will fail")

    # ==========================================
    # START BACKGROUND WEBHOOK DELIVERY WORKER
    # ==========================================
    worker_task = None
    worker_logger = logging.getLogger("webhook_worker")

    async def run_delivery_worker():
        poll_interval = settings.worker_poll_interval
        worker_logger.info(f"🔄 Webhook delivery worker started (interval: {poll_interval}s)")

        while True:
            try:
                stats = await asyncio.to_thread(run_delivery_pass)
                pending, retries = stats["pending"], stats["retries"]
                if pending["events"] or retries["retried"]:
                    worker_logger.info(
                        f"Worker: events {pending['events']} "
                        f"({pending['delivered']}✓/{pending['failed']}✗/{pending['retrying']}↻) | "
                        f"retries {retries['retried']} "
                        f"({retries['delivered']}✓/{retries['failed']}✗/{retries['retrying']}↻)"
                    )
            except Exception as e:
                worker_logger.error(f"Worker error: {e}")

            await asyncio.sleep(poll_interval)

    if settings.worker_enabled:
        worker_task = asyncio.create_task(run_delivery_worker())
    else:
        logger.info("⚠️  In-process worker disabled; use /api/cron/webhook-delivery or worker.py")

    yield

    logger.info("👋 Shutting down day-pass backend...")
    if worker_task:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
        logger.info("🔄 Webhook delivery worker stopped")


app = FastAPI(
    title="Day Pass Backend API",
    description="Day passes and access PINs for self-service sites",
    version="1.0.0",
    lifespan=lifespan
)

# Rate limiter state
app.state.limiter = limiter


# ================================
# CORS MIDDLEWARE - MUST BE FIRST!
# ================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# Security Headers Middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# Add other middleware AFTER CORS
app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


# Rate limit handler
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"error": "Too many requests. Please try again later."}
    )


# Include routers
app.include_router(stripe_webhook.router)
app.include_router(passes.router)
app.include_router(payment_intents.router)
app.include_router(webhook_subscriptions.router)
app.include_router(cron.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {
        "message": "Day Pass Backend API",
        "version": "1.0.0",
        "docs": "/docs",
        "status": "running"
    }
