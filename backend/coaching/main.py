import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from coaching.config import get_settings
from coaching.database import init_db
from coaching.errors import register_error_handlers
from coaching.routers.auth import router as auth_router
from coaching.routers.checkout import router as checkout_router
from coaching.routers.subscription import router as subscription_router
from coaching.routers.stripe_webhook import router as stripe_webhook_router
from coaching.routers.admin import router as admin_router
from coaching.tasks.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and scheduler on startup."""
    logger.info("Starting up... Initializing database")
    init_db()
    if settings.scheduler_enabled:
        logger.info("Starting token sweep scheduler...")
        start_scheduler()
    yield
    logger.info("Shutting down...")
    stop_scheduler()


app = FastAPI(
    title="Coaching Subscriptions API",
    description="Orders, account activation and subscriptions for coaching plans",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Include routers
app.include_router(auth_router, prefix=settings.api_prefix)
app.include_router(checkout_router, prefix=settings.api_prefix)
app.include_router(subscription_router, prefix=settings.api_prefix)
app.include_router(stripe_webhook_router, prefix=settings.api_prefix)
app.include_router(admin_router, prefix=settings.api_prefix)


@app.get("/")
def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": "Coaching Subscriptions API",
        "version": "1.0.0"
    }
