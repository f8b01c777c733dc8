from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from database import database
from routes import auth, subscription, payments, activity, webhooks

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

from job_runner import (
    run_pending_payment_expiry,
    run_subscription_snapshot_regeneration,
)

# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests drive the app through TestClient with mocked collaborators
    if os.environ.get("PYTEST_RUNNING"):
        yield
        return

    # Startup
    logger.info("Starting DeDoc API")
    await database.connect()

    if not os.environ.get("PAYSTACK_SECRET_KEY"):
        logger.error("PAYSTACK_SECRET_KEY is not set. Payment initialization and webhooks will fail.")

    # Pending payment expiry sweep every 5 minutes
    scheduler.add_job(
        run_pending_payment_expiry,
        IntervalTrigger(minutes=5),
        id="pending_payment_expiry",
        name="Pending Payment Expiry",
        replace_existing=True
    )

    # Snapshot regeneration daily at 02:00 UTC
    scheduler.add_job(
        run_subscription_snapshot_regeneration,
        CronTrigger(hour=2, minute=0),
        id="subscription_snapshot_regeneration",
        name="Subscription Snapshot Regeneration",
        replace_existing=True
    )

    scheduler.start()
    logger.info("Background job scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down DeDoc API")
    scheduler.shutdown(wait=False)
    logger.info("Background job scheduler stopped")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="DeDoc API",
    description="Health assistant backend - accounts, subscriptions and Paystack payments",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router)
app.include_router(subscription.router)
app.include_router(payments.router)
app.include_router(activity.router)
app.include_router(webhooks.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "DeDoc API",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }

# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    content = {"detail": "Internal server error"}
    if os.getenv("ENVIRONMENT") == "development":
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
