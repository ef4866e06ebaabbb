from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import account, clients, plans, webhooks

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

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

from job_runner import run_contract_expiry_check, run_financial_status_refresh


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.getenv("PYTEST_RUNNING"):
        # Tests patch database.get_db; no MongoDB or scheduler
        yield
        return

    logger.info("Starting CRM Billing & Access API")
    await database.connect()

    # Daily financial status refresh at 03:00 UTC (overdue days roll over at midnight)
    scheduler.add_job(
        run_financial_status_refresh,
        CronTrigger(hour=3, minute=0),
        id="financial_status_refresh",
        name="Client Financial Status Refresh",
        replace_existing=True
    )
    # Contract expiry notices (30 / 60 days ahead) once a day
    scheduler.add_job(
        run_contract_expiry_check,
        CronTrigger(hour=8, minute=0),
        id="contract_expiry_check",
        name="Contract Expiry Notices",
        replace_existing=True
    )
    scheduler.start()
    logger.info("Background job scheduler started")

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    await database.close()
    logger.info("Shutting down CRM Billing & Access API")


app = FastAPI(
    title="CRM Billing & Access API",
    description="Client financial status, contract timelines, trial gating and plan quotas",
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
app.include_router(account.router)
app.include_router(clients.router)
app.include_router(plans.router)
app.include_router(plans.admin_router)
app.include_router(webhooks.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "CRM Billing & Access API",
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

# Validation error handler: log request_id + errors for debugging
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(errors), "request_id": request_id},
    )


def jsonable_errors(errors):
    return [{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in errors]


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
