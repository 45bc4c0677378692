"""
Main FastAPI application for the Visit Trust service
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from visit_trust.config import settings
from visit_trust.api import system, validation, security
from visit_trust.db.database import init_db

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.APP_DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting Visit Trust service...")
    if settings.SECURITY_STORE == "database":
        try:
            init_db()
            logger.info("Security tables ready")
        except Exception as e:
            logger.error(f"Error initializing database: {e}")

    yield

    # Shutdown
    logger.info("Shutting down Visit Trust service...")


app = FastAPI(
    title="Visit Trust Service",
    description="Submission validation, GPS fraud detection and security monitoring",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(system.router, tags=["System"])
app.include_router(validation.router, prefix="/validation", tags=["Validation"])
app.include_router(security.router, prefix="/security", tags=["Security"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Visit Trust",
        "version": "1.0.0",
        "status": "running"
    }
