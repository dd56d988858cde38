"""Civic Core FastAPI application."""
import logging

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Base
from .config import get_settings
from .database import engine, get_db
from .routers import feed, issues, users

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("civic-core")

logger.info("Starting Civic Core API")

if settings.auto_create_schema:
    logger.warning("Creating database schema at startup; use alembic outside development")
    Base.metadata.create_all(bind=engine)

# Create FastAPI app
app = FastAPI(
    title="Civic Core API",
    description="Municipal issue reporting: submission, assignment and live progress tracking",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include all business logic routers with /api/v1 prefix
app.include_router(users.router, prefix="/api/v1")
app.include_router(issues.router, prefix="/api/v1")
app.include_router(feed.router, prefix="/api/v1")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "Civic Core API",
        "version": "1.0.0",
        "docs": "/docs",
        "description": "Municipal issue reporting and tracking",
    }


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Health check endpoint, including a database round trip."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="database unavailable")
    return {"status": "healthy"}
