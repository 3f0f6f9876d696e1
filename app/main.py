"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api import github_issues
from app.config import settings
from app.models.base import init_db
from app.scheduler import scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting GitHub Issue Operator")
    init_db()
    scheduler.start()
    yield
    # Shutdown
    logger.info("Stopping GitHub Issue Operator")
    scheduler.stop()


app = FastAPI(
    title="GitHub Issue Operator",
    description="Keep GitHub issues in sync with declared GithubIssue resources",
    version="1.0.0",
    lifespan=lifespan,
)

# Include API routers
app.include_router(github_issues.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "GitHub Issue Operator"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
