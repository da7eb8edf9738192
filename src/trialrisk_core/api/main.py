"""Trial risk FastAPI application."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import get_settings
from .routers import domain_data, notifications, tasks, thresholds

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("trialrisk-core")

settings = get_settings()
logger.info("Starting Trial Risk API")

app = FastAPI(
    title="Trial Risk API",
    description="Threshold findings, tasks and notifications for clinical trial data",
    version=__version__,
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

app.include_router(tasks.router, prefix="/api/v1/tasks")
app.include_router(notifications.router, prefix="/api/v1/notifications")
app.include_router(thresholds.router, prefix="/api/v1/thresholds")
app.include_router(domain_data.router, prefix="/api/v1/domain-data")


@app.get("/health")
@app.get("/api/v1/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}
