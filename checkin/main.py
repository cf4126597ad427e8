"""Event Check-in Validator Web Application."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from checkin.biometrics.matcher import init_matcher
from checkin.core.config import settings
from checkin.core.database import create_db_and_tables
from checkin.core.scheduler import shutdown_scheduler, start_scheduler
from checkin.routes import attempts, biometrics, checkins, enrollment

# Configure logging
log_dir = Path.home() / ".logs" / "checkin"
log_dir.mkdir(parents=True, exist_ok=True)
log_file = log_dir / "latest.log"

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    filename=str(log_file),
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    # Startup
    logger.info("Starting Event Check-in Validator")
    create_db_and_tables()
    init_matcher()
    start_scheduler()
    yield
    # Shutdown
    shutdown_scheduler()
    logger.info("Event Check-in Validator shut down")


app = FastAPI(
    title=settings.app_name,
    description="Validates event check-ins from face matches, QR codes and manual codes",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS for check-in stations
origins = (
    ["*"]
    if settings.allowed_origins == "*"
    else [o.strip() for o in settings.allowed_origins.split(",")]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(biometrics.router)
app.include_router(checkins.router)
app.include_router(enrollment.router)
app.include_router(attempts.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}
