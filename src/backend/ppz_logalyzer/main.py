from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog
import uvicorn

from ppz_logalyzer.config.log_config import configure_logging
from ppz_logalyzer.config.settings import get_settings
from ppz_logalyzer.routers import processing, telemetry

settings = get_settings()
configure_logging(settings)
logger = structlog.get_logger(__name__)

app = FastAPI(title=settings.app_name, debug=settings.debug)


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    logger.info("Initializing PPZ Logalyzer services")
    await processing.schema_manager.initialize()
    logger.info("Services initialized successfully")


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up services on shutdown."""
    logger.info("Shutting down PPZ Logalyzer services")
    await processing.schema_manager.clear_cache()


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Adjust as needed for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Root endpoint
@app.get("/")
async def root():
    return {
        "service": "ppz-logalyzer",
        "status": "running",
        "description": "PaparazziUAV Log Analyzer Backend",
    }


@app.get("/health")
async def health_check():
    queue = await processing.file_processor.get_queue_status()
    return {"status": "healthy", "queued_tasks": sum(1 for t in queue if not t.status.is_terminal)}


app.include_router(processing.router, prefix="/api", tags=["processing"])
app.include_router(telemetry.router, prefix="/api", tags=["telemetry"])


def run():
    """Console entry point: serve the API with uvicorn."""
    uvicorn.run("ppz_logalyzer.main:app", host=settings.host, port=settings.port)
