"""FastAPI application entry point."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docingest.arq_client import close_clients
from docingest.config import settings
from docingest.database import init_db
from docingest.logger import logger, setup_logging
from docingest.routers import ingestion
from docingest.telemetry import instrument_fastapi, setup_telemetry

# Setup logging
setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting application", service=settings.SERVICE_NAME)
    setup_telemetry(f"{settings.OTEL_SERVICE_NAME}-api", "1.0.0")
    try:
        init_db()
    except Exception as e:
        logger.error("Failed to initialize database", error=str(e))
        raise

    yield

    logger.info("Shutting down application")
    await close_clients()


app = FastAPI(
    title="Document Ingestion API",
    description="PDF intake, deduplication and ingestion job tracking",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

instrument_fastapi(app)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


app.include_router(ingestion.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "docingest.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL,
    )
