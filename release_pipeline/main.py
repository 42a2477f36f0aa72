"""
Main FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import register_exception_handlers, router
from .core.config import settings
from .core.database import async_session_maker, create_tables, engine
from .services import (
    ChunkStore,
    ReleaseCatalogWriter,
    SessionJanitor,
    SessionManager,
    StorageService,
    UploadPipeline,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_pipeline() -> tuple[UploadPipeline, SessionJanitor]:
    """Wire the production components from settings"""
    sessions = SessionManager()
    chunks = ChunkStore()
    storage = StorageService()
    catalog = ReleaseCatalogWriter(async_session_maker)
    pipeline = UploadPipeline(sessions, chunks, storage, catalog)
    janitor = SessionJanitor(sessions, chunks)
    return pipeline, janitor


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown"""
    # Startup
    logger.info("🚀 Starting Release Upload Pipeline...")

    # Initialize database
    await create_tables()
    logger.info("✅ Database tables created/verified")

    pipeline, janitor = build_pipeline()

    # Initialize MinIO
    pipeline.storage.ensure_bucket_exists()

    app.state.pipeline = pipeline
    janitor.start()

    logger.info(f"🌐 Server ready at http://{settings.SERVER_HOST}:{settings.SERVER_PORT}")
    logger.info(f"📖 API docs at http://{settings.SERVER_HOST}:{settings.SERVER_PORT}/docs")

    yield

    # Shutdown
    logger.info("🛑 Shutting down Release Upload Pipeline...")
    await janitor.stop()
    await engine.dispose()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_TITLE,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.APP_TITLE,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
