from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from app.routers import jobs, matching, progress, recommendations, resumes

# Import logging and middleware
from app.utils.logging_config import configure_for_environment, get_logger
from app.utils.exceptions import PipelineBaseException
from app.middleware.error_handlers import (
    ExceptionHandlerMiddleware,
    RequestLoggingMiddleware,
    PerformanceMiddleware,
    pipeline_exception_handler,
)
from app.services.runtime import get_services

# Configure logging first
configure_for_environment()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager"""
    # Startup
    logger.info("Resume Match API starting up...")
    services = app.dependency_overrides.get(get_services, get_services)()

    if services.settings.progress.backend != "memory":
        logger.info("Initializing database indexes...")
        try:
            from app.services.db import init_indexes
            await init_indexes()
            logger.info("Database indexes initialized successfully")
        except Exception as e:
            logger.warning(f"Database index initialization had issues: {e}")
            logger.info("Application will continue - some operations may be slower without indexes")

    await services.pool.start()
    logger.info("Resume Match API startup completed")

    yield

    # Shutdown
    logger.info("Resume Match API shutting down...")
    await services.pool.stop()
    logger.info("Resume Match API shutdown completed")


app = FastAPI(title="Resume Match API", version="1.0.0", lifespan=lifespan)
app.add_exception_handler(PipelineBaseException, pipeline_exception_handler)

# Add middleware in order (LIFO - Last In, First Out)
# Exception handler should be the outermost middleware
app.add_middleware(PerformanceMiddleware, slow_request_threshold=2.0)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(ExceptionHandlerMiddleware)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
@app.head("/")
async def root():
    """Root endpoint - handles both GET and HEAD requests for health checks"""
    logger.debug("Root endpoint accessed")
    return {"message": "Welcome to the Resume Match API", "version": "1.0.0", "status": "ok"}


@app.get("/health")
@app.head("/health")
async def health_check():
    """Health check endpoint - handles both GET and HEAD requests"""
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


# Include routers
app.include_router(resumes.router, prefix="/api/resumes", tags=["resumes"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])
app.include_router(progress.router, prefix="/api/progress", tags=["progress"])
app.include_router(matching.router, prefix="/api/match", tags=["matching"])
app.include_router(recommendations.router, prefix="/api", tags=["recommendations"])

logger.info("Resume Match API initialized successfully")
