"""
Insight Pipeline
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from app.config import get_settings
from app.utils.logger import log
from app import __version__

# Import routers
from app.api import health, insights, scheduled_jobs

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    # Initialize database
    try:
        from app.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    # Start the scheduler and rebuild timers for active jobs.
    # Single process only: every running instance fires every job.
    if settings.enable_scheduler:
        try:
            from app.scheduler import get_insight_scheduler
            scheduler = get_insight_scheduler()
            scheduler.start()
            scheduler.initialize()
            log.info("Scheduler started successfully")
        except Exception as e:
            log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    try:
        from app.services.insight_generation_service import get_insight_generation_service
        await get_insight_generation_service().drain()
    except Exception as e:
        log.error(f"Error waiting for pending insights: {str(e)}")

    if settings.enable_scheduler:
        try:
            from app.scheduler import get_insight_scheduler
            get_insight_scheduler().shutdown()
        except Exception as e:
            log.error(f"Scheduler shutdown error: {str(e)}")
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    AI Insight Generation

    Generates structured business insights (performance, competitive,
    opportunity, risk) from organization data using pluggable
    text-generation backends:
    - DeepSeek lite/pro
    - Claude and Gemini

    Insights are requested on demand or produced by recurring
    scheduled jobs (daily, weekly, monthly or a cron expression).
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(insights.router)
app.include_router(scheduled_jobs.router)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "app": settings.app_name,
        "version": __version__,
        "description": "AI Insight Generation",
        "docs": "/docs",
        "health": "/health",
        "status": "/status",
        "endpoints": {
            "generate_insight": "POST /insights/generate",
            "list_insights": "GET /insights",
            "get_insight": "GET /insights/{id}",
            "insight_feedback": "POST /insights/{id}/feedback",
            "list_scheduled_jobs": "GET /scheduled-insights",
            "create_scheduled_job": "POST /scheduled-insights",
            "update_scheduled_job": "PATCH /scheduled-insights/{id}",
            "delete_scheduled_job": "DELETE /scheduled-insights/{id}",
            "run_scheduled_job": "POST /scheduled-insights/{id}/run",
            "activate_scheduled_job": "POST /scheduled-insights/{id}/activate",
            "deactivate_scheduled_job": "POST /scheduled-insights/{id}/deactivate"
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
