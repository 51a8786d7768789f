"""
Health check and status endpoints
"""
from fastapi import APIRouter
from datetime import datetime
from app.config import get_settings
from app.models.insight import InsightModel
from app import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Get system status"""
    from app.scheduler import get_insight_scheduler

    scheduler = get_insight_scheduler()
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "models": {
            "default": settings.default_insight_model,
            "available": [m.value for m in InsightModel],
        },
        "backends": {
            "deepseek": bool(settings.deepseek_api_key),
            "claude": bool(settings.anthropic_api_key),
            "gemini": bool(settings.gemini_api_key),
        },
        "scheduler": {
            "enabled": settings.enable_scheduler,
            "running": scheduler.scheduler.running,
            "live_jobs": len(scheduler.registry),
            "timezone": scheduler.tz,
        },
        "timestamp": datetime.utcnow().isoformat()
    }
