# app/api/v1/endpoints/system.py
from datetime import datetime, timezone
import os
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from app.core.config import settings
from app.core.logging_setup import logger
from app.core.redis_client import get_redis_client
from app.db.mongo_client import ping_database

router = APIRouter()


class StatusResponse(BaseModel):
    project_name: str
    version: Optional[str]
    status: str
    database_status: str
    redis_status: str
    cache_backend: str
    checked_at: datetime


async def _redis_status() -> str:
    if not settings.REDIS_URL:
        return "not_configured"
    try:
        await get_redis_client().ping()
        return "connected"
    except Exception as e:
        logger.error(f"Status check: Redis ping failed: {e}")
        return "error"


@router.get("/status", response_model=StatusResponse, summary="Service and dependency status")
async def get_system_status():
    db_ok = await ping_database()
    redis_status = await _redis_status()
    # A broken Redis only matters when it backs the profile cache
    cache_ok = settings.PROFILE_CACHE_BACKEND != "redis" or redis_status == "connected"
    return StatusResponse(
        project_name=settings.APP_NAME,
        version=os.getenv("APP_VERSION"),
        status="operational" if db_ok and cache_ok else "degraded",
        database_status="connected" if db_ok else "error",
        redis_status=redis_status,
        cache_backend=settings.PROFILE_CACHE_BACKEND,
        checked_at=datetime.now(timezone.utc),
    )
