# app/api/v1/deps.py
# Shared FastAPI dependencies for the v1 API.

from typing import Annotated, Optional

from fastapi import Depends

from app.core.config import settings
from app.core.redis_client import get_redis_client
from app.db.mongo_client import get_database
from app.modules.profiles.cache import InMemoryProfileCache, ProfileCache, RedisProfileCache
from app.modules.profiles.repository import MongoProfileStore
from app.modules.profiles.service import ProfileService
from app.services.audit_service import audit_service

_profile_cache: Optional[ProfileCache] = None


def init_profile_cache() -> ProfileCache:
    """Builds the process-wide profile cache for the configured backend."""
    global _profile_cache
    if settings.PROFILE_CACHE_BACKEND == "redis":
        _profile_cache = RedisProfileCache(get_redis_client())
    else:
        _profile_cache = InMemoryProfileCache()
    return _profile_cache


def get_profile_cache() -> ProfileCache:
    if _profile_cache is None:
        return init_profile_cache()
    return _profile_cache


def get_profile_service(cache: Annotated[ProfileCache, Depends(get_profile_cache)]) -> ProfileService:
    store = MongoProfileStore(get_database())
    return ProfileService(store=store, cache=cache, audit=audit_service)


ProfileServiceDep = Annotated[ProfileService, Depends(get_profile_service)]
