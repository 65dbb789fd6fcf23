# backend/app/api/v1/api.py

from fastapi import APIRouter

from app.api.v1.endpoints import profiles_api, system

api_router = APIRouter()

api_router.include_router(system.router, tags=["System"])
api_router.include_router(profiles_api.router, prefix="/profiles", tags=["Profiles"])
