"""Shared fixtures: an in-process Mongo (mongomock-motor), a controllable clock and the profile service."""

from typing import Any, Dict, Optional

import pytest
from mongomock_motor import AsyncMongoMockClient

from app.db.schemas.profile_schemas import PAYLOAD_MODELS, ProfileDoc
from app.modules.profiles.cache import InMemoryProfileCache
from app.modules.profiles.repository import MongoProfileStore
from app.modules.profiles.service import ProfileService
from app.services.audit_service import AuditService


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_profile(
    owner_id: str,
    profile_type: str = "personal",
    data: Optional[Dict[str, Any]] = None,
    is_primary: bool = False,
    is_active: bool = False,
    profile_id: Optional[str] = None,
) -> ProfileDoc:
    payload = PAYLOAD_MODELS[profile_type].create(owner_id, data)
    return ProfileDoc(
        id=profile_id,
        owner_id=owner_id,
        profile_type=profile_type,
        is_primary=is_primary,
        is_active=is_active,
        payload=payload,
    )


@pytest.fixture
def db():
    return AsyncMongoMockClient()["rentals_test"]


@pytest.fixture
async def store(db) -> MongoProfileStore:
    profile_store = MongoProfileStore(db, collection_name="profiles")
    await profile_store.ensure_indexes()
    return profile_store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> InMemoryProfileCache:
    return InMemoryProfileCache(ttl_seconds=300, clock=clock)


@pytest.fixture
def audit(db) -> AuditService:
    return AuditService(collection=db["audit_logs"], enabled=True)


@pytest.fixture
def service(store: MongoProfileStore, cache: InMemoryProfileCache, audit: AuditService) -> ProfileService:
    return ProfileService(store=store, cache=cache, audit=audit, allow_member_edits=True)
