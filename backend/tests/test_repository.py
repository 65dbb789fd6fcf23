"""Tests for MongoProfileStore against an in-process Mongo."""

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from app.modules.profiles.exceptions import DuplicateProfileError
from app.modules.profiles.repository import PRIMARY_MARKER, MongoProfileStore
from conftest import make_profile


async def raw_doc(db, profile_id: str) -> dict:
    return await db["profiles"].find_one({"_id": ObjectId(profile_id)})


class TestCreateAndFind:
    async def test_create_assigns_id(self, store: MongoProfileStore) -> None:
        created = await store.create(make_profile("o1", is_primary=True, is_active=True))
        assert ObjectId.is_valid(created.id)
        found = await store.find_by_id(created.id)
        assert found.owner_id == "o1"
        assert found.profile_type == "personal"
        assert found.is_primary and found.is_active
        assert found.payload.trust_score.score == 50

    async def test_stored_document_is_camel_case(self, store: MongoProfileStore, db) -> None:
        created = await store.create(make_profile("o1", is_primary=True))
        doc = await raw_doc(db, created.id)
        assert doc["ownerId"] == "o1"
        assert doc["profileType"] == "personal"
        assert doc["payload"]["kind"] == "personal"
        assert "personalInfo" in doc["payload"]
        assert doc[PRIMARY_MARKER] == "o1"

    async def test_non_primary_has_no_marker(self, store: MongoProfileStore, db) -> None:
        created = await store.create(make_profile("o1", "roommate"))
        assert PRIMARY_MARKER not in await raw_doc(db, created.id)

    async def test_invalid_id(self, store: MongoProfileStore) -> None:
        assert await store.find_by_id("not-an-id") is None
        assert await store.find_by_id(str(ObjectId())) is None

    async def test_find_by_owner_and_type(self, store: MongoProfileStore) -> None:
        await store.create(make_profile("o1", "roommate"))
        await store.create(make_profile("o2", "roommate"))
        found = await store.find_by_owner_and_type("o2", "roommate")
        assert found.owner_id == "o2"
        assert await store.find_by_owner_and_type("o1", "business") is None

    async def test_find_primary(self, store: MongoProfileStore) -> None:
        await store.create(make_profile("o1", "roommate"))
        primary = await store.create(make_profile("o1", "personal", is_primary=True))
        assert (await store.find_primary("o1")).id == primary.id
        assert await store.find_primary("o2") is None


class TestUniqueness:
    async def test_one_profile_per_type(self, store: MongoProfileStore) -> None:
        await store.create(make_profile("o1", "roommate"))
        with pytest.raises(DuplicateProfileError):
            await store.create(make_profile("o1", "roommate"))

    async def test_one_primary_per_owner(self, store: MongoProfileStore) -> None:
        await store.create(make_profile("o1", "personal", is_primary=True))
        with pytest.raises(DuplicateProfileError):
            await store.create(make_profile("o1", "roommate", is_primary=True))

    async def test_primaries_of_different_owners(self, store: MongoProfileStore) -> None:
        await store.create(make_profile("o1", is_primary=True))
        await store.create(make_profile("o2", is_primary=True))
        assert await store.find_primary("o2") is not None


class TestUpdate:
    async def test_update_sets_fields(self, store: MongoProfileStore) -> None:
        created = await store.create(make_profile("o1", "roommate"))
        updated = await store.update(created.id, "o1", {"isActive": True})
        assert updated.is_active
        assert updated.created_at is not None and updated.updated_at is not None
        assert (await store.find_by_id(created.id)).is_active

    async def test_marker_follows_primary_flag(self, store: MongoProfileStore, db) -> None:
        created = await store.create(make_profile("o1", "roommate"))
        await store.update(created.id, "o1", {"isPrimary": True})
        assert (await raw_doc(db, created.id))[PRIMARY_MARKER] == "o1"
        await store.update(created.id, "o1", {"isPrimary": False})
        assert PRIMARY_MARKER not in await raw_doc(db, created.id)

    async def test_update_missing(self, store: MongoProfileStore) -> None:
        assert await store.update(str(ObjectId()), "o1", {"isActive": True}) is None

    async def test_every_write_bumps_revision(self, store: MongoProfileStore) -> None:
        created = await store.create(make_profile("o1", "roommate"))
        assert created.revision == 0
        assert (await store.update(created.id, "o1", {"isActive": True})).revision == 1
        await store.deactivate_others("o1", str(ObjectId()))
        assert (await store.find_by_id(created.id)).revision == 2

    async def test_stale_revision_is_not_written(self, store: MongoProfileStore) -> None:
        created = await store.create(make_profile("o1", "roommate"))
        await store.update(created.id, "o1", {"isActive": True}, expected_revision=0)
        assert await store.update(created.id, "o1", {"isActive": False}, expected_revision=0) is None
        assert (await store.find_by_id(created.id)).is_active

    async def test_document_without_revision_matches_zero(self, store: MongoProfileStore, db) -> None:
        created = await store.create(make_profile("o1", "roommate"))
        await db["profiles"].update_one({"_id": ObjectId(created.id)}, {"$unset": {"revision": ""}})
        updated = await store.update(created.id, "o1", {"isActive": True}, expected_revision=0)
        assert updated.revision == 1

    async def test_dotted_section_update(self, store: MongoProfileStore) -> None:
        created = await store.create(make_profile("o1", "personal", {"personalInfo": {"bio": "Hi"}}))
        updated = await store.update(created.id, "o1", {"payload.preferences": {"petFriendly": True}})
        assert updated.payload.personal_info.bio == "Hi"

    async def test_demote_other_primaries(self, store: MongoProfileStore, db) -> None:
        first = await store.create(make_profile("o1", "personal", is_primary=True))
        second = await store.create(make_profile("o1", "business", {"businessType": "other"}))
        assert await store.demote_other_primaries("o1", second.id) == 1
        doc = await raw_doc(db, first.id)
        assert doc["isPrimary"] is False
        assert PRIMARY_MARKER not in doc

    async def test_deactivate_others(self, store: MongoProfileStore) -> None:
        keep = await store.create(make_profile("o1", "personal", is_active=True))
        await store.create(make_profile("o1", "roommate", is_active=True))
        await store.create(make_profile("o1", "business", {"businessType": "other"}, is_active=True))
        await store.create(make_profile("o2", "roommate", is_active=True))
        assert await store.deactivate_others("o1", keep.id) == 2
        active = await store.find_active("o1")
        assert [p.id for p in active] == [keep.id]
        assert len(await store.find_active("o2")) == 1

    async def test_find_active_newest_first(self, store: MongoProfileStore, db) -> None:
        older = await store.create(make_profile("o1", "personal", is_active=True))
        newer = await store.create(make_profile("o1", "roommate", is_active=True))
        now = datetime.now(timezone.utc)
        await db["profiles"].update_one({"_id": ObjectId(older.id)}, {"$set": {"updatedAt": now - timedelta(hours=1)}})
        await db["profiles"].update_one({"_id": ObjectId(newer.id)}, {"$set": {"updatedAt": now}})
        assert [p.id for p in await store.find_active("o1")] == [newer.id, older.id]

    async def test_delete(self, store: MongoProfileStore) -> None:
        created = await store.create(make_profile("o1", "roommate"))
        assert await store.delete(created.id) is True
        assert await store.delete(created.id) is False
        assert await store.find_by_id(created.id) is None


class TestMembers:
    @pytest.fixture
    async def agency(self, store: MongoProfileStore):
        return await store.create(make_profile("boss", "agency", {"businessType": "brokerage"}, is_primary=True))

    def member(self, owner_id: str, role: str = "member") -> dict:
        return {"ownerId": owner_id, "role": role, "addedAt": datetime.now(timezone.utc), "addedBy": "boss"}

    async def test_add_member(self, store: MongoProfileStore, agency) -> None:
        updated = await store.add_member(agency.id, self.member("m1", "admin"))
        assert [(m.owner_id, m.role) for m in updated.payload.members] == [("boss", "owner"), ("m1", "admin")]

    async def test_add_existing_member_is_rejected(self, store: MongoProfileStore, agency) -> None:
        await store.add_member(agency.id, self.member("m1"))
        assert await store.add_member(agency.id, self.member("m1", "admin")) is None
        assert len((await store.find_by_id(agency.id)).payload.members) == 2

    async def test_add_member_to_non_agency(self, store: MongoProfileStore) -> None:
        personal = await store.create(make_profile("o1"))
        assert await store.add_member(personal.id, self.member("m1")) is None

    async def test_remove_member(self, store: MongoProfileStore, agency) -> None:
        await store.add_member(agency.id, self.member("m1"))
        updated = await store.remove_member(agency.id, "m1")
        assert [m.owner_id for m in updated.payload.members] == ["boss"]

    async def test_owner_cannot_be_pulled(self, store: MongoProfileStore, agency) -> None:
        assert await store.remove_member(agency.id, "boss") is None
        assert [m.owner_id for m in (await store.find_by_id(agency.id)).payload.members] == ["boss"]

    async def test_set_member_role(self, store: MongoProfileStore, agency) -> None:
        await store.add_member(agency.id, self.member("m1"))
        await store.add_member(agency.id, self.member("m2"))
        updated = await store.set_member_role(agency.id, "m2", "admin")
        assert {m.owner_id: m.role for m in updated.payload.members} == {"boss": "owner", "m1": "member", "m2": "admin"}

    async def test_owner_role_cannot_be_set(self, store: MongoProfileStore, agency) -> None:
        assert await store.set_member_role(agency.id, "boss", "member") is None

    async def test_member_writes_bump_revision(self, store: MongoProfileStore, agency) -> None:
        await store.add_member(agency.id, self.member("m1"))
        await store.set_member_role(agency.id, "m1", "admin")
        updated = await store.remove_member(agency.id, "m1")
        assert updated.revision == agency.revision + 3

    async def test_find_agency_memberships(self, store: MongoProfileStore, agency) -> None:
        await store.add_member(agency.id, self.member("m1"))
        await store.create(make_profile("other-boss", "agency", {"businessType": "developer"}))
        found = await store.find_agency_memberships("m1")
        assert [p.id for p in found] == [agency.id]
        assert await store.find_agency_memberships("nobody") == []
