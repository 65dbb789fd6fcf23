# app/modules/profiles/repository.py
# Profile persistence: abstract store interface + MongoDB (Motor) implementation.

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.config import settings
from app.core.exceptions import RepositoryError
from app.core.logging_setup import logger
from app.db.schemas.common_schemas import utc_now
from app.db.schemas.profile_schemas import MemberRole, ProfileDoc, ProfileType
from .exceptions import DuplicateProfileError

OWNER_TYPE_INDEX = "owner_type_unique"
OWNER_PRIMARY_INDEX = "owner_primary_unique"
# Present only on primary documents; backs the one-primary-per-owner unique index
PRIMARY_MARKER = "primaryOwner"
REVISION_FIELD = "revision"


class ProfileStore(ABC):
    """Persistence operations the profile service relies on."""

    async def ensure_indexes(self) -> None:
        pass

    @abstractmethod
    async def create(self, profile: ProfileDoc) -> ProfileDoc:
        """Inserts a profile. Raises DuplicateProfileError on a unique-index violation."""

    @abstractmethod
    async def find_by_id(self, profile_id: str) -> Optional[ProfileDoc]: ...

    @abstractmethod
    async def find_by_owner(self, owner_id: str) -> List[ProfileDoc]: ...

    @abstractmethod
    async def find_by_owner_and_type(self, owner_id: str, profile_type: str) -> Optional[ProfileDoc]: ...

    @abstractmethod
    async def find_primary(self, owner_id: str) -> Optional[ProfileDoc]: ...

    @abstractmethod
    async def find_active(self, owner_id: str) -> List[ProfileDoc]:
        """Active profiles of the owner, most recently updated first."""

    @abstractmethod
    async def find_agency_memberships(self, owner_id: str) -> List[ProfileDoc]: ...

    @abstractmethod
    async def update(
        self, profile_id: str, owner_id: str, fields: Dict[str, Any], expected_revision: Optional[int] = None
    ) -> Optional[ProfileDoc]:
        """
        Sets document fields (isPrimary, isActive, `payload.<section>`) and stamps
        updatedAt. With `expected_revision`, returns None instead of writing when
        the stored revision differs.
        """

    @abstractmethod
    async def delete(self, profile_id: str) -> bool: ...

    @abstractmethod
    async def demote_other_primaries(self, owner_id: str, keep_profile_id: str) -> int: ...

    @abstractmethod
    async def deactivate_others(self, owner_id: str, keep_profile_id: str) -> int: ...

    @abstractmethod
    async def add_member(self, profile_id: str, member: Dict[str, Any]) -> Optional[ProfileDoc]:
        """Appends a member unless one with the same ownerId is already listed."""

    @abstractmethod
    async def remove_member(self, profile_id: str, member_owner_id: str) -> Optional[ProfileDoc]:
        """Removes a non-owner member."""

    @abstractmethod
    async def set_member_role(self, profile_id: str, member_owner_id: str, role: str) -> Optional[ProfileDoc]:
        """Changes the role of a non-owner member."""


class MongoProfileStore(ProfileStore):
    """ProfileStore backed by a MongoDB collection."""
    _collection: AsyncIOMotorCollection

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: Optional[str] = None):
        self.collection_name = collection_name or settings.PROFILES_MONGO_COLLECTION
        self._collection = db[self.collection_name]
        self.log = logger.bind(collection=self.collection_name)

    async def ensure_indexes(self) -> None:
        """Creates the indexes the profile invariants depend on."""
        try:
            await self._collection.create_index(
                [("ownerId", ASCENDING), ("profileType", ASCENDING)], unique=True, name=OWNER_TYPE_INDEX
            )
            await self._collection.create_index(PRIMARY_MARKER, unique=True, sparse=True, name=OWNER_PRIMARY_INDEX)
            await self._collection.create_index([("ownerId", ASCENDING), ("isActive", ASCENDING)], name="owner_active")
            await self._collection.create_index("payload.members.ownerId", sparse=True, name="agency_members")
            self.log.info("Indexes checked/created for profiles collection.")
        except Exception as e:
            self.log.exception("Error ensuring indexes for profiles collection.")
            raise RepositoryError(f"Error ensuring profile indexes: {e}") from e

    def _map_doc(self, doc: Optional[Dict[str, Any]]) -> Optional[ProfileDoc]:
        if doc is None:
            return None
        return ProfileDoc.model_validate(doc)

    @staticmethod
    def _duplicate_index(error: DuplicateKeyError) -> str:
        message = str(error)
        for index in (OWNER_TYPE_INDEX, OWNER_PRIMARY_INDEX):
            if index in message:
                return index
        return "unknown"

    @staticmethod
    def _object_id(profile_id: str) -> Optional[ObjectId]:
        return ObjectId(profile_id) if ObjectId.is_valid(profile_id) else None

    async def create(self, profile: ProfileDoc) -> ProfileDoc:
        log = self.log.bind(action="create", owner_id=profile.owner_id, profile_type=profile.profile_type)
        document = profile.to_document()
        if profile.is_primary:
            document[PRIMARY_MARKER] = profile.owner_id
        try:
            result = await self._collection.insert_one(document)
        except DuplicateKeyError as e:
            index = self._duplicate_index(e)
            log.warning(f"Profile insert rejected by unique index '{index}'.")
            raise DuplicateProfileError(index) from e
        except Exception as e:
            log.exception("Database error creating profile document.")
            raise RepositoryError(f"Error creating profile: {e}") from e
        log.info(f"Profile document created with ID: {result.inserted_id}")
        return profile.model_copy(update={"id": str(result.inserted_id)})

    async def find_by_id(self, profile_id: str) -> Optional[ProfileDoc]:
        oid = self._object_id(profile_id)
        if oid is None:
            return None
        try:
            doc = await self._collection.find_one({"_id": oid})
        except Exception as e:
            self.log.exception(f"Database error finding profile by ID {profile_id}.")
            raise RepositoryError(f"Error fetching profile by ID: {e}") from e
        return self._map_doc(doc)

    async def _find_many(self, query: Dict[str, Any], sort: List[Any]) -> List[ProfileDoc]:
        try:
            docs = await self._collection.find(query).sort(sort).to_list(length=None)
        except Exception as e:
            self.log.exception("Database error listing profiles.")
            raise RepositoryError(f"Error listing profiles: {e}") from e
        return [self._map_doc(doc) for doc in docs]

    async def find_by_owner(self, owner_id: str) -> List[ProfileDoc]:
        return await self._find_many({"ownerId": owner_id}, [("createdAt", ASCENDING)])

    async def find_by_owner_and_type(self, owner_id: str, profile_type: str) -> Optional[ProfileDoc]:
        try:
            doc = await self._collection.find_one({"ownerId": owner_id, "profileType": profile_type})
        except Exception as e:
            self.log.exception(f"Database error finding {profile_type} profile of {owner_id}.")
            raise RepositoryError(f"Error fetching profile by type: {e}") from e
        return self._map_doc(doc)

    async def find_primary(self, owner_id: str) -> Optional[ProfileDoc]:
        try:
            doc = await self._collection.find_one({"ownerId": owner_id, "isPrimary": True})
        except Exception as e:
            self.log.exception(f"Database error finding primary profile of {owner_id}.")
            raise RepositoryError(f"Error fetching primary profile: {e}") from e
        return self._map_doc(doc)

    async def find_active(self, owner_id: str) -> List[ProfileDoc]:
        return await self._find_many({"ownerId": owner_id, "isActive": True}, [("updatedAt", DESCENDING)])

    async def find_agency_memberships(self, owner_id: str) -> List[ProfileDoc]:
        query = {"profileType": ProfileType.AGENCY.value, "payload.members.ownerId": owner_id}
        return await self._find_many(query, [("createdAt", ASCENDING)])

    async def _find_one_and_update(self, query: Dict[str, Any], update: Dict[str, Any], action: str) -> Optional[ProfileDoc]:
        log = self.log.bind(action=action)
        try:
            doc = await self._collection.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
        except DuplicateKeyError as e:
            index = self._duplicate_index(e)
            log.warning(f"Profile update rejected by unique index '{index}'.")
            raise DuplicateProfileError(index) from e
        except Exception as e:
            log.exception("Database error updating profile document.")
            raise RepositoryError(f"Error updating profile: {e}") from e
        if doc is None:
            log.debug("No profile matched the update.")
        return self._map_doc(doc)

    @staticmethod
    def _write(fields: Dict[str, Any]) -> Dict[str, Any]:
        return {"$set": {**fields, "updatedAt": utc_now()}, "$inc": {REVISION_FIELD: 1}}

    async def update(
        self, profile_id: str, owner_id: str, fields: Dict[str, Any], expected_revision: Optional[int] = None
    ) -> Optional[ProfileDoc]:
        oid = self._object_id(profile_id)
        if oid is None:
            return None
        query: Dict[str, Any] = {"_id": oid}
        if expected_revision is not None:
            # Documents written before revisions existed have no field at all
            query[REVISION_FIELD] = {"$in": [0, None]} if expected_revision == 0 else expected_revision
        update = self._write(fields)
        if "isPrimary" in fields:
            # Marker follows isPrimary; it is removed rather than nulled so the sparse index skips it
            if fields["isPrimary"]:
                update["$set"][PRIMARY_MARKER] = owner_id
            else:
                update["$unset"] = {PRIMARY_MARKER: ""}
        return await self._find_one_and_update(query, update, action="update")

    async def delete(self, profile_id: str) -> bool:
        oid = self._object_id(profile_id)
        if oid is None:
            return False
        try:
            result = await self._collection.delete_one({"_id": oid})
        except Exception as e:
            self.log.exception(f"Database error deleting profile {profile_id}.")
            raise RepositoryError(f"Error deleting profile: {e}") from e
        return result.deleted_count > 0

    async def demote_other_primaries(self, owner_id: str, keep_profile_id: str) -> int:
        try:
            result = await self._collection.update_many(
                {"ownerId": owner_id, "isPrimary": True, "_id": {"$ne": self._object_id(keep_profile_id)}},
                {**self._write({"isPrimary": False}), "$unset": {PRIMARY_MARKER: ""}},
            )
        except Exception as e:
            self.log.exception(f"Database error demoting primary profiles of {owner_id}.")
            raise RepositoryError(f"Error demoting primary profiles: {e}") from e
        return result.modified_count

    async def deactivate_others(self, owner_id: str, keep_profile_id: str) -> int:
        try:
            result = await self._collection.update_many(
                {"ownerId": owner_id, "isActive": True, "_id": {"$ne": self._object_id(keep_profile_id)}},
                self._write({"isActive": False}),
            )
        except Exception as e:
            self.log.exception(f"Database error deactivating profiles of {owner_id}.")
            raise RepositoryError(f"Error deactivating profiles: {e}") from e
        return result.modified_count

    async def add_member(self, profile_id: str, member: Dict[str, Any]) -> Optional[ProfileDoc]:
        oid = self._object_id(profile_id)
        if oid is None:
            return None
        query = {
            "_id": oid,
            "profileType": ProfileType.AGENCY.value,
            "payload.members.ownerId": {"$ne": member["ownerId"]},
        }
        update = {**self._write({}), "$push": {"payload.members": member}}
        return await self._find_one_and_update(query, update, action="add_member")

    async def remove_member(self, profile_id: str, member_owner_id: str) -> Optional[ProfileDoc]:
        oid = self._object_id(profile_id)
        if oid is None:
            return None
        query = {
            "_id": oid,
            "payload.members": {"$elemMatch": {"ownerId": member_owner_id, "role": {"$ne": MemberRole.OWNER.value}}},
        }
        update = {**self._write({}), "$pull": {"payload.members": {"ownerId": member_owner_id}}}
        return await self._find_one_and_update(query, update, action="remove_member")

    async def set_member_role(self, profile_id: str, member_owner_id: str, role: str) -> Optional[ProfileDoc]:
        oid = self._object_id(profile_id)
        if oid is None:
            return None
        query = {
            "_id": oid,
            "payload.members": {"$elemMatch": {"ownerId": member_owner_id, "role": {"$ne": MemberRole.OWNER.value}}},
        }
        update = self._write({"payload.members.$.role": role})
        # update_one resolves `$` against the $elemMatch element of this filter
        try:
            result = await self._collection.update_one(query, update)
        except Exception as e:
            self.log.bind(action="set_member_role").exception("Database error updating member role.")
            raise RepositoryError(f"Error updating member role: {e}") from e
        if result.matched_count == 0:
            return None
        return await self.find_by_id(profile_id)
