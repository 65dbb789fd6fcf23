# app/modules/profiles/membership.py
# Role-gated rules for the members list embedded in agency profiles.

from app.core.logging_setup import logger
from app.db.schemas.common_schemas import utc_now
from app.db.schemas.profile_schemas import AgencyMember, AgencyPayload, MemberRole, ProfileDoc
from .exceptions import (
    CannotModifyOwnerError,
    CannotRemoveOwnerError,
    InsufficientPermissionsError,
    InvalidMemberRoleError,
    InvalidProfileTypeError,
    MemberAlreadyExistsError,
    MemberNotFoundError,
)

MANAGER_ROLES = (MemberRole.OWNER.value, MemberRole.ADMIN.value)


class AgencyMembershipManager:
    """
    Validates member changes against the current agency document and returns
    the member entry to persist. Persistence itself goes through the store's
    conditional updates so concurrent edits cannot overwrite each other.
    """

    def _agency(self, profile: ProfileDoc) -> AgencyPayload:
        if not isinstance(profile.payload, AgencyPayload):
            raise InvalidProfileTypeError("Member management is only available for agency profiles")
        return profile.payload

    def _require_manager(self, payload: AgencyPayload, caller_owner_id: str) -> None:
        caller = payload.member(caller_owner_id)
        if caller is None or caller.role not in MANAGER_ROLES:
            logger.bind(caller=caller_owner_id).warning("Member change refused: caller is not owner/admin.")
            raise InsufficientPermissionsError()

    def add_member(self, profile: ProfileDoc, caller_owner_id: str, new_owner_id: str, role: str) -> AgencyMember:
        payload = self._agency(profile)
        self._require_manager(payload, caller_owner_id)
        if role == MemberRole.OWNER.value:
            raise InvalidMemberRoleError(role)
        if payload.member(new_owner_id) is not None:
            raise MemberAlreadyExistsError(new_owner_id)
        return AgencyMember(owner_id=new_owner_id, role=role, added_at=utc_now(), added_by=caller_owner_id)

    def remove_member(self, profile: ProfileDoc, caller_owner_id: str, target_owner_id: str) -> AgencyMember:
        payload = self._agency(profile)
        target = payload.member(target_owner_id)
        # Owner protection holds whoever the caller is
        if target is not None and target.role == MemberRole.OWNER.value:
            raise CannotRemoveOwnerError()
        self._require_manager(payload, caller_owner_id)
        if target is None:
            raise MemberNotFoundError(target_owner_id)
        return target

    def change_role(self, profile: ProfileDoc, caller_owner_id: str, target_owner_id: str, role: str) -> AgencyMember:
        payload = self._agency(profile)
        target = payload.member(target_owner_id)
        if target is not None and target.role == MemberRole.OWNER.value:
            raise CannotModifyOwnerError()
        self._require_manager(payload, caller_owner_id)
        if role == MemberRole.OWNER.value:
            raise InvalidMemberRoleError(role)
        if target is None:
            raise MemberNotFoundError(target_owner_id)
        return target.model_copy(update={"role": role})
