"""Tests for AgencyMembershipManager role rules."""

import pytest
from bson import ObjectId

from app.db.schemas.profile_schemas import AgencyMember, ProfileDoc
from app.modules.profiles.exceptions import (
    CannotModifyOwnerError,
    CannotRemoveOwnerError,
    InsufficientPermissionsError,
    InvalidMemberRoleError,
    InvalidProfileTypeError,
    MemberAlreadyExistsError,
    MemberNotFoundError,
)
from app.modules.profiles.membership import AgencyMembershipManager
from conftest import make_profile

OWNER = "owner-a"
ADMIN = "admin-b"
MEMBER = "member-c"
OUTSIDER = "outsider-d"


@pytest.fixture
def manager() -> AgencyMembershipManager:
    return AgencyMembershipManager()


@pytest.fixture
def agency() -> ProfileDoc:
    profile = make_profile(OWNER, "agency", {"businessType": "brokerage"}, profile_id=str(ObjectId()))
    profile.payload.members += [
        AgencyMember(owner_id=ADMIN, role="admin", added_by=OWNER),
        AgencyMember(owner_id=MEMBER, role="member", added_by=OWNER),
    ]
    return profile


class TestAgencyCreation:
    def test_creator_is_sole_owner(self) -> None:
        profile = make_profile(OWNER, "agency", {"businessType": "brokerage"})
        assert [(m.owner_id, m.role) for m in profile.payload.members] == [(OWNER, "owner")]

    def test_members_in_create_data_are_ignored(self) -> None:
        data = {"businessType": "brokerage", "members": [{"ownerId": "intruder", "role": "owner"}]}
        profile = make_profile(OWNER, "agency", data)
        assert [m.owner_id for m in profile.payload.members] == [OWNER]


class TestAddMember:
    def test_owner_adds_admin(self, manager: AgencyMembershipManager, agency: ProfileDoc) -> None:
        member = manager.add_member(agency, OWNER, "new-e", "admin")
        assert member.owner_id == "new-e"
        assert member.role == "admin"
        assert member.added_by == OWNER
        assert member.added_at is not None

    def test_admin_may_add(self, manager: AgencyMembershipManager, agency: ProfileDoc) -> None:
        assert manager.add_member(agency, ADMIN, "new-e", "member").role == "member"

    @pytest.mark.parametrize("caller", [MEMBER, OUTSIDER])
    def test_plain_members_and_outsiders_refused(self, manager, agency, caller) -> None:
        with pytest.raises(InsufficientPermissionsError):
            manager.add_member(agency, caller, "new-e", "member")

    def test_owner_role_cannot_be_granted(self, manager: AgencyMembershipManager, agency: ProfileDoc) -> None:
        with pytest.raises(InvalidMemberRoleError):
            manager.add_member(agency, OWNER, "new-e", "owner")

    def test_existing_member(self, manager: AgencyMembershipManager, agency: ProfileDoc) -> None:
        with pytest.raises(MemberAlreadyExistsError):
            manager.add_member(agency, OWNER, MEMBER, "admin")

    def test_non_agency_profile(self, manager: AgencyMembershipManager) -> None:
        personal = make_profile(OWNER, "personal")
        with pytest.raises(InvalidProfileTypeError):
            manager.add_member(personal, OWNER, "new-e", "member")


class TestRemoveMember:
    @pytest.mark.parametrize("caller", [OWNER, ADMIN, MEMBER, OUTSIDER])
    def test_owner_is_never_removable(self, manager, agency, caller) -> None:
        with pytest.raises(CannotRemoveOwnerError):
            manager.remove_member(agency, caller, OWNER)

    def test_admin_removes_member(self, manager: AgencyMembershipManager, agency: ProfileDoc) -> None:
        assert manager.remove_member(agency, ADMIN, MEMBER).owner_id == MEMBER

    def test_member_cannot_remove(self, manager: AgencyMembershipManager, agency: ProfileDoc) -> None:
        with pytest.raises(InsufficientPermissionsError):
            manager.remove_member(agency, MEMBER, ADMIN)

    def test_unknown_target(self, manager: AgencyMembershipManager, agency: ProfileDoc) -> None:
        with pytest.raises(MemberNotFoundError):
            manager.remove_member(agency, OWNER, OUTSIDER)

    @pytest.mark.parametrize("profile_type, data", [("business", {"businessType": "developer"}), ("roommate", None)])
    def test_non_agency_profile(self, manager, profile_type, data) -> None:
        profile = make_profile(OWNER, profile_type, data)
        with pytest.raises(InvalidProfileTypeError):
            manager.remove_member(profile, OWNER, MEMBER)


class TestChangeRole:
    def test_promote_member(self, manager: AgencyMembershipManager, agency: ProfileDoc) -> None:
        updated = manager.change_role(agency, OWNER, MEMBER, "admin")
        assert updated.role == "admin"
        # The stored document is untouched until persisted
        assert agency.payload.member(MEMBER).role == "member"

    def test_owner_role_is_fixed(self, manager: AgencyMembershipManager, agency: ProfileDoc) -> None:
        with pytest.raises(CannotModifyOwnerError):
            manager.change_role(agency, ADMIN, OWNER, "member")

    def test_cannot_promote_to_owner(self, manager: AgencyMembershipManager, agency: ProfileDoc) -> None:
        with pytest.raises(InvalidMemberRoleError):
            manager.change_role(agency, OWNER, ADMIN, "owner")

    def test_member_cannot_change_roles(self, manager: AgencyMembershipManager, agency: ProfileDoc) -> None:
        with pytest.raises(InsufficientPermissionsError):
            manager.change_role(agency, MEMBER, ADMIN, "member")

    def test_unknown_target(self, manager: AgencyMembershipManager, agency: ProfileDoc) -> None:
        with pytest.raises(MemberNotFoundError):
            manager.change_role(agency, OWNER, OUTSIDER, "admin")
