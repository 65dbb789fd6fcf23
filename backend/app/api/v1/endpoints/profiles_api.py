# app/api/v1/endpoints/profiles_api.py
# REST endpoints for profiles, trust score and agency membership.
# Static paths are declared before /{profile_id} so they are matched first.

from typing import Annotated, Any, Dict

from fastapi import APIRouter, Body, Path as FastApiPath, status

from app.api.v1.deps import ProfileServiceDep
from app.core.logging_setup import logger
from app.core.security import CurrentOwnerId
from app.db.schemas.profile_schemas import (
    AgencyMemberAddRequest,
    AgencyMemberRoleRequest,
    ProfileCreateRequest,
    TrustFactorUpdateRequest,
)
from app.models.api_common import success_response

router = APIRouter()

ProfileIdPath = Annotated[str, FastApiPath(description="Profile ID")]
MemberOwnerIdPath = Annotated[str, FastApiPath(description="Owner ID of the agency member")]
PatchBody = Annotated[Dict[str, Any], Body(description="Partial update: isPrimary, isActive and/or payload sections")]


# --- Primary profile ---

@router.get("/primary", summary="Get (or create) the primary profile")
async def get_primary_profile(owner_id: CurrentOwnerId, service: ProfileServiceDep):
    profile = await service.get_or_create_primary_profile(owner_id)
    return success_response(profile.to_public())


@router.patch("/primary", summary="Update the primary profile")
async def update_primary_profile(owner_id: CurrentOwnerId, service: ProfileServiceDep, patch: PatchBody):
    profile = await service.update_primary_profile(owner_id, patch)
    return success_response(profile.to_public(), "Profile updated successfully")


@router.get("/primary/trust-score", summary="Get the primary profile trust score")
async def get_trust_score(owner_id: CurrentOwnerId, service: ProfileServiceDep):
    trust_score = await service.get_trust_score(owner_id)
    return success_response(trust_score.model_dump(mode="json", by_alias=True))


@router.patch("/primary/trust-score", summary="Set one trust factor")
async def update_trust_score(owner_id: CurrentOwnerId, service: ProfileServiceDep, body: TrustFactorUpdateRequest):
    trust_score = await service.update_trust_score(owner_id, body.factor, body.value)
    return success_response(trust_score.model_dump(mode="json", by_alias=True), "Trust score updated successfully")


@router.post("/primary/trust-score/recalculate", summary="Recompute the trust score")
async def recalculate_trust_score(owner_id: CurrentOwnerId, service: ProfileServiceDep):
    trust_score = await service.recalculate_trust_score(owner_id)
    return success_response(trust_score.model_dump(mode="json", by_alias=True), "Trust score recalculated successfully")


@router.get("/active", summary="Get the active profile")
async def get_active_profile(owner_id: CurrentOwnerId, service: ProfileServiceDep):
    profile = await service.get_active_profile(owner_id)
    return success_response(profile.to_public())


# --- Collection ---

@router.get("", summary="List the caller's profiles")
async def list_profiles(owner_id: CurrentOwnerId, service: ProfileServiceDep):
    summaries = await service.list_profiles(owner_id)
    return success_response([s.model_dump(mode="json", by_alias=True) for s in summaries])


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create a profile")
async def create_profile(owner_id: CurrentOwnerId, service: ProfileServiceDep, body: ProfileCreateRequest):
    logger.bind(owner_id=owner_id, profile_type=body.profile_type).info("Request to create profile.")
    profile = await service.create_profile(owner_id, body.profile_type, body.data)
    return success_response(profile.to_public(), "Profile created successfully")


@router.get("/type/{profile_type}", summary="Get a profile by type")
async def get_profile_by_type(
    owner_id: CurrentOwnerId,
    service: ProfileServiceDep,
    profile_type: Annotated[str, FastApiPath(description="personal, roommate, agency or business")],
):
    profile = await service.get_profile_by_type(owner_id, profile_type)
    return success_response(profile.to_public())


# --- Single profile ---

@router.get("/{profile_id}", summary="Get a profile by ID")
async def get_profile(owner_id: CurrentOwnerId, service: ProfileServiceDep, profile_id: ProfileIdPath):
    profile = await service.get_profile(profile_id)
    return success_response(profile.to_public())


@router.patch("/{profile_id}", summary="Update a profile")
async def update_profile(owner_id: CurrentOwnerId, service: ProfileServiceDep, profile_id: ProfileIdPath, patch: PatchBody):
    profile = await service.update_profile(profile_id, owner_id, patch)
    return success_response(profile.to_public(), "Profile updated successfully")


@router.delete("/{profile_id}", summary="Delete a profile")
async def delete_profile(owner_id: CurrentOwnerId, service: ProfileServiceDep, profile_id: ProfileIdPath):
    await service.delete_profile(profile_id, owner_id)
    return success_response(None, "Profile deleted successfully")


@router.post("/{profile_id}/activate", summary="Make a profile the active one")
async def activate_profile(owner_id: CurrentOwnerId, service: ProfileServiceDep, profile_id: ProfileIdPath):
    profile = await service.activate_profile(profile_id, owner_id)
    return success_response(profile.to_public(), "Profile activated successfully")


# --- Agency membership ---

@router.get("/{profile_id}/agency/memberships", summary="List agencies the caller belongs to")
async def list_agency_memberships(owner_id: CurrentOwnerId, service: ProfileServiceDep, profile_id: ProfileIdPath):
    # Memberships are resolved from the caller; the path ID only scopes the route
    memberships = await service.list_agency_memberships(owner_id)
    return success_response([m.model_dump(mode="json", by_alias=True) for m in memberships])


@router.post("/{profile_id}/agency/members", summary="Add an agency member")
async def add_agency_member(
    owner_id: CurrentOwnerId, service: ProfileServiceDep, profile_id: ProfileIdPath, body: AgencyMemberAddRequest
):
    profile = await service.add_agency_member(profile_id, owner_id, body.member_owner_id, body.role)
    return success_response(profile.to_public(), "Member added successfully")


@router.patch("/{profile_id}/agency/members/{member_owner_id}", summary="Change an agency member's role")
async def update_agency_member_role(
    owner_id: CurrentOwnerId,
    service: ProfileServiceDep,
    profile_id: ProfileIdPath,
    member_owner_id: MemberOwnerIdPath,
    body: AgencyMemberRoleRequest,
):
    profile = await service.update_agency_member_role(profile_id, owner_id, member_owner_id, body.role)
    return success_response(profile.to_public(), "Member role updated successfully")


@router.delete("/{profile_id}/agency/members/{member_owner_id}", summary="Remove an agency member")
async def remove_agency_member(
    owner_id: CurrentOwnerId, service: ProfileServiceDep, profile_id: ProfileIdPath, member_owner_id: MemberOwnerIdPath
):
    profile = await service.remove_agency_member(profile_id, owner_id, member_owner_id)
    return success_response(profile.to_public(), "Member removed successfully")
