# app/db/schemas/__init__.py
# Make schemas easily importable
from .common_schemas import PyObjectId, CamelModel
from .profile_schemas import (
    ProfileType, MemberRole, TrustFactorType,
    PersonalPayload, RoommatePayload, AgencyPayload, BusinessPayload,
    ProfileDoc, ProfileSummary, AgencyMembershipView, TrustScore, TrustFactor,
)
