# app/db/schemas/profile_schemas.py
# Profile documents: one root document per profile, with a payload whose shape
# depends on the profile type (tagged union on `kind`).

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, FrozenSet, List, Literal, Optional, Type, Union

from pydantic import AliasChoices, BaseModel, EmailStr, Field, field_validator, model_validator

from .common_schemas import CamelModel, PyObjectId, utc_now


class ProfileType(str, Enum):
    PERSONAL = "personal"
    ROOMMATE = "roommate"
    AGENCY = "agency"
    BUSINESS = "business"


class EmploymentStatus(str, Enum):
    EMPLOYED = "employed"
    SELF_EMPLOYED = "self_employed"
    STUDENT = "student"
    RETIRED = "retired"
    UNEMPLOYED = "unemployed"
    OTHER = "other"


class LeaseDuration(str, Enum):
    MONTHLY = "monthly"
    THREE_MONTHS = "3_months"
    SIX_MONTHS = "6_months"
    YEARLY = "yearly"
    FLEXIBLE = "flexible"


class ReferenceRelationship(str, Enum):
    LANDLORD = "landlord"
    EMPLOYER = "employer"
    PERSONAL = "personal"
    OTHER = "other"


class ReasonForLeaving(str, Enum):
    LEASE_ENDED = "lease_ended"
    BOUGHT_HOME = "bought_home"
    JOB_RELOCATION = "job_relocation"
    FAMILY_REASONS = "family_reasons"
    UPGRADE = "upgrade"
    OTHER = "other"


class ProfileVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    CONTACTS_ONLY = "contacts_only"


class LifestyleAnswer(str, Enum):
    YES = "yes"
    NO = "no"
    PREFER_NOT = "prefer_not"


class Cleanliness(str, Enum):
    VERY_CLEAN = "very_clean"
    CLEAN = "clean"
    AVERAGE = "average"
    RELAXED = "relaxed"


class Schedule(str, Enum):
    EARLY_BIRD = "early_bird"
    NIGHT_OWL = "night_owl"
    FLEXIBLE = "flexible"


class BusinessType(str, Enum):
    REAL_ESTATE_AGENCY = "real_estate_agency"
    PROPERTY_MANAGEMENT = "property_management"
    BROKERAGE = "brokerage"
    DEVELOPER = "developer"
    OTHER = "other"


class EmployeeCount(str, Enum):
    SMALL = "1-10"
    MEDIUM = "11-50"
    LARGE = "51-200"
    ENTERPRISE = "200+"


class MemberRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class TrustFactorType(str, Enum):
    # Derived from the personal payload on every recalculation
    VERIFICATION = "verification"
    REFERENCES = "references"
    RENTAL_HISTORY = "rental_history"
    PROFILE_COMPLETENESS = "profile_completeness"
    # Set only through explicit factor updates
    REVIEWS = "reviews"
    PAYMENT_HISTORY = "payment_history"
    COMMUNICATION = "communication"


# --- Personal ---

class PersonalInfo(CamelModel):
    bio: str = Field("", max_length=500)
    occupation: str = ""
    employer: str = ""
    annual_income: Optional[float] = Field(None, ge=0)
    employment_status: Optional[EmploymentStatus] = None
    move_in_date: Optional[datetime] = None
    lease_duration: Optional[LeaseDuration] = LeaseDuration.YEARLY


class PreferredLocation(CamelModel):
    city: Optional[str] = None
    state: Optional[str] = None
    radius: int = Field(10, ge=1, le=100)


class Preferences(CamelModel):
    property_types: List[str] = Field(default_factory=list)
    max_rent: Optional[float] = Field(None, ge=0)
    min_bedrooms: int = Field(0, ge=0)
    min_bathrooms: int = Field(0, ge=0)
    preferred_amenities: List[str] = Field(default_factory=list)
    preferred_locations: List[PreferredLocation] = Field(default_factory=list)
    pet_friendly: bool = False
    smoking_allowed: bool = False
    furnished: bool = False
    parking_required: bool = False
    accessibility: bool = False


class Reference(CamelModel):
    name: str = Field(..., min_length=1)
    relationship: ReferenceRelationship = ReferenceRelationship.OTHER
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    verified: bool = False


class ContactInfo(CamelModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class RentalHistoryEntry(CamelModel):
    address: str = Field(..., min_length=1)
    start_date: datetime
    end_date: Optional[datetime] = None
    monthly_rent: Optional[float] = Field(None, ge=0)
    reason_for_leaving: Optional[ReasonForLeaving] = None
    landlord_contact: Optional[ContactInfo] = None
    verified: bool = False

    @property
    def is_complete(self) -> bool:
        contact = self.landlord_contact
        has_contact = contact is not None and bool(contact.name and (contact.phone or contact.email))
        return self.monthly_rent is not None and has_contact


class PersonalVerification(CamelModel):
    identity: bool = False
    income: bool = False
    background: bool = False
    rental_history: bool = False
    references: bool = False
    business_license: bool = False


class TrustFactor(CamelModel):
    type: TrustFactorType
    value: int
    updated_at: Optional[datetime] = None


class TrustScore(CamelModel):
    score: int = Field(50, ge=0, le=100)
    factors: List[TrustFactor] = Field(default_factory=list)

    def factor(self, factor_type: str) -> Optional[TrustFactor]:
        return next((f for f in self.factors if f.type == factor_type), None)


class NotificationSettings(CamelModel):
    email: bool = True
    push: bool = True
    sms: bool = False
    property_alerts: bool = True
    viewing_reminders: bool = True
    lease_updates: bool = True


class PrivacySettings(CamelModel):
    profile_visibility: ProfileVisibility = ProfileVisibility.PUBLIC
    show_contact_info: bool = True
    show_income: bool = False
    show_rental_history: bool = False
    show_references: bool = False


class ProfileSettings(CamelModel):
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    privacy: PrivacySettings = Field(default_factory=PrivacySettings)
    language: str = "en"
    timezone: str = "UTC"
    currency: str = "USD"


# --- Roommate ---

class AgeRange(CamelModel):
    min: Optional[int] = Field(None, ge=18, le=100)
    max: Optional[int] = Field(None, ge=18, le=100)


class Budget(CamelModel):
    min: Optional[float] = Field(None, ge=0)
    max: Optional[float] = Field(None, ge=0)


class Lifestyle(CamelModel):
    smoking: LifestyleAnswer = LifestyleAnswer.PREFER_NOT
    pets: LifestyleAnswer = LifestyleAnswer.PREFER_NOT
    partying: LifestyleAnswer = LifestyleAnswer.PREFER_NOT
    cleanliness: Cleanliness = Cleanliness.AVERAGE
    schedule: Schedule = Schedule.FLEXIBLE


class RoommatePreferences(CamelModel):
    age_range: AgeRange = Field(default_factory=AgeRange)
    gender: Literal["male", "female", "any"] = "any"
    lifestyle: Lifestyle = Field(default_factory=Lifestyle)
    budget: Budget = Field(default_factory=Budget)
    move_in_date: Optional[datetime] = None
    lease_duration: Optional[LeaseDuration] = LeaseDuration.YEARLY


class RoommateHistoryEntry(CamelModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    roommate_count: Optional[int] = Field(None, ge=0)
    reason: Optional[str] = None


# --- Agency / Business ---

class ServiceArea(CamelModel):
    city: Optional[str] = None
    state: Optional[str] = None
    radius: Optional[int] = Field(None, ge=0)


class BusinessDetails(CamelModel):
    license_number: Optional[str] = None
    tax_id: Optional[str] = None
    year_established: Optional[int] = Field(None, ge=1800)
    employee_count: Optional[EmployeeCount] = None
    specialties: List[str] = Field(default_factory=list)
    service_areas: List[ServiceArea] = Field(default_factory=list)

    @field_validator("license_number", "tax_id", "year_established", "employee_count", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        # Forms submit "" for untouched inputs
        return None if v == "" else v


class BusinessVerification(CamelModel):
    business_license: bool = False
    insurance: bool = False
    bonding: bool = False
    background_check: bool = False


class Ratings(CamelModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class AgencyMember(CamelModel):
    owner_id: str = Field(..., min_length=1)
    role: MemberRole = MemberRole.MEMBER
    added_at: datetime = Field(default_factory=utc_now)
    added_by: Optional[str] = None


# --- Payload variants ---

class ProfilePayload(CamelModel):
    """Common behaviour of the type-specific payloads."""
    supports_trust_score: ClassVar[bool] = False
    deletable: ClassVar[bool] = True
    # Sections (by alias) that only dedicated operations may change
    protected_sections: ClassVar[FrozenSet[str]] = frozenset()

    @classmethod
    def create(cls, owner_id: str, data: Optional[Dict[str, Any]] = None) -> "ProfilePayload":
        """Default payload for a new profile with the caller's sections applied.

        Protected sections in `data` are ignored; they start from their defaults.
        """
        kind = cls.model_fields["kind"].default
        fields: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            if key == "kind":
                continue
            alias = cls.section_alias(key)
            if alias is None:
                raise ValueError(f"Unknown field '{key}' for {kind} profile")
            if alias not in cls.protected_sections:
                fields[alias] = value
        fields["kind"] = kind
        return cls.model_validate(fields)

    @classmethod
    def section_aliases(cls) -> Dict[str, str]:
        """Maps each section alias to its attribute name."""
        return {(info.alias or name): name for name, info in cls.model_fields.items() if name != "kind"}

    @classmethod
    def section_alias(cls, key: str) -> Optional[str]:
        """Alias of the section named `key` (alias or attribute name), None if unknown."""
        aliases = cls.section_aliases()
        if key in aliases:
            return key
        return next((alias for alias, attr in aliases.items() if attr == key), None)

    def merged(self, patch: Dict[str, Any]) -> "ProfilePayload":
        """Returns a copy with `patch` applied.

        Object sections are shallow-merged (keys absent from the patch are kept),
        list and scalar sections are replaced. Raises ValueError for unknown or
        protected sections and pydantic.ValidationError for invalid values.
        """
        aliases = self.section_aliases()
        data = self.model_dump(by_alias=True)
        for raw_key, value in patch.items():
            key = self.section_alias(raw_key)
            if key is None:
                raise ValueError(f"Unknown field '{raw_key}' for {self.kind} profile")
            attr = aliases[key]
            if key in self.protected_sections:
                raise ValueError(f"Field '{key}' cannot be updated directly")
            if isinstance(getattr(self, attr), BaseModel) and isinstance(value, dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return type(self).model_validate(data)

    def summary(self) -> Dict[str, Any]:
        return {}


class PersonalPayload(ProfilePayload):
    supports_trust_score: ClassVar[bool] = True
    deletable: ClassVar[bool] = False
    protected_sections: ClassVar[FrozenSet[str]] = frozenset({"trustScore"})

    kind: Literal["personal"] = "personal"
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo)
    preferences: Preferences = Field(default_factory=Preferences)
    references: List[Reference] = Field(default_factory=list)
    rental_history: List[RentalHistoryEntry] = Field(default_factory=list)
    verification: PersonalVerification = Field(default_factory=PersonalVerification)
    trust_score: TrustScore = Field(default_factory=TrustScore)
    settings: ProfileSettings = Field(default_factory=ProfileSettings)

    def summary(self) -> Dict[str, Any]:
        return {"display_name": self.personal_info.occupation or None, "trust_score": self.trust_score.score}


class RoommatePayload(ProfilePayload):
    kind: Literal["roommate"] = "roommate"
    roommate_preferences: RoommatePreferences = Field(default_factory=RoommatePreferences)
    roommate_history: List[RoommateHistoryEntry] = Field(default_factory=list)
    references: List[Reference] = Field(default_factory=list)


class BusinessPayload(ProfilePayload):
    kind: Literal["business"] = "business"
    business_type: BusinessType
    legal_company_name: str = ""
    description: str = Field("", max_length=1000)
    business_details: BusinessDetails = Field(default_factory=BusinessDetails)
    verification: BusinessVerification = Field(default_factory=BusinessVerification)
    ratings: Ratings = Field(default_factory=Ratings)

    def summary(self) -> Dict[str, Any]:
        return {"display_name": self.legal_company_name or None, "business_type": self.business_type}


class AgencyPayload(ProfilePayload):
    protected_sections: ClassVar[FrozenSet[str]] = frozenset({"members"})

    kind: Literal["agency"] = "agency"
    business_type: BusinessType
    legal_company_name: str = ""
    description: str = Field("", max_length=1000)
    business_details: BusinessDetails = Field(default_factory=BusinessDetails)
    verification: BusinessVerification = Field(default_factory=BusinessVerification)
    ratings: Ratings = Field(default_factory=Ratings)
    members: List[AgencyMember] = Field(default_factory=list)

    @classmethod
    def create(cls, owner_id: str, data: Optional[Dict[str, Any]] = None) -> "AgencyPayload":
        payload = super().create(owner_id, data)
        # The creator is the one and only owner
        payload.members = [AgencyMember(owner_id=owner_id, role=MemberRole.OWNER, added_by=owner_id)]
        return payload

    def member(self, owner_id: str) -> Optional[AgencyMember]:
        return next((m for m in self.members if m.owner_id == owner_id), None)

    def summary(self) -> Dict[str, Any]:
        return {
            "display_name": self.legal_company_name or None,
            "business_type": self.business_type,
            "member_count": len(self.members),
        }


ProfilePayloadUnion = Annotated[
    Union[PersonalPayload, RoommatePayload, AgencyPayload, BusinessPayload],
    Field(discriminator="kind"),
]

PAYLOAD_MODELS: Dict[str, Type[ProfilePayload]] = {
    ProfileType.PERSONAL.value: PersonalPayload,
    ProfileType.ROOMMATE.value: RoommatePayload,
    ProfileType.AGENCY.value: AgencyPayload,
    ProfileType.BUSINESS.value: BusinessPayload,
}


class ProfileDoc(CamelModel):
    """MongoDB document representing one profile of an owner."""
    id: Optional[PyObjectId] = Field(None, validation_alias=AliasChoices("_id", "id"), serialization_alias="id")
    owner_id: str = Field(..., min_length=1)
    profile_type: ProfileType
    is_primary: bool = False
    is_active: bool = True
    payload: ProfilePayloadUnion
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    # Incremented by every write; guards read-modify-write updates
    revision: int = 0

    @model_validator(mode="after")
    def check_payload_kind(self) -> "ProfileDoc":
        if self.payload.kind != self.profile_type:
            raise ValueError(f"Payload kind '{self.payload.kind}' does not match profile type '{self.profile_type}'")
        return self

    def to_document(self) -> Dict[str, Any]:
        """Mongo representation (without `_id`)."""
        return self.model_dump(by_alias=True, exclude={"id"})

    def to_public(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ProfileSummary(CamelModel):
    """Projected fields used by profile listings."""
    id: str
    profile_type: ProfileType
    is_primary: bool
    is_active: bool
    display_name: Optional[str] = None
    business_type: Optional[BusinessType] = None
    trust_score: Optional[int] = None
    member_count: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_profile(cls, profile: ProfileDoc) -> "ProfileSummary":
        return cls(
            id=profile.id,
            profile_type=profile.profile_type,
            is_primary=profile.is_primary,
            is_active=profile.is_active,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
            **profile.payload.summary(),
        )


class AgencyMembershipView(CamelModel):
    """An agency the caller belongs to, with the caller's role in it."""
    profile_id: str
    agency_owner_id: str
    legal_company_name: str = ""
    business_type: Optional[BusinessType] = None
    role: MemberRole
    added_at: Optional[datetime] = None

    @classmethod
    def from_profile(cls, profile: ProfileDoc, owner_id: str) -> Optional["AgencyMembershipView"]:
        if not isinstance(profile.payload, AgencyPayload):
            return None
        member = profile.payload.member(owner_id)
        if member is None:
            return None
        return cls(
            profile_id=profile.id,
            agency_owner_id=profile.owner_id,
            legal_company_name=profile.payload.legal_company_name,
            business_type=profile.payload.business_type,
            role=member.role,
            added_at=member.added_at,
        )


# --- Request bodies ---

class ProfileCreateRequest(CamelModel):
    # Kept as a plain string so unknown types surface as INVALID_PROFILE_TYPE
    profile_type: str
    data: Dict[str, Any] = Field(default_factory=dict)


class TrustFactorUpdateRequest(CamelModel):
    factor: TrustFactorType
    value: int = Field(..., ge=-100, le=100)


class AgencyMemberAddRequest(CamelModel):
    member_owner_id: str = Field(..., min_length=1)
    role: MemberRole = MemberRole.MEMBER


class AgencyMemberRoleRequest(CamelModel):
    role: MemberRole
