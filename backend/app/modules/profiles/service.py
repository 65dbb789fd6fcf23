# app/modules/profiles/service.py
# Service layer for profiles: primary/active invariants, type-aware merges,
# trust-score upkeep, agency membership and cache invalidation.

from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from app.core.config import settings
from app.core.exceptions import RepositoryError
from app.core.logging_setup import logger
from app.db.schemas.profile_schemas import (
    PAYLOAD_MODELS,
    AgencyMembershipView,
    AgencyPayload,
    PersonalPayload,
    ProfileDoc,
    ProfilePayload,
    ProfileSummary,
    ProfileType,
    TrustScore,
)
from app.services.audit_service import AuditService
from .cache import CACHE_VIEWS, PRIMARY_VIEW, TRUST_SCORE_VIEW, ProfileCache
from .exceptions import (
    AccessDeniedError,
    CacheInvalidationError,
    CannotDeletePersonalError,
    CannotDeletePrimaryError,
    ConcurrentUpdateError,
    DuplicateProfileError,
    InvalidProfileTypeError,
    MemberAlreadyExistsError,
    MemberNotFoundError,
    ProfileAlreadyExistsError,
    ProfileNotFoundError,
    ProfileValidationError,
)
from .membership import AgencyMembershipManager
from .repository import ProfileStore
from .trust_score import TrustScoreEngine

STATE_FIELDS = ("isPrimary", "isActive")
PAYLOAD_WRAPPER_KEY = "data"
IMMUTABLE_FIELDS = frozenset({"id", "_id", "ownerId", "profileType", "kind", "createdAt", "updatedAt", "revision"})
# Read-modify-write attempts before a revision conflict is reported
WRITE_ATTEMPTS = 3


def _validation_message(error: ValueError) -> str:
    if isinstance(error, ValidationError):
        first = error.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        return f"{location}: {first['msg']}" if location else first["msg"]
    return str(error)


class ProfileService:
    """Entry point for every profile read and mutation."""

    def __init__(
        self,
        store: ProfileStore,
        cache: ProfileCache,
        trust_engine: Optional[TrustScoreEngine] = None,
        membership: Optional[AgencyMembershipManager] = None,
        audit: Optional[AuditService] = None,
        allow_member_edits: Optional[bool] = None,
    ):
        self.store = store
        self.cache = cache
        self.trust_engine = trust_engine or TrustScoreEngine()
        self.membership = membership or AgencyMembershipManager()
        self.audit = audit
        self.allow_member_edits = settings.AGENCY_MEMBER_EDITING if allow_member_edits is None else allow_member_edits

    # --- Internal helpers ---

    @staticmethod
    def _parse_profile_type(value: Any) -> str:
        try:
            return ProfileType(value).value
        except ValueError:
            raise InvalidProfileTypeError(f"Invalid profile type: {value}")

    async def _cache_get(self, owner_id: str, view: str) -> Optional[Any]:
        try:
            return await self.cache.get(owner_id, view)
        except Exception as e:
            logger.bind(owner_id=owner_id, view=view).warning(f"Profile cache read failed, treating as miss: {e}")
            return None

    async def _cache_set(self, owner_id: str, view: str, data: Any) -> None:
        try:
            await self.cache.set(owner_id, view, data)
        except Exception as e:
            logger.bind(owner_id=owner_id, view=view).warning(f"Profile cache write failed: {e}")

    async def _invalidate(self, owner_id: str) -> None:
        """Clears every cached view of the owner. Called once per successful mutation."""
        log = logger.bind(owner_id=owner_id)
        for view in CACHE_VIEWS:
            try:
                await self.cache.clear(owner_id, view)
            except Exception as first_error:
                log.warning(f"Cache invalidation of '{view}' failed, retrying: {first_error}")
                try:
                    await self.cache.clear(owner_id, view)
                except Exception as e:
                    log.error(f"Cache invalidation of '{view}' failed twice.")
                    raise CacheInvalidationError(owner_id) from e

    async def _audit(self, actor_id: str, action: str, profile_id: Optional[str], details: Optional[Dict[str, Any]] = None):
        if self.audit is None:
            return
        await self.audit.log_event(
            actor_id=actor_id, action=action, entity_type="profile", entity_id=profile_id, details=details
        )

    async def _get_existing(self, profile_id: str) -> ProfileDoc:
        profile = await self.store.find_by_id(profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id)
        return profile

    async def _get_primary(self, owner_id: str) -> ProfileDoc:
        profile = await self.store.find_primary(owner_id)
        if profile is None:
            raise ProfileNotFoundError(f"primary profile of {owner_id}")
        return profile

    def _require_owner(self, profile: ProfileDoc, caller_owner_id: str) -> None:
        if profile.owner_id != caller_owner_id:
            logger.bind(profile_id=profile.id, caller=caller_owner_id).warning("Access denied to profile.")
            raise AccessDeniedError()

    def _can_edit(self, profile: ProfileDoc, caller_owner_id: str) -> bool:
        if profile.owner_id == caller_owner_id:
            return True
        return (
            self.allow_member_edits
            and isinstance(profile.payload, AgencyPayload)
            and profile.payload.member(caller_owner_id) is not None
        )

    def _scored(self, payload: ProfilePayload) -> ProfilePayload:
        if payload.supports_trust_score:
            return payload.model_copy(update={"trust_score": self.trust_engine.calculate(payload)})
        return payload

    @staticmethod
    def _require_trust_score(profile: ProfileDoc) -> PersonalPayload:
        if not profile.payload.supports_trust_score:
            raise InvalidProfileTypeError(f"Trust score is not available for {profile.profile_type} profiles")
        return profile.payload

    # --- Primary profile ---

    async def get_or_create_primary_profile(self, owner_id: str) -> ProfileDoc:
        """
        Returns the owner's primary profile. When there is none, the owner's
        personal profile is promoted; an owner without a personal profile gets
        a default one. A lost creation/promotion race is resolved by reading
        the winner's profile.
        """
        cached = await self._cache_get(owner_id, PRIMARY_VIEW)
        if cached is not None:
            return ProfileDoc.model_validate(cached)

        profile = await self._resolve_primary(owner_id)
        await self._cache_set(owner_id, PRIMARY_VIEW, profile.to_public())
        return profile

    async def _resolve_primary(self, owner_id: str) -> ProfileDoc:
        log = logger.bind(owner_id=owner_id)
        primary = await self.store.find_primary(owner_id)
        if primary is not None:
            return primary
        try:
            personal = await self.store.find_by_owner_and_type(owner_id, ProfileType.PERSONAL.value)
            if personal is not None:
                promoted = await self.store.update(personal.id, owner_id, {"isPrimary": True})
                if promoted is not None:
                    log.info(f"Promoted personal profile {personal.id} to primary.")
                    return promoted
            else:
                return await self._create_default_personal(owner_id)
        except DuplicateProfileError:
            log.info("Concurrent request created the primary profile first, reading it.")
        return await self._get_primary(owner_id)

    async def _create_default_personal(self, owner_id: str) -> ProfileDoc:
        existing = await self.store.find_by_owner(owner_id)
        payload = self._scored(PersonalPayload.create(owner_id))
        profile = ProfileDoc(
            owner_id=owner_id,
            profile_type=ProfileType.PERSONAL,
            is_primary=True,
            is_active=not any(p.is_active for p in existing),
            payload=payload,
        )
        created = await self.store.create(profile)
        logger.bind(owner_id=owner_id, profile_id=created.id).success("Default personal profile created.")
        await self._audit(owner_id, "create_profile", created.id, {"profile_type": "personal", "implicit": True})
        return created

    async def update_primary_profile(self, owner_id: str, patch: Dict[str, Any]) -> ProfileDoc:
        profile = await self._get_primary(owner_id)
        return await self._apply_update(profile, owner_id, patch)

    # --- Reads ---

    async def list_profiles(self, owner_id: str) -> List[ProfileSummary]:
        profiles = await self.store.find_by_owner(owner_id)
        return [ProfileSummary.from_profile(p) for p in profiles]

    async def get_profile_by_type(self, owner_id: str, profile_type: str) -> ProfileDoc:
        ptype = self._parse_profile_type(profile_type)
        profile = await self.store.find_by_owner_and_type(owner_id, ptype)
        if profile is None:
            raise ProfileNotFoundError(f"{ptype} profile of {owner_id}")
        return profile

    async def get_profile(self, profile_id: str) -> ProfileDoc:
        return await self._get_existing(profile_id)

    async def get_active_profile(self, owner_id: str) -> ProfileDoc:
        """
        Returns the owner's active profile. If an interrupted activation left
        several active, the most recently updated one is kept and the rest are
        deactivated.
        """
        active = await self.store.find_active(owner_id)
        if not active:
            raise ProfileNotFoundError(f"active profile of {owner_id}")
        winner = active[0]
        if len(active) > 1:
            log = logger.bind(owner_id=owner_id, profile_id=winner.id)
            log.warning(f"Found {len(active)} active profiles, keeping the most recently updated.")
            await self.store.deactivate_others(owner_id, winner.id)
            await self._invalidate(owner_id)
        return winner

    # --- Create / update / delete ---

    async def create_profile(self, owner_id: str, profile_type: str, data: Optional[Dict[str, Any]] = None) -> ProfileDoc:
        ptype = self._parse_profile_type(profile_type)
        log = logger.bind(owner_id=owner_id, profile_type=ptype)
        log.info("Creating profile.")

        if await self.store.find_by_owner_and_type(owner_id, ptype) is not None:
            log.warning("Profile of this type already exists.")
            raise ProfileAlreadyExistsError(ptype)

        try:
            payload = self._scored(PAYLOAD_MODELS[ptype].create(owner_id, data))
        except ValueError as e:
            raise ProfileValidationError(_validation_message(e))

        is_first = not await self.store.find_by_owner(owner_id)
        profile = ProfileDoc(
            owner_id=owner_id, profile_type=ptype, is_primary=is_first, is_active=is_first, payload=payload
        )
        try:
            created = await self.store.create(profile)
        except DuplicateProfileError:
            if await self.store.find_by_owner_and_type(owner_id, ptype) is not None:
                raise ProfileAlreadyExistsError(ptype)
            # Another first profile took the primary slot meanwhile
            log.info("Primary slot taken concurrently, creating as non-primary.")
            try:
                created = await self.store.create(profile.model_copy(update={"is_primary": False, "is_active": False}))
            except DuplicateProfileError:
                raise ProfileAlreadyExistsError(ptype)

        await self._invalidate(owner_id)
        await self._audit(owner_id, "create_profile", created.id, {"profile_type": ptype})
        log.bind(profile_id=created.id).success(f"Profile created (primary={created.is_primary}).")
        return created

    async def update_profile(self, profile_id: str, caller_owner_id: str, patch: Dict[str, Any]) -> ProfileDoc:
        profile = await self._get_existing(profile_id)
        if not self._can_edit(profile, caller_owner_id):
            logger.bind(profile_id=profile_id, caller=caller_owner_id).warning("Access denied to profile update.")
            raise AccessDeniedError()
        return await self._apply_update(profile, caller_owner_id, patch)

    async def activate_profile(self, profile_id: str, caller_owner_id: str) -> ProfileDoc:
        return await self.update_profile(profile_id, caller_owner_id, {"isActive": True})

    def _split_patch(self, profile: ProfileDoc, patch: Dict[str, Any]) -> Tuple[Dict[str, bool], Dict[str, Any]]:
        """Separates state flags from payload section patches."""
        if not isinstance(patch, dict):
            raise ProfileValidationError("Update body must be an object")
        wrapper_keys = (f"{profile.profile_type}Profile", PAYLOAD_WRAPPER_KEY)
        state: Dict[str, bool] = {}
        sections: Dict[str, Any] = {}
        for key, value in patch.items():
            if key in STATE_FIELDS:
                if not isinstance(value, bool):
                    raise ProfileValidationError(f"Field '{key}' must be a boolean")
                state[key] = value
            elif key in wrapper_keys:
                if not isinstance(value, dict):
                    raise ProfileValidationError(f"Field '{key}' must be an object")
                sections.update(value)
            elif key in IMMUTABLE_FIELDS:
                raise ProfileValidationError(f"Field '{key}' cannot be updated")
            else:
                sections[key] = value
        return state, sections

    async def _apply_update(self, profile: ProfileDoc, actor_id: str, patch: Dict[str, Any]) -> ProfileDoc:
        log = logger.bind(owner_id=profile.owner_id, profile_id=profile.id, actor=actor_id)
        state, sections = self._split_patch(profile, patch)
        if state and actor_id != profile.owner_id:
            raise AccessDeniedError("Only the profile owner can change primary or active status")

        fields = {**state, **self._section_fields(profile, sections)}
        if state.get("isPrimary") is True:
            await self.store.demote_other_primaries(profile.owner_id, profile.id)

        updated = None
        for attempt in range(WRITE_ATTEMPTS):
            if attempt:
                log.info(f"Profile changed since it was read, re-applying patch (attempt {attempt + 1}).")
                profile = await self._reload_for_edit(profile.id, actor_id)
                fields = {**state, **self._section_fields(profile, sections)}
            try:
                updated = await self.store.update(profile.id, profile.owner_id, fields, expected_revision=profile.revision)
            except DuplicateProfileError:
                # Another profile was made primary between the demotion and the save
                log.warning("Primary slot taken concurrently, demoting again.")
                await self.store.demote_other_primaries(profile.owner_id, profile.id)
                updated = await self.store.update(profile.id, profile.owner_id, fields, expected_revision=profile.revision)
            if updated is not None:
                break
        if updated is None:
            # Raises PROFILE_NOT_FOUND when the profile was deleted meanwhile
            await self._get_existing(profile.id)
            raise ConcurrentUpdateError(profile.id)

        try:
            if state.get("isActive") is True:
                await self._deactivate_siblings(profile.owner_id, profile.id)
        finally:
            await self._invalidate(profile.owner_id)

        await self._audit(actor_id, "update_profile", profile.id, {"fields": sorted(patch.keys())})
        log.success("Profile updated.")
        return updated

    def _section_fields(self, profile: ProfileDoc, sections: Dict[str, Any]) -> Dict[str, Any]:
        """Dotted `payload.<section>` updates for the patched sections only."""
        try:
            payload = profile.payload.merged(sections) if sections else profile.payload
        except ValueError as e:
            raise ProfileValidationError(_validation_message(e))
        payload = self._scored(payload)
        dumped = payload.model_dump(by_alias=True)
        keys = {payload.section_alias(key) for key in sections}
        if payload.supports_trust_score:
            keys.add(payload.section_alias("trust_score"))
        return {f"payload.{key}": dumped[key] for key in keys}

    async def _reload_for_edit(self, profile_id: str, actor_id: str) -> ProfileDoc:
        profile = await self._get_existing(profile_id)
        if not self._can_edit(profile, actor_id):
            raise AccessDeniedError()
        return profile

    async def _deactivate_siblings(self, owner_id: str, profile_id: str) -> None:
        log = logger.bind(owner_id=owner_id, profile_id=profile_id)
        try:
            count = await self.store.deactivate_others(owner_id, profile_id)
        except RepositoryError:
            log.warning("Sibling deactivation failed, retrying once.")
            count = await self.store.deactivate_others(owner_id, profile_id)
        if count:
            log.info(f"Deactivated {count} other profile(s).")

    async def delete_profile(self, profile_id: str, caller_owner_id: str) -> None:
        profile = await self._get_existing(profile_id)
        self._require_owner(profile, caller_owner_id)
        if not profile.payload.deletable:
            raise CannotDeletePersonalError()
        if profile.is_primary:
            raise CannotDeletePrimaryError()
        if not await self.store.delete(profile_id):
            raise ProfileNotFoundError(profile_id)
        await self._invalidate(profile.owner_id)
        await self._audit(caller_owner_id, "delete_profile", profile_id, {"profile_type": profile.profile_type})
        logger.bind(owner_id=profile.owner_id, profile_id=profile_id).success("Profile deleted.")

    # --- Trust score ---

    async def get_trust_score(self, owner_id: str) -> TrustScore:
        cached = await self._cache_get(owner_id, TRUST_SCORE_VIEW)
        if cached is not None:
            return TrustScore.model_validate(cached)
        payload = self._require_trust_score(await self._get_primary(owner_id))
        await self._cache_set(owner_id, TRUST_SCORE_VIEW, payload.trust_score.model_dump(mode="json", by_alias=True))
        return payload.trust_score

    async def _save_trust_score(
        self, owner_id: str, compute: Callable[[PersonalPayload], TrustScore], action: str, details: Dict[str, Any]
    ) -> TrustScore:
        """Recomputes from the stored primary and writes only `payload.trustScore`, retrying on revision conflicts."""
        for attempt in range(WRITE_ATTEMPTS):
            profile = await self._get_primary(owner_id)
            trust_score = compute(self._require_trust_score(profile))
            fields = {"payload.trustScore": trust_score.model_dump(by_alias=True)}
            updated = await self.store.update(profile.id, owner_id, fields, expected_revision=profile.revision)
            if updated is not None:
                break
            logger.bind(owner_id=owner_id, profile_id=profile.id).info(
                f"Primary profile changed during trust score update (attempt {attempt + 1})."
            )
        else:
            raise ConcurrentUpdateError(profile.id)
        await self._invalidate(owner_id)
        await self._audit(owner_id, action, profile.id, {**details, "score": trust_score.score})
        logger.bind(owner_id=owner_id, profile_id=profile.id).success(f"Trust score saved: {trust_score.score}")
        return updated.payload.trust_score

    async def update_trust_score(self, owner_id: str, factor: str, value: int) -> TrustScore:
        def apply_factor(payload: PersonalPayload) -> TrustScore:
            try:
                return self.trust_engine.update_factor(payload.trust_score, factor, value)
            except ValueError as e:
                raise ProfileValidationError(str(e))

        return await self._save_trust_score(owner_id, apply_factor, "update_trust_score", {"factor": factor, "value": value})

    async def recalculate_trust_score(self, owner_id: str) -> TrustScore:
        return await self._save_trust_score(owner_id, self.trust_engine.calculate, "recalculate_trust_score", {})

    # --- Agency membership ---

    async def list_agency_memberships(self, owner_id: str) -> List[AgencyMembershipView]:
        agencies = await self.store.find_agency_memberships(owner_id)
        views = [AgencyMembershipView.from_profile(p, owner_id) for p in agencies]
        return [v for v in views if v is not None]

    async def add_agency_member(self, profile_id: str, caller_owner_id: str, member_owner_id: str, role: str) -> ProfileDoc:
        profile = await self._get_existing(profile_id)
        member = self.membership.add_member(profile, caller_owner_id, member_owner_id, role)
        updated = await self.store.add_member(profile_id, member.model_dump(by_alias=True))
        if updated is None:
            # Either deleted or the member was added concurrently
            await self._get_existing(profile_id)
            raise MemberAlreadyExistsError(member_owner_id)
        await self._invalidate(profile.owner_id)
        await self._audit(caller_owner_id, "add_agency_member", profile_id, {"member": member_owner_id, "role": role})
        logger.bind(profile_id=profile_id, member=member_owner_id).success(f"Agency member added as {role}.")
        return updated

    async def remove_agency_member(self, profile_id: str, caller_owner_id: str, member_owner_id: str) -> ProfileDoc:
        profile = await self._get_existing(profile_id)
        self.membership.remove_member(profile, caller_owner_id, member_owner_id)
        updated = await self.store.remove_member(profile_id, member_owner_id)
        if updated is None:
            await self._get_existing(profile_id)
            raise MemberNotFoundError(member_owner_id)
        await self._invalidate(profile.owner_id)
        await self._audit(caller_owner_id, "remove_agency_member", profile_id, {"member": member_owner_id})
        logger.bind(profile_id=profile_id, member=member_owner_id).success("Agency member removed.")
        return updated

    async def update_agency_member_role(
        self, profile_id: str, caller_owner_id: str, member_owner_id: str, role: str
    ) -> ProfileDoc:
        profile = await self._get_existing(profile_id)
        member = self.membership.change_role(profile, caller_owner_id, member_owner_id, role)
        updated = await self.store.set_member_role(profile_id, member_owner_id, member.role)
        if updated is None:
            await self._get_existing(profile_id)
            raise MemberNotFoundError(member_owner_id)
        await self._invalidate(profile.owner_id)
        await self._audit(
            caller_owner_id, "update_agency_member_role", profile_id, {"member": member_owner_id, "role": role}
        )
        logger.bind(profile_id=profile_id, member=member_owner_id).success(f"Agency member role set to {role}.")
        return updated
