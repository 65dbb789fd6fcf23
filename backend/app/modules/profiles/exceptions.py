# app/modules/profiles/exceptions.py
# Domain-specific exceptions for the Profiles module

from app.core.exceptions import AppError


class ProfileError(AppError):
    """Base exception for profile module errors."""
    pass


class ProfileNotFoundError(ProfileError):
    code = "PROFILE_NOT_FOUND"
    status_code = 404

    def __init__(self, identifier: str):
        super().__init__(f"Profile not found: {identifier}")
        self.identifier = identifier


class ProfileAlreadyExistsError(ProfileError):
    code = "PROFILE_ALREADY_EXISTS"
    status_code = 409

    def __init__(self, profile_type: str):
        super().__init__(f"A {profile_type} profile already exists for this owner")
        self.profile_type = profile_type


class InvalidProfileTypeError(ProfileError):
    code = "INVALID_PROFILE_TYPE"
    status_code = 400


class ProfileValidationError(ProfileError):
    code = "VALIDATION_ERROR"
    status_code = 400


class AccessDeniedError(ProfileError):
    code = "ACCESS_DENIED"
    status_code = 403

    def __init__(self, message: str = "You do not have access to this profile"):
        super().__init__(message)


class CannotDeletePrimaryError(ProfileError):
    code = "CANNOT_DELETE_PRIMARY"
    status_code = 400

    def __init__(self):
        super().__init__("The primary profile cannot be deleted")


class CannotDeletePersonalError(ProfileError):
    code = "CANNOT_DELETE_PERSONAL"
    status_code = 400

    def __init__(self):
        super().__init__("The personal profile cannot be deleted")


class InsufficientPermissionsError(ProfileError):
    code = "INSUFFICIENT_PERMISSIONS"
    status_code = 403

    def __init__(self, message: str = "Only agency owners and admins can manage members"):
        super().__init__(message)


class InvalidMemberRoleError(ProfileError):
    code = "INVALID_MEMBER_ROLE"
    status_code = 400

    def __init__(self, role: str):
        super().__init__(f"Role '{role}' cannot be assigned to a member")
        self.role = role


class MemberAlreadyExistsError(ProfileError):
    code = "MEMBER_ALREADY_EXISTS"
    status_code = 409

    def __init__(self, owner_id: str):
        super().__init__(f"User {owner_id} is already a member of this agency")
        self.owner_id = owner_id


class MemberNotFoundError(ProfileError):
    code = "MEMBER_NOT_FOUND"
    status_code = 404

    def __init__(self, owner_id: str):
        super().__init__(f"User {owner_id} is not a member of this agency")
        self.owner_id = owner_id


class CannotRemoveOwnerError(ProfileError):
    code = "CANNOT_REMOVE_OWNER"
    status_code = 400

    def __init__(self):
        super().__init__("The agency owner cannot be removed")


class CannotModifyOwnerError(ProfileError):
    code = "CANNOT_MODIFY_OWNER"
    status_code = 400

    def __init__(self):
        super().__init__("The agency owner's role cannot be changed")


class CacheInvalidationError(ProfileError):
    code = "CACHE_INVALIDATION_FAILED"
    status_code = 500

    def __init__(self, owner_id: str):
        super().__init__("Profile cache could not be invalidated")
        self.owner_id = owner_id


class ConcurrentUpdateError(ProfileError):
    code = "CONCURRENT_UPDATE"
    status_code = 409

    def __init__(self, profile_id: str):
        super().__init__(f"Profile {profile_id} kept changing during the update, try again")
        self.profile_id = profile_id


class DuplicateProfileError(Exception):
    """Raised by the store when a unique index rejects a write."""

    def __init__(self, index: str):
        super().__init__(f"Duplicate key on index '{index}'")
        self.index = index
