# app/core/exceptions.py
# Exceptions shared across modules


class AppError(Exception):
    """Expected, caller-visible failure carrying a stable machine-readable code."""
    code: str = "APP_ERROR"
    status_code: int = 400

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class AuthenticationRequiredError(AppError):
    code = "AUTHENTICATION_REQUIRED"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class RepositoryError(Exception):
    """Database / store failure. Never shown to callers verbatim."""
    pass


class CacheError(Exception):
    """Cache backend failure."""
    pass
