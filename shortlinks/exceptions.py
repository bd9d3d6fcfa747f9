"""Error taxonomy for the short-link service.

Hierarchy
=========
::
    ShortLinkError
    ├─ ValidationError (also a ValueError, so pydantic validators report it as 422)
    │   ├─ InvalidUrl
    │   ├─ InvalidAlias
    │   ├─ InvalidExpiry
│   └─ InvalidPassword
    ├─ ConflictError
    │   ├─ AliasTaken
    │   └─ ShortCodeConflict
    ├─ NotFoundOrForbidden
    └─ InfrastructureError
        ├─ StoreUnavailable
        └─ CodeGenerationExhausted

Key Behaviours
===============
- Validation and conflict errors are raised synchronously on the write path and
  never retried automatically.
- ``NotFoundOrForbidden`` deliberately covers both "no such link" and "link owned
  by someone else". Do not split it into a 403: that would reveal which link ids exist.
- ``StoreUnavailable`` on the redirect path must surface as a 5xx, never as a 404.
"""

__all__ = [
    "AliasTaken",
    "CodeGenerationExhausted",
    "ConflictError",
    "InfrastructureError",
    "InvalidAlias",
    "InvalidExpiry",
    "InvalidPassword",
    "InvalidUrl",
    "NotFoundOrForbidden",
    "ShortCodeConflict",
    "ShortLinkError",
    "StoreUnavailable",
    "ValidationError",
]


class ShortLinkError(Exception):
    """Base class for all domain errors raised by the service."""


class ValidationError(ShortLinkError, ValueError):
    """Input was rejected before anything was written."""


class InvalidUrl(ValidationError):
    pass


class InvalidAlias(ValidationError):
    pass


class InvalidExpiry(ValidationError):
    pass


class InvalidPassword(ValidationError):
    pass


class ConflictError(ShortLinkError):
    """The requested identifier is already in use."""


class AliasTaken(ConflictError):
    def __init__(self, alias: str) -> None:
        super().__init__(f"Custom alias '{alias}' is already taken")
        self.alias = alias


class ShortCodeConflict(ConflictError):
    """Unique constraint violation on insert; raised by the store."""

    def __init__(self, code: str) -> None:
        super().__init__(f"Short code '{code}' collision detected")
        self.code = code


class NotFoundOrForbidden(ShortLinkError):
    def __init__(self, message: str = "URL not found or access denied") -> None:
        super().__init__(message)


class InfrastructureError(ShortLinkError):
    """A backing service failed and there is no fallback."""


class StoreUnavailable(InfrastructureError):
    pass


class CodeGenerationExhausted(InfrastructureError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Unable to generate a unique short code after {attempts} attempts")
        self.attempts = attempts
