"""
Exceptions raised by the authorization engine.

Expected authorization outcomes (deny, ownership pending) are returned as
values, never raised. These exceptions cover programming errors, rejected
admin writes and store outages.
"""
from typing import Iterable


class AuthorizationError(Exception):
    """Base class for all engine errors."""


class UnknownActionError(AuthorizationError, KeyError):
    """An action string that is not part of the action catalog."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(action)

    def __str__(self) -> str:
        return f"Unknown action: {self.action!r}"


class MatrixIncompleteError(AuthorizationError):
    """The default permission matrix is missing (role, action) entries."""

    def __init__(self, missing: Iterable[tuple[str, str]], unexpected: Iterable[tuple[str, str]] = ()):
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        parts = []
        if self.missing:
            parts.append("missing " + ", ".join(f"{role}/{action}" for role, action in self.missing))
        if self.unexpected:
            parts.append("unexpected " + ", ".join(f"{role}/{action}" for role, action in self.unexpected))
        super().__init__("Default permission matrix is inconsistent: " + "; ".join(parts))


class PermissionValidationError(AuthorizationError, ValueError):
    """A malformed or forbidden admin request, such as overriding the Owner role."""


class StoreUnavailableError(AuthorizationError):
    """The override store could not be reached or failed to answer."""
