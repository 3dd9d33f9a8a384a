from enum import Enum


class SessionError(Exception):
    """Base class for every failure raised by the session core."""


class TransitionInProgress(SessionError):
    def __init__(self, operation: str):
        super().__init__(f"Cannot {operation}: another session transition is in progress")
        self.operation = operation


class NotAuthenticated(SessionError):
    pass


class AuthReason(Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    NOT_ENTITLED = "not_entitled"
    NETWORK = "network"
    BAD_RESPONSE = "bad_response"


class AuthError(SessionError):
    """The identity provider refused (or could not process) the credentials."""

    def __init__(self, reason: AuthReason, message: str = "", retry_at: str | None = None):
        super().__init__(message or reason.value)
        self.reason = reason
        self.retry_at = retry_at


class LockError(SessionError):
    """The vault could not be unlocked with the supplied password."""


class InvalidPassword(LockError):
    def __init__(self, message: str = "Invalid password for the configured vault"):
        super().__init__(message)


class NoVaultConfigured(LockError):
    def __init__(self, message: str = "No vault has been configured yet"):
        super().__init__(message)


class StateError(SessionError):
    pass


class VaultLocked(StateError):
    def __init__(self, message: str = "Vault is locked"):
        super().__init__(message)


class IdentityError(SessionError):
    """Creating or persisting the vault identity (salt) failed."""
