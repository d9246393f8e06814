"""Exception types shared across the monitor."""
from typing import Optional


class CredentialValidationError(ValueError):
    """A candidate credential set has fewer required keys than the threshold."""

    def __init__(self, domain: str, found: int, required: int):
        self.domain = domain
        self.found = found
        self.required = required
        super().__init__(
            f"Credentials for {domain} failed validation ({found}/{required} required keys)"
        )


class CredentialFetchError(RuntimeError):
    """The credential fetcher timed out, was blocked, or could not navigate."""

    def __init__(self, domain: str, message: str):
        self.domain = domain
        super().__init__(f"Credential fetch for {domain} failed: {message}")


class SignatureInputWarning(UserWarning):
    """Malformed token input; signing proceeds with the raw value."""


class SessionConfigError(ValueError):
    """Session created or updated with an invalid configuration."""


class SessionStateError(RuntimeError):
    """Command not allowed in the session's current state."""


class StorageInitError(RuntimeError):
    """Durable credential storage could not be initialized."""


# Response codes the mtop gateway uses for expired or rejected tokens
CREDENTIAL_RET_CODES = (
    "FAIL_SYS_TOKEN_EXOIRED",
    "FAIL_SYS_TOKEN_EXPIRED",
    "FAIL_SYS_TOKEN_ILLEGAL",
    "FAIL_SYS_TOKEN_EMPTY",
    "FAIL_SYS_SESSION_EXPIRED",
    "FAIL_SYS_ILLEGAL_ACCESS",
    "RGV587_ERROR",
)

# Wording in `msg` that points at a missing or expired login
CREDENTIAL_MESSAGE_MARKERS = ("登录", "session", "未授权", "令牌")


class RemoteApiError(RuntimeError):
    """The signed call was rejected by the remote API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        ret_code: Optional[str] = None,
        api_message: Optional[str] = None,
    ):
        self.status_code = status_code
        self.ret_code = ret_code
        self.api_message = api_message
        super().__init__(message)

    @property
    def credential_related(self) -> bool:
        """Whether the rejection most likely means stale credentials."""
        if self.status_code in (401, 403, 429):
            return True
        if self.ret_code and any(code in self.ret_code for code in CREDENTIAL_RET_CODES):
            return True
        if self.api_message:
            message = self.api_message.lower()
            return any(marker in message for marker in CREDENTIAL_MESSAGE_MARKERS)
        return False
