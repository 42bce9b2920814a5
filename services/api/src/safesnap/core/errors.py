"""Error taxonomy shared by the services and mapped to HTTP codes in main.py."""


class SafeSnapError(Exception):
    """Base class for domain errors."""


class NotFoundError(SafeSnapError):
    pass


class IncidentNotFoundError(NotFoundError):
    def __init__(self, incident_id: str):
        super().__init__(f"Incident not found: {incident_id}")
        self.incident_id = incident_id


class UserNotFoundError(NotFoundError):
    def __init__(self, email: str):
        super().__init__(f"User not found: {email}")
        self.email = email


class SuggestionNotFoundError(NotFoundError):
    def __init__(self, incident_id: str):
        super().__init__(f"No RCA suggestion found for incident: {incident_id}")
        self.incident_id = incident_id


class AccessDeniedError(SafeSnapError):
    pass


class AuthenticationError(SafeSnapError):
    pass


class ValidationError(SafeSnapError):
    pass


class ConflictError(SafeSnapError):
    pass


class RcaReportExistsError(ConflictError):
    def __init__(self, incident_id: str):
        super().__init__(f"RCA report already exists for incident: {incident_id}")
        self.incident_id = incident_id


class ConcurrentModificationError(ConflictError):
    def __init__(self, what: str):
        super().__init__(f"{what} was modified concurrently, reload and retry")


class AiServiceError(SafeSnapError):
    """Transient or configuration failure of the generative backend."""


class BlobStoreError(SafeSnapError):
    pass


class RateLimitExceededError(SafeSnapError):
    """A quota was exhausted. ``quota`` names which one."""

    def __init__(
        self,
        message: str,
        quota: str = "",
        remaining: int = 0,
        retry_after_s: float | None = None,
    ):
        super().__init__(message)
        self.quota = quota
        self.remaining = remaining
        self.retry_after_s = retry_after_s


class SuggestionStateError(ConflictError):
    """The suggestion's current status does not allow the requested action."""

    def __init__(self, incident_id: str, status: str, action: str):
        super().__init__(f"Cannot {action} RCA suggestion for incident {incident_id} while it is {status}")
        self.incident_id = incident_id
        self.status = status
