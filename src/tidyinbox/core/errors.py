"""Custom exception types for tidyinbox.

Error messages follow one convention throughout the package:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance, where there is any)
"""


class TidyInboxError(Exception):
    """Base exception for all tidyinbox errors."""

    pass


class ConfigValidationError(TidyInboxError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(TidyInboxError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class GatewayError(TidyInboxError):
    """Raised when the Mail Gateway fails for an unknown reason.

    Attributes:
        status_code: Transport status code (if the gateway reports one)
        error_code: Provider-specific error code (if available)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class AuthExpiredError(GatewayError):
    """Raised when the owner's mailbox credential is missing, invalid or expired.

    The current rule run is aborted and the owner is asked to re-authenticate.
    It is never retried within the same tick.
    """

    def __init__(self, message: str, owner_id: str | None = None):
        super().__init__(message, status_code=401, error_code="AuthExpired")
        self.owner_id = owner_id


class TransientGatewayError(GatewayError):
    """Raised when the Mail Gateway is rate limited or times out.

    Recovery is the next scheduled occurrence of the rule; there is no
    immediate retry.

    Attributes:
        retry_after: Seconds suggested by the provider before retrying (if any)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code=status_code, error_code="Transient")
        self.retry_after = retry_after


class RuleValidationError(TidyInboxError):
    """Raised when a schedule rule definition is malformed.

    Rules are validated when they are created; the sweeper assumes every
    stored rule is well-formed.

    Attributes:
        field: Name of the offending field
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotifierError(TidyInboxError):
    """Raised when an owner notification cannot be delivered.

    Always caught by the sweeper; never blocks run bookkeeping.
    """

    pass


class DatabaseError(TidyInboxError):
    """Raised when SQLite operations fail."""

    pass
