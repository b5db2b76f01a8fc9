"""Domain errors shared by services and routers.

Errors that abort a whole operation carry an HTTP status and a short machine
code so the API layer can render them as structured payloads. Oracle errors
never reach the HTTP layer from the ingestion pipeline; they are either
absorbed by the keyword fallback or recorded per message.
"""


class AppError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()


class NoCategoriesError(AppError):
    """No categories found. Please create categories first."""
    status_code = 400
    code = "no_categories"


class MailboxNotConnectedError(AppError):
    """User not connected to Gmail."""
    status_code = 400
    code = "mailbox_not_connected"


class ReauthorizationRequired(AppError):
    """Gmail authorization was rejected; sign in again to reconnect the mailbox."""
    status_code = 401
    code = "reauthorization_required"


class GmailTimeoutError(AppError):
    """Gmail did not answer in time; try again shortly."""
    status_code = 504
    code = "gmail_timeout"


class SyncInProgressError(AppError):
    """A sync is already running for this account."""
    status_code = 409
    code = "sync_in_progress"


class OracleError(Exception):
    """The classification provider rejected the request."""


class OracleUnavailableError(OracleError):
    """Provider not configured, unreachable, timed out or failing server side."""


class OracleQuotaError(OracleUnavailableError):
    """Provider rate limit or quota exhausted."""


class OracleResponseError(OracleError):
    """Provider answered with content that is not the expected JSON shape."""
