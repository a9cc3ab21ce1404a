class SmartmarkError(Exception):
    """Base class for errors shown to the user as a message string."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SmartmarkError):
    """Bookmark input rejected locally; never reaches the backend."""


class BackendError(SmartmarkError):
    """The table store refused or failed a request."""


class AuthError(SmartmarkError):
    """Sign-in, token exchange or token refresh failed."""


class SubmissionInProgress(SmartmarkError):
    def __init__(self, message: str = "A bookmark is already being added"):
        super().__init__(message)
