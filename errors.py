class DonationError(Exception):
    """Base class for every failure shown to the donor."""

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(DonationError):
    """Form input rejected before any remote call is made."""


class StoreError(DonationError):
    """The external store could not be reached or rejected the request."""

    def __init__(self, reason, status=None):
        super().__init__(reason)
        self.reason = reason
        self.status = status


class AuthError(DonationError):
    """A credential strategy could not produce an identity."""


class SubmissionInProgress(DonationError):
    """A submission for the same donor has not finished yet."""
