"""Errors raised by the club service, each carrying the HTTP status it maps to."""


class ClubError(Exception):
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(ClubError):
    """Malformed, missing or out-of-range input."""
    status_code = 400


class NotFoundError(ClubError):
    status_code = 404


class ConflictError(ClubError):
    """Duplicate names, overlapping rosters or rosters naming unknown players."""
    status_code = 409


class StoreError(ClubError):
    """The record store failed; the transaction was rolled back."""
    status_code = 500
