"""
Error taxonomy for contact reconciliation.
Each error carries the HTTP status the API layer answers with.
"""

from typing import Optional


class ContactError(Exception):
    """Base application exception."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ContactError):
    """Missing identifiers, malformed fields or an invalid contact state."""

    status_code = 400


class NotFound(ContactError):
    status_code = 404


class ConflictError(ContactError):
    """A lock or integrity conflict outlived the retry budget."""


class StoreError(ContactError):
    """The underlying database failed."""


class ResolutionCancelled(ContactError):
    pass
