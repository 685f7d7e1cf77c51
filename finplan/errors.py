"""Error taxonomy shared by the store, the recurrence engine and the API."""


class FinplanError(Exception):
    """Base class for domain errors."""

    code = "error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(FinplanError):
    """Malformed id or missing/invalid field; nothing was mutated."""

    code = "validation_error"


class NotFoundError(FinplanError):
    """The requested transaction does not exist."""

    code = "not_found"


class StoreError(FinplanError):
    """A query or write against the transactions collection failed."""

    code = "store_error"
