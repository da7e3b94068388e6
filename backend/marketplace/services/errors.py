"""Typed failures of marketplace business actions.

Every failure kind is a distinct class with a stable ``code`` so the
calling layer can tell "slots full" from "you don't own this campaign".
The API maps ``status_code`` onto the HTTP response.
"""


class MarketplaceError(Exception):
    code = "marketplace_error"
    status_code = 400

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class ForbiddenError(MarketplaceError):
    """The acting user is not the legitimate counterparty."""

    code = "forbidden"
    status_code = 403


class NotFoundError(MarketplaceError):
    code = "not_found"
    status_code = 404


class InvalidTransitionError(MarketplaceError):
    """The requested status change is not in the entity's transition table."""

    code = "invalid_transition"
    status_code = 409

    def __init__(self, entity_type: str, current: str, requested: str):
        self.entity_type = entity_type
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid {entity_type} transition: {current} -> {requested}"
        )


class InvalidStateError(MarketplaceError):
    """A transition-specific precondition failed (capacity, deadline, ...)."""

    code = "invalid_state"
    status_code = 409


class ValidationError(MarketplaceError):
    """A field required by this particular transition is missing or malformed."""

    code = "validation_error"
    status_code = 422


class ConflictError(MarketplaceError):
    """Uniqueness violation or a concurrent modification that survived a retry."""

    code = "conflict"
    status_code = 409


class OverReleaseError(MarketplaceError):
    code = "over_release"
    status_code = 409
