"""Error taxonomy shared by the data store, services and API layer."""


class PortalError(Exception):
    """Base class for all portal errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(PortalError):
    """Malformed input. Raised before any write happens."""

    def __init__(self, message: str = "Invalid input", errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class AuthError(PortalError):
    """An authenticated user is required but none is present."""


class PermissionDenied(PortalError):
    """The current user lacks the role required for the operation."""


class NotFoundError(PortalError):
    """Mutation target does not exist (or is archived where that matters)."""


class TransientStorageError(PortalError):
    """Network or connection failure talking to the store. Not retried here."""


def validation_error_from(exc) -> ValidationError:
    """Convert a pydantic ValidationError into the portal's ValidationError."""
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()))
        errors.append(f"{location}: {err.get('msg', 'invalid')}" if location else err.get("msg", "invalid"))
    return ValidationError(errors[0] if errors else "Invalid input", errors=errors)
