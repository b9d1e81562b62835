# Error types reported back in the response envelope


class AppError(Exception):
    """Base class for failures that end up in the ``errors`` list."""

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"message": self.message}


class ValidationError(AppError):
    """An invariant was violated before anything was written."""


class NotFoundError(AppError):
    """A referenced record does not exist (or is soft-deleted)."""


class ConflictError(AppError):
    """The store rejected a write on a uniqueness constraint."""


class StorageError(AppError):
    """The store was unreachable or failed unexpectedly."""


class RoutingError(AppError):
    """No operation matched, or the variables did not fit the operation."""


class AuthenticationError(AppError):
    """No acting user could be established for the request."""


class ForbiddenError(AppError):
    """The acting user may not touch the target record."""
