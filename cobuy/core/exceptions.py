"""Custom exceptions for the CoBuy negotiation service."""


class CoBuyException(Exception):
    """Base exception for CoBuy application."""

    pass


class ValidationError(CoBuyException):
    """Raised when input is malformed or out of range."""

    pass


class PreconditionFailed(CoBuyException):
    """Raised when an operation is not legal in the current state."""

    pass


class NotFoundError(CoBuyException):
    """Raised when a resource is not found."""

    pass


class StorageError(CoBuyException):
    """Raised when the durable store fails to apply a write."""

    pass


class TransportError(CoBuyException):
    """Raised when delivery to a single realtime subscriber fails."""

    pass


class ConfigurationError(CoBuyException):
    """Raised when configuration is invalid."""

    pass
