"""Error taxonomy shared by the store, the generator and the channel adapters."""

from __future__ import annotations


class SupportDeskError(RuntimeError):
    """Base class for errors raised by the orchestration engine."""

    status_code = 500


class ValidationError(SupportDeskError):
    """Raised when an inbound payload is malformed."""

    status_code = 400


class NotFoundError(SupportDeskError):
    """Raised when a conversation or tenant could not be located."""

    status_code = 404


class InvalidStateError(SupportDeskError):
    """Raised for illegal lifecycle transitions or appends."""

    status_code = 409


class TenantMismatchError(InvalidStateError):
    """Raised when a tenant tries to act on another tenant's conversation."""


class GenerationError(SupportDeskError):
    """Raised when the text-generation backend fails or times out."""

    status_code = 502


class ConfigurationError(SupportDeskError):
    """Raised at start-up when required configuration is missing."""


class DeliveryError(SupportDeskError):
    """Raised when an outbound channel gateway rejects or drops a reply."""

    status_code = 502
