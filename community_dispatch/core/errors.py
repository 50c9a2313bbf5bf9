"""Exception taxonomy shared by the registry, dispatcher, tracker and jobs.

``ValidationError`` and ``NotFoundError`` are the caller's problem and are
mapped to 4xx responses by the routes.  ``DeliveryError`` is recorded on the
``NotificationRecord`` and never escapes a sweep.  ``IntegrationError`` is
logged and does not revert state already written.
"""
from __future__ import annotations


class DispatchError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(DispatchError, ValueError):
    """Raised for malformed input to a registry, dispatch or billing call."""


class NotFoundError(DispatchError, LookupError):
    """Raised when a device, aggregate, notification or publication is missing."""


class DeliveryError(DispatchError):
    """Raised by a push client when the provider rejects or times out."""


class IntegrationError(DispatchError):
    """Raised when an external collaborator (account suspension) fails."""
