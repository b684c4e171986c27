"""
Exception hierarchy shared by the calculators and their collaborators.

Two families are distinguished:

- **operational** errors are expected and recoverable by the caller (unknown
  crop, field missing configuration, no sensor reading, invalid soil
  texture). They carry a ``context`` mapping with the resource name and
  identifier so an API layer can produce a 4xx response.
- **infrastructure** errors wrap failures of persistence or I/O
  collaborators. They are surfaced unchanged for centralized logging and a
  5xx response.

Classes
-------
AgroEngineError
    Base class with ``status_code``, ``is_operational`` and ``context``.
ValidationError, NotFoundError, SensorDataError
    Operational errors.
InfrastructureError, PersistenceError, ExternalServiceError
    Infrastructure errors.
"""

from __future__ import annotations

from typing import Any, Mapping


class AgroEngineError(Exception):
    """Base class for every error raised by :mod:`agroengine`."""

    status_code: int = 500
    is_operational: bool = True

    def __init__(
        self, message: str, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context or {})


class OperationalError(AgroEngineError):
    """Expected failure the caller can recover from."""

    status_code = 400
    is_operational = True


class ValidationError(OperationalError, ValueError):
    """Input or configuration is not usable for the requested calculation."""

    status_code = 400


class NotFoundError(OperationalError, LookupError):
    """A named resource (crop, field, reading) does not exist."""

    status_code = 404

    def __init__(self, resource: str, identifier: Any) -> None:
        super().__init__(
            f"{resource} with identifier '{identifier}' not found",
            {"resource": resource, "identifier": identifier},
        )
        self.resource = resource
        self.identifier = identifier


class SensorDataError(OperationalError):
    """A sensor payload is outside the range the hardware can produce."""

    status_code = 422


class InfrastructureError(AgroEngineError):
    """Unexpected failure of a collaborator (storage, network)."""

    status_code = 500
    is_operational = False


class PersistenceError(InfrastructureError):
    """A storage operation failed."""

    def __init__(
        self, operation: str, original: BaseException | None = None
    ) -> None:
        super().__init__(
            f"Storage operation '{operation}' failed",
            {
                "operation": operation,
                "original_message": str(original) if original else None,
            },
        )


class ExternalServiceError(InfrastructureError):
    """A remote service (e.g. weather forecast provider) failed."""

    status_code = 502

    def __init__(
        self, service: str, original: BaseException | None = None
    ) -> None:
        super().__init__(
            f"External service '{service}' failed",
            {
                "service": service,
                "original_message": str(original) if original else None,
            },
        )


def is_operational_error(error: BaseException) -> bool:
    """Return True if ``error`` is an expected, caller-recoverable error."""
    return isinstance(error, AgroEngineError) and error.is_operational
