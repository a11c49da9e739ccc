from __future__ import annotations


class AppError(Exception):
    pass


class BusinessError(AppError):
    pass


class ValidationError(BusinessError):
    pass


class InvalidRutError(ValidationError):
    pass


class DuplicateIdentityError(ValidationError):
    pass


class IdentityConflictError(ValidationError):
    def __init__(self, message: str, conflict: object | None = None) -> None:
        super().__init__(message)
        self.conflict = conflict


class InvalidRecordError(ValidationError):
    pass


class InfraError(AppError):
    pass


class PersistenceError(InfraError):
    pass


class ExternalServiceError(InfraError):
    pass


class RemotePayloadError(ExternalServiceError):
    """El endpoint respondió pero con `success: false`."""


class TransientExternalError(ExternalServiceError):
    pass


class RemoteTransportError(TransientExternalError):
    """Fallo de red/timeout: transitorio, nunca se trata como validación."""
