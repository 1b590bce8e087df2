from __future__ import annotations


class AppError(Exception):
    pass


class BusinessError(AppError):
    pass


class ValidationError(BusinessError):
    pass


class InfraError(AppError):
    pass


class PersistenceError(InfraError):
    pass


class StorageFullError(PersistenceError):
    """El almacenamiento local no admite más escrituras; la operación no se guardó."""


class StorageReadError(PersistenceError):
    pass


class NotConfiguredError(InfraError):
    pass


class ExternalServiceError(InfraError):
    pass


class RemoteOperationFailedError(ExternalServiceError):
    pass


class TransientExternalError(RemoteOperationFailedError):
    pass
