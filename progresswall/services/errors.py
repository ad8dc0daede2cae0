from __future__ import annotations


class ServiceError(Exception):
    """Base class for errors the request layer maps onto responses."""


class NotFoundError(ServiceError):
    pass


class ForbiddenError(ServiceError):
    pass


class ConflictError(ServiceError):
    pass


class InternalError(ServiceError):
    """Storage or transaction failure; the unit of work has been rolled back."""
