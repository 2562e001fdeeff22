"""Service layer — business logic orchestration."""


class ServiceError(Exception):
    """Base service exception."""


class NotFoundError(ServiceError):
    """Referenced scan, plan, deployment run or backup item is gone (-> HTTP 404)."""


class ConflictError(ServiceError):
    """Another dependent operation is still in flight (-> HTTP 409)."""


class ValidationError(ServiceError):
    """Input validation or state transition error (-> HTTP 422)."""


class RemoteExecutionError(ServiceError):
    """An external engine reported failure (-> HTTP 502)."""


class TransientPollError(RemoteExecutionError):
    """A single scan status poll failed; fatal to the current poll loop."""
