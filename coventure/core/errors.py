from typing import Optional


class CoVentureError(Exception):
    """Base de todos los errores propios."""


class ConfigurationError(CoVentureError):
    pass


class BackendError(CoVentureError):
    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


class TransientBackendError(BackendError):
    """Fallo de conectividad o timeout; el usuario puede reintentar."""


class NotFoundError(BackendError):
    pass


class ProfileNotFound(NotFoundError):
    redirect = "/onboarding"


class ConflictError(CoVentureError):
    pass


class ClientValidationError(CoVentureError):
    pass


class PermissionDenied(CoVentureError):
    pass


class InvalidTransition(CoVentureError):
    pass
