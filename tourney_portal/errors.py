"""Request-level error taxonomy mapped to HTTP status codes by the app factory."""


class PortalError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class AuthenticationError(PortalError):
    status_code = 401


class AuthorizationError(PortalError):
    status_code = 403


class ValidationError(PortalError):
    status_code = 400


class NotFoundError(PortalError):
    status_code = 404


class ConflictError(PortalError):
    """Raised for illegal test lifecycle edits such as changing a published test."""
    status_code = 409
