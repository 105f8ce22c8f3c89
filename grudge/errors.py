"""Error kinds raised by the service layer.

Routes never build these responses by hand; the application error handler
rolls back the session and renders ``{'error': ..., 'kind': ...}``.
"""


class ServiceError(Exception):
    kind = 'error'
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message, 'kind': self.kind}


class Unauthorized(ServiceError):
    kind = 'unauthorized'
    status_code = 401


class Forbidden(ServiceError):
    kind = 'forbidden'
    status_code = 403


class NotFound(ServiceError):
    kind = 'not_found'
    status_code = 404


class Invalid(ServiceError):
    kind = 'invalid'
    status_code = 400


class Conflict(ServiceError):
    kind = 'conflict'
    status_code = 409
