class ConfigurationError(RuntimeError):
    """Raised at startup when a required setting is missing."""


class InvalidToken(Exception):
    """Raised when a token cannot be decoded, is forged or has expired."""


class ApiError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_response(self):
        return {"message": self.message}, self.status_code


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid request payload."


class DuplicateResourceError(ApiError):
    status_code = 400
    default_message = "This resource already exists."


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Authentication is required."


class Forbidden(ApiError):
    status_code = 403
    default_message = "You need additional permissions to perform this action."


class NotFound(ApiError):
    status_code = 404
    default_message = "Resource not found."


class InternalError(ApiError):
    status_code = 500
