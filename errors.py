"""
Domain errors raised by the storage, auth and upload layers.

Each carries the HTTP status it maps to; ``main.py`` turns them into
``{"error": message}`` responses.
"""
from typing import Optional


class AppError(Exception):
    status_code = 500
    default_message = "Error del servidor"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Datos invalidos"


class AuthenticationError(AppError):
    status_code = 401
    default_message = "No autenticado"


class InvalidCredentials(AuthenticationError):
    default_message = "Credenciales invalidas"


class AuthorizationError(AppError):
    status_code = 403
    default_message = "No autorizado"


class NotFoundError(AppError):
    status_code = 404
    default_message = "No encontrado"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflicto"


class InternalError(AppError):
    status_code = 500
