"""
core/errors.py -- Error taxonomy shared by auth/, rbac/, audit/ and api/.

Every AppError carries an HTTP status code and a stable, user-visible message.
The messages on the Unauthenticated family are part of the public contract:
clients match on them, so they never change with the underlying cause.

api/main.py turns any AppError into {"error": message} with its status code.
AuditWriteFailure is not an AppError: it never reaches a client.

Layer rule: core/ is the kernel. No imports from api/, auth/, rbac/, or audit/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    default_message: str = "Erro interno do servidor."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# 401 -- authentication
# ---------------------------------------------------------------------------


class Unauthenticated(AppError):
    status_code = 401
    default_message = "Token inválido"


class MissingCredential(Unauthenticated):
    default_message = "Token não fornecido"


class InvalidToken(Unauthenticated):
    default_message = "Token inválido"


class MalformedToken(InvalidToken):
    default_message = "Token malformado"


class ExpiredToken(Unauthenticated):
    default_message = "Token expirado"


class UnknownSubject(Unauthenticated):
    default_message = "Usuário não encontrado"


class InactiveSubject(Unauthenticated):
    default_message = "Usuário inativo"


# ---------------------------------------------------------------------------
# 4xx -- authorization and business rules
# ---------------------------------------------------------------------------


class Forbidden(AppError):
    status_code = 403
    default_message = "Acesso negado"


class ValidationFailure(AppError):
    status_code = 400
    default_message = "Requisição inválida."


class NotFound(AppError):
    status_code = 404
    default_message = "Recurso não encontrado."


class Conflict(AppError):
    status_code = 409
    default_message = "Conflito com o estado atual do recurso."


# ---------------------------------------------------------------------------
# 5xx
# ---------------------------------------------------------------------------


class UnexpectedFailure(AppError):
    """Wraps an unanticipated error at a route boundary.

    Only the context reaches the client ("Erro ao buscar usuários: erro
    interno do servidor"). The original exception stays chained via
    ``raise ... from exc`` and is logged by the exception handler.
    """

    status_code = 500

    def __init__(self, context: str) -> None:
        self.context = context
        super().__init__(f"{context}: erro interno do servidor")


class AuditWriteFailure(Exception):
    """Raised by AuditStore when an entry cannot be persisted. Logged, never surfaced."""
