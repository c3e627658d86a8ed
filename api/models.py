"""
API request and response models for AdminHub REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are separate from the dataclasses in auth/models.py,
rbac/models.py and audit/models.py, which own the internal domain
representation. Route handlers map between the two.

Field names follow the public contract (Portuguese resource fields such as
nome/senha/perfil_id; token fields as issued by /auth/validate).

Validation messages are user-visible. api/main.py returns the first failing
field's message verbatim as {"error": "..."} with status 400.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from audit.models import AuditEntry, Outcome
from auth.models import User
from rbac.models import Action, Module, Permission, Profile, Role

# ---------------------------------------------------------------------------
# Field rules
# ---------------------------------------------------------------------------

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,6}(?:\.[a-zA-Z]{2,6})?$")
_NOME_CHARS = re.compile(r"^[a-zA-ZÀ-ÿ\s'-]+$")

# bcrypt only reads the first 72 bytes of a password.
_SENHA_MIN = 8
_SENHA_MAX = 72


def email_error(email: str) -> Optional[str]:
    """Return the most specific problem with ``email``, or None if it is valid."""
    value = email.strip()
    if not value:
        return "O email não pode ser vazio."
    if EMAIL_PATTERN.match(value):
        return None
    if "@" not in value:
        return "O email deve conter o símbolo '@'."
    if value.count("@") > 1:
        return "O email deve conter apenas um símbolo '@'."
    if " " in value:
        return "O email não pode conter espaços."
    if value.startswith("@") or value.endswith("@"):
        return "O email não pode começar ou terminar com '@'."
    if "." not in value:
        return "O email deve conter um ponto (.) no domínio."
    return "Formato de email inválido (ex: usuario@dominio.com)."


def nome_error(nome: str) -> Optional[str]:
    value = nome.strip()
    if len(value) < 2:
        return "Nome deve ter pelo menos 2 caracteres."
    if len(value) > 100:
        return "Nome deve ter no máximo 100 caracteres."
    if value.isdigit():
        return "Nome não pode ser composto apenas por números."
    if re.search(r"\s{2,}", value):
        return "Nome não pode ter espaços consecutivos."
    if not _NOME_CHARS.match(value):
        return "Nome contém caracteres inválidos."
    return None


def senha_error(senha: str) -> Optional[str]:
    if not senha.strip():
        return "Senha é obrigatória e não pode ser vazia."
    if len(senha) < _SENHA_MIN:
        return "Senha muito fraca."
    if len(senha.encode("utf-8")) > _SENHA_MAX:
        return f"Senha deve ter no máximo {_SENHA_MAX} bytes."
    return None


class _UsuarioFields(BaseModel):
    """Shared nome/email/senha validators for create and update bodies."""

    @field_validator("nome", check_fields=False)
    @classmethod
    def check_nome(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        problem = nome_error(value)
        if problem:
            raise ValueError(problem)
        return value.strip()

    @field_validator("email", check_fields=False)
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        problem = email_error(value)
        if problem:
            raise ValueError(problem)
        return value.strip().lower()

    @field_validator("senha", check_fields=False)
    @classmethod
    def check_senha(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        problem = senha_error(value)
        if problem:
            raise ValueError(problem)
        return value


# ---------------------------------------------------------------------------
# Common
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Error envelope returned on every 4xx/5xx response."""

    model_config = ConfigDict(frozen=True)

    error: str


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    senha: str = Field(min_length=1, max_length=255)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int


class ValidatedUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    is_active: bool


class TokenInfo(BaseModel):
    """Token lifetime as shown to clients. Dates are dd/mm/YYYY, HH:MM:SS."""

    model_config = ConfigDict(frozen=True)

    issued_at: str
    expires_at: str
    expires_in_seconds: int


class ValidateResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool = True
    user: ValidatedUser
    token_info: TokenInfo


class ValidateFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool = False
    error: str


class CheckResponse(BaseModel):
    """POST /auth/check body. Exactly one field, whatever the failure cause."""

    model_config = ConfigDict(frozen=True)

    valid: bool


# ---------------------------------------------------------------------------
# Usuarios
# ---------------------------------------------------------------------------


class UsuarioCreate(_UsuarioFields):
    """Request body for POST /usuarios.

    Fields are Optional at the type level so a missing field produces the
    single combined message below instead of one pydantic error per field.
    """

    nome: Optional[str] = None
    email: Optional[str] = None
    senha: Optional[str] = None

    @model_validator(mode="after")
    def require_all(self) -> "UsuarioCreate":
        if not self.nome or not self.email or not self.senha:
            raise ValueError("Nome, email e senha são obrigatórios.")
        return self


class UsuarioUpdate(_UsuarioFields):
    """Request body for PUT and PATCH /usuarios/{id}. Every field is optional."""

    nome: Optional[str] = None
    email: Optional[str] = None
    senha: Optional[str] = None
    is_active: Optional[bool] = None
    perfil_id: Optional[int] = None

    def changes(self) -> dict:
        """Return only the fields the client actually sent."""
        return self.model_dump(exclude_unset=True)


class UsuarioResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    nome: str
    email: str
    is_active: bool
    perfil_id: Optional[int]
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UsuarioResponse":
        return cls(
            id=user.id,
            nome=user.name,
            email=user.email,
            is_active=user.is_active,
            perfil_id=user.profile_id,
            created_at=user.created_at or "",
        )


# ---------------------------------------------------------------------------
# RBAC
# ---------------------------------------------------------------------------


class _Nome(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    nome: str = Field(min_length=1, max_length=100)


class ModuloCreate(_Nome):
    pass


class ModuloResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    nome: str

    @classmethod
    def from_module(cls, module: Module) -> "ModuloResponse":
        return cls(id=module.id, nome=module.name)


class PermissaoCreate(BaseModel):
    modulo_id: int
    acao: Action


class PermissaoResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    modulo_id: int
    acao: Action

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissaoResponse":
        return cls(id=permission.id, modulo_id=permission.module_id, acao=permission.action)


class RoleCreate(_Nome):
    permissao_ids: list[int] = Field(default_factory=list, max_length=500)


class RoleUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    nome: Optional[str] = Field(default=None, min_length=1, max_length=100)
    permissao_ids: Optional[list[int]] = Field(default=None, max_length=500)


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    nome: str
    permissao_ids: list[int]

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(id=role.id, nome=role.name, permissao_ids=sorted(role.permission_ids))


class PerfilCreate(_Nome):
    role_ids: list[int] = Field(default_factory=list, max_length=500)


class PerfilUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    nome: Optional[str] = Field(default=None, min_length=1, max_length=100)
    role_ids: Optional[list[int]] = Field(default=None, max_length=500)


class PerfilResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    nome: str
    role_ids: list[int]

    @classmethod
    def from_profile(cls, profile: Profile) -> "PerfilResponse":
        return cls(id=profile.id, nome=profile.name, role_ids=sorted(profile.role_ids))


# ---------------------------------------------------------------------------
# Auditoria
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: Optional[int]
    action: Action
    resource: str
    resource_id: Optional[str]
    timestamp: str
    outcome: Outcome
    detail: Optional[str]

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            action=entry.action,
            resource=entry.resource,
            resource_id=entry.resource_id,
            timestamp=entry.timestamp,
            outcome=entry.outcome,
            detail=entry.detail,
        )
