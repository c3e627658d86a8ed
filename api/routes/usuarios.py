"""
api/routes/usuarios.py -- User account CRUD.

Routes:
  POST   /usuarios        -- public signup (no gate), audited create
  GET    /usuarios        -- gate usuarios:read,   audited read
  GET    /usuarios/{id}   -- gate usuarios:read,   audited read
  PUT    /usuarios/{id}   -- gate usuarios:update, audited update
  PATCH  /usuarios/{id}   -- gate usuarios:update, audited update
  DELETE /usuarios/{id}   -- gate usuarios:delete, audited delete

PUT and PATCH share one partial-update implementation: both validate every
field they receive. Sending "perfil_id": null unassigns the profile.

Self-protection: an account cannot deactivate or delete itself, so an admin
cannot lock themselves out by accident.

Handlers raise core.errors exceptions instead of returning error responses,
so the audit wrapper sees every failure and api/main.py shapes the body.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.models import MessageResponse, UsuarioCreate, UsuarioResponse, UsuarioUpdate
from audit.recorder import audited
from auth.dependencies import require_permission
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.db import store_errors
from core.errors import Conflict, NotFound, ValidationFailure
from rbac.models import Action
from rbac.store import RbacStore

MODULE = "usuarios"

router = APIRouter()

_NOT_FOUND = "Usuário não encontrado."


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------


@router.post("/usuarios", response_model=UsuarioResponse, status_code=201)
@audited(MODULE, Action.create)
def create_usuario(request: Request, body: UsuarioCreate) -> UsuarioResponse:
    """Create an account. Public; the audit entry has no actor.

    New accounts start with no profile and therefore no permissions.
    """
    user_store: UserStore = request.app.state.user_store
    with store_errors("Erro ao criar usuário", conflict="Email já está em uso."):
        if user_store.get_by_email(body.email) is not None:
            raise Conflict("Email já está em uso.")
        user_id = user_store.create_user(
            User(name=body.nome, email=body.email, hashed_password=hash_password(body.senha))
        )
        created = user_store.get_by_id(user_id)
    return UsuarioResponse.from_user(created)


# ---------------------------------------------------------------------------
# Protected
# ---------------------------------------------------------------------------


@router.get(
    "/usuarios",
    response_model=list[UsuarioResponse],
    dependencies=[Depends(require_permission(MODULE, Action.read))],
)
@audited(MODULE, Action.read)
def list_usuarios(request: Request) -> list[UsuarioResponse]:
    user_store: UserStore = request.app.state.user_store
    with store_errors("Erro ao buscar usuários"):
        users = user_store.list_users()
    return [UsuarioResponse.from_user(u) for u in users]


@router.get(
    "/usuarios/{user_id}",
    response_model=UsuarioResponse,
    dependencies=[Depends(require_permission(MODULE, Action.read))],
)
@audited(MODULE, Action.read, id_param="user_id")
def get_usuario(request: Request, user_id: int) -> UsuarioResponse:
    user_store: UserStore = request.app.state.user_store
    with store_errors("Erro ao buscar usuário"):
        user = user_store.get_by_id(user_id)
    if user is None:
        raise NotFound(_NOT_FOUND)
    return UsuarioResponse.from_user(user)


@router.put(
    "/usuarios/{user_id}",
    response_model=UsuarioResponse,
    dependencies=[Depends(require_permission(MODULE, Action.update))],
)
@audited(MODULE, Action.update, id_param="user_id")
def update_usuario(request: Request, user_id: int, body: UsuarioUpdate) -> UsuarioResponse:
    return _apply_update(request, user_id, body)


@router.patch(
    "/usuarios/{user_id}",
    response_model=UsuarioResponse,
    dependencies=[Depends(require_permission(MODULE, Action.update))],
)
@audited(MODULE, Action.update, id_param="user_id")
def patch_usuario(request: Request, user_id: int, body: UsuarioUpdate) -> UsuarioResponse:
    return _apply_update(request, user_id, body)


@router.delete(
    "/usuarios/{user_id}",
    response_model=MessageResponse,
    dependencies=[Depends(require_permission(MODULE, Action.delete))],
)
@audited(MODULE, Action.delete, id_param="user_id")
def delete_usuario(request: Request, user_id: int) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    if user_id == request.state.identity.user_id:
        raise ValidationFailure("Você não pode remover a sua própria conta.")
    with store_errors("Erro ao remover usuário"):
        if user_store.get_by_id(user_id) is None:
            raise NotFound(_NOT_FOUND)
        user_store.delete_user(user_id)
    return MessageResponse(message="Usuário removido com sucesso")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _apply_update(request: Request, user_id: int, body: UsuarioUpdate) -> UsuarioResponse:
    user_store: UserStore = request.app.state.user_store
    rbac_store: RbacStore = request.app.state.rbac_store
    changes = body.changes()

    with store_errors("Erro ao atualizar usuário", conflict="Email já está em uso por outro usuário."):
        target = user_store.get_by_id(user_id)
        if target is None:
            raise NotFound(_NOT_FOUND)

        updates: dict = {}
        if changes.get("nome") is not None:
            updates["name"] = changes["nome"]
        if changes.get("email") is not None:
            owner = user_store.get_by_email(changes["email"])
            if owner is not None and owner.id != user_id:
                raise Conflict("Email já está em uso por outro usuário.")
            updates["email"] = changes["email"]
        if changes.get("senha") is not None:
            updates["hashed_password"] = hash_password(changes["senha"])
        if changes.get("is_active") is not None:
            if not changes["is_active"] and user_id == request.state.identity.user_id:
                raise ValidationFailure("Você não pode desativar a sua própria conta.")
            updates["is_active"] = changes["is_active"]
        if "perfil_id" in changes:
            updates["profile_id"] = _checked_profile_id(rbac_store, changes["perfil_id"])

        if not updates:
            raise ValidationFailure("Nenhum dado válido fornecido para atualização.")

        user_store.update_user(user_id, **updates)
        updated = user_store.get_by_id(user_id)
    if updated is None:
        raise NotFound(_NOT_FOUND)
    return UsuarioResponse.from_user(updated)


def _checked_profile_id(rbac_store: RbacStore, profile_id: Optional[int]) -> Optional[int]:
    if profile_id is not None and rbac_store.get_profile(profile_id) is None:
        raise NotFound("Perfil não encontrado.")
    return profile_id
