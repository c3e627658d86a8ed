"""
api/routes/rbac.py -- Administration of the permission graph.

Routes (each gated and audited under its own module name):
  /modulos      -- modules (the protected resource areas)
  /permissoes   -- (module, action) pairs
  /roles        -- named permission sets
  /perfis       -- named role sets; a user holds at most one profile

Every collection supports POST, GET (list), GET /{id}, PUT /{id}, DELETE /{id}.

Referenced ids (modulo_id, permissao_ids, role_ids) are checked before any
write and reported as 404 naming the first missing kind. Name and pair
uniqueness is left to the schema and surfaces as 409 through store_errors().

Changes take effect on the next request: the permission graph is re-read on
every gate check.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.models import (
    MessageResponse,
    ModuloCreate,
    ModuloResponse,
    PerfilCreate,
    PerfilResponse,
    PerfilUpdate,
    PermissaoCreate,
    PermissaoResponse,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
)
from audit.recorder import audited
from auth.dependencies import require_permission
from auth.store import UserStore
from core.db import store_errors
from core.errors import NotFound
from rbac.models import Action, Module, Permission, Profile, Role
from rbac.store import RbacStore

router = APIRouter()


def _gate(module: str, action: Action) -> list:
    return [Depends(require_permission(module, action))]


def _rbac(request: Request) -> RbacStore:
    return request.app.state.rbac_store


# ---------------------------------------------------------------------------
# Modulos
# ---------------------------------------------------------------------------

_MODULO_NOT_FOUND = "Módulo não encontrado."
_MODULO_CONFLICT = "Já existe um módulo com este nome."


@router.post("/modulos", response_model=ModuloResponse, status_code=201, dependencies=_gate("modulos", Action.create))
@audited("modulos", Action.create)
def create_modulo(request: Request, body: ModuloCreate) -> ModuloResponse:
    store = _rbac(request)
    with store_errors("Erro ao criar módulo", conflict=_MODULO_CONFLICT):
        module_id = store.create_module(Module(name=body.nome))
        return ModuloResponse.from_module(store.get_module(module_id))


@router.get("/modulos", response_model=list[ModuloResponse], dependencies=_gate("modulos", Action.read))
@audited("modulos", Action.read)
def list_modulos(request: Request) -> list[ModuloResponse]:
    with store_errors("Erro ao buscar módulos"):
        return [ModuloResponse.from_module(m) for m in _rbac(request).list_modules()]


@router.get("/modulos/{modulo_id}", response_model=ModuloResponse, dependencies=_gate("modulos", Action.read))
@audited("modulos", Action.read, id_param="modulo_id")
def get_modulo(request: Request, modulo_id: int) -> ModuloResponse:
    with store_errors("Erro ao buscar módulo"):
        module = _rbac(request).get_module(modulo_id)
    if module is None:
        raise NotFound(_MODULO_NOT_FOUND)
    return ModuloResponse.from_module(module)


@router.put("/modulos/{modulo_id}", response_model=ModuloResponse, dependencies=_gate("modulos", Action.update))
@audited("modulos", Action.update, id_param="modulo_id")
def update_modulo(request: Request, modulo_id: int, body: ModuloCreate) -> ModuloResponse:
    store = _rbac(request)
    with store_errors("Erro ao atualizar módulo", conflict=_MODULO_CONFLICT):
        if not store.update_module(modulo_id, body.nome):
            raise NotFound(_MODULO_NOT_FOUND)
        return ModuloResponse.from_module(store.get_module(modulo_id))


@router.delete("/modulos/{modulo_id}", response_model=MessageResponse, dependencies=_gate("modulos", Action.delete))
@audited("modulos", Action.delete, id_param="modulo_id")
def delete_modulo(request: Request, modulo_id: int) -> MessageResponse:
    """Delete a module. Its permissions go with it and drop out of every role."""
    with store_errors("Erro ao remover módulo"):
        if not _rbac(request).delete_module(modulo_id):
            raise NotFound(_MODULO_NOT_FOUND)
    return MessageResponse(message="Módulo removido com sucesso")


# ---------------------------------------------------------------------------
# Permissoes
# ---------------------------------------------------------------------------

_PERMISSAO_NOT_FOUND = "Permissão não encontrada."
_PERMISSAO_CONFLICT = "Esta permissão já existe para o módulo."


@router.post(
    "/permissoes", response_model=PermissaoResponse, status_code=201, dependencies=_gate("permissoes", Action.create)
)
@audited("permissoes", Action.create)
def create_permissao(request: Request, body: PermissaoCreate) -> PermissaoResponse:
    store = _rbac(request)
    with store_errors("Erro ao criar permissão", conflict=_PERMISSAO_CONFLICT):
        if store.get_module(body.modulo_id) is None:
            raise NotFound(_MODULO_NOT_FOUND)
        permission_id = store.create_permission(Permission(module_id=body.modulo_id, action=body.acao))
        return PermissaoResponse.from_permission(store.get_permission(permission_id))


@router.get("/permissoes", response_model=list[PermissaoResponse], dependencies=_gate("permissoes", Action.read))
@audited("permissoes", Action.read)
def list_permissoes(request: Request, modulo_id: Optional[int] = None) -> list[PermissaoResponse]:
    with store_errors("Erro ao buscar permissões"):
        permissions = _rbac(request).list_permissions(module_id=modulo_id)
    return [PermissaoResponse.from_permission(p) for p in permissions]


@router.get(
    "/permissoes/{permissao_id}", response_model=PermissaoResponse, dependencies=_gate("permissoes", Action.read)
)
@audited("permissoes", Action.read, id_param="permissao_id")
def get_permissao(request: Request, permissao_id: int) -> PermissaoResponse:
    with store_errors("Erro ao buscar permissão"):
        permission = _rbac(request).get_permission(permissao_id)
    if permission is None:
        raise NotFound(_PERMISSAO_NOT_FOUND)
    return PermissaoResponse.from_permission(permission)


@router.put(
    "/permissoes/{permissao_id}", response_model=PermissaoResponse, dependencies=_gate("permissoes", Action.update)
)
@audited("permissoes", Action.update, id_param="permissao_id")
def update_permissao(request: Request, permissao_id: int, body: PermissaoCreate) -> PermissaoResponse:
    store = _rbac(request)
    with store_errors("Erro ao atualizar permissão", conflict=_PERMISSAO_CONFLICT):
        if store.get_permission(permissao_id) is None:
            raise NotFound(_PERMISSAO_NOT_FOUND)
        if store.get_module(body.modulo_id) is None:
            raise NotFound(_MODULO_NOT_FOUND)
        store.update_permission(permissao_id, body.modulo_id, body.acao)
        return PermissaoResponse.from_permission(store.get_permission(permissao_id))


@router.delete(
    "/permissoes/{permissao_id}", response_model=MessageResponse, dependencies=_gate("permissoes", Action.delete)
)
@audited("permissoes", Action.delete, id_param="permissao_id")
def delete_permissao(request: Request, permissao_id: int) -> MessageResponse:
    with store_errors("Erro ao remover permissão"):
        if not _rbac(request).delete_permission(permissao_id):
            raise NotFound(_PERMISSAO_NOT_FOUND)
    return MessageResponse(message="Permissão removida com sucesso")


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

_ROLE_NOT_FOUND = "Role não encontrada."
_ROLE_CONFLICT = "Já existe uma role com este nome."


def _check_permission_ids(store: RbacStore, permission_ids: list[int]) -> set[int]:
    ids = set(permission_ids)
    if store.missing_permission_ids(ids):
        raise NotFound(_PERMISSAO_NOT_FOUND)
    return ids


@router.post("/roles", response_model=RoleResponse, status_code=201, dependencies=_gate("roles", Action.create))
@audited("roles", Action.create)
def create_role(request: Request, body: RoleCreate) -> RoleResponse:
    store = _rbac(request)
    with store_errors("Erro ao criar role", conflict=_ROLE_CONFLICT):
        permission_ids = _check_permission_ids(store, body.permissao_ids)
        role_id = store.create_role(Role(name=body.nome, permission_ids=permission_ids))
        return RoleResponse.from_role(store.get_role(role_id))


@router.get("/roles", response_model=list[RoleResponse], dependencies=_gate("roles", Action.read))
@audited("roles", Action.read)
def list_roles(request: Request) -> list[RoleResponse]:
    with store_errors("Erro ao buscar roles"):
        return [RoleResponse.from_role(r) for r in _rbac(request).list_roles()]


@router.get("/roles/{role_id}", response_model=RoleResponse, dependencies=_gate("roles", Action.read))
@audited("roles", Action.read, id_param="role_id")
def get_role(request: Request, role_id: int) -> RoleResponse:
    with store_errors("Erro ao buscar role"):
        role = _rbac(request).get_role(role_id)
    if role is None:
        raise NotFound(_ROLE_NOT_FOUND)
    return RoleResponse.from_role(role)


@router.put("/roles/{role_id}", response_model=RoleResponse, dependencies=_gate("roles", Action.update))
@audited("roles", Action.update, id_param="role_id")
def update_role(request: Request, role_id: int, body: RoleUpdate) -> RoleResponse:
    """Rename a role and/or replace its whole permission set."""
    store = _rbac(request)
    with store_errors("Erro ao atualizar role", conflict=_ROLE_CONFLICT):
        permission_ids = None
        if body.permissao_ids is not None:
            permission_ids = _check_permission_ids(store, body.permissao_ids)
        if not store.update_role(role_id, name=body.nome, permission_ids=permission_ids):
            raise NotFound(_ROLE_NOT_FOUND)
        return RoleResponse.from_role(store.get_role(role_id))


@router.delete("/roles/{role_id}", response_model=MessageResponse, dependencies=_gate("roles", Action.delete))
@audited("roles", Action.delete, id_param="role_id")
def delete_role(request: Request, role_id: int) -> MessageResponse:
    with store_errors("Erro ao remover role"):
        if not _rbac(request).delete_role(role_id):
            raise NotFound(_ROLE_NOT_FOUND)
    return MessageResponse(message="Role removida com sucesso")


# ---------------------------------------------------------------------------
# Perfis
# ---------------------------------------------------------------------------

_PERFIL_NOT_FOUND = "Perfil não encontrado."
_PERFIL_CONFLICT = "Já existe um perfil com este nome."


def _check_role_ids(store: RbacStore, role_ids: list[int]) -> set[int]:
    ids = set(role_ids)
    if store.missing_role_ids(ids):
        raise NotFound(_ROLE_NOT_FOUND)
    return ids


@router.post("/perfis", response_model=PerfilResponse, status_code=201, dependencies=_gate("perfis", Action.create))
@audited("perfis", Action.create)
def create_perfil(request: Request, body: PerfilCreate) -> PerfilResponse:
    store = _rbac(request)
    with store_errors("Erro ao criar perfil", conflict=_PERFIL_CONFLICT):
        role_ids = _check_role_ids(store, body.role_ids)
        profile_id = store.create_profile(Profile(name=body.nome, role_ids=role_ids))
        return PerfilResponse.from_profile(store.get_profile(profile_id))


@router.get("/perfis", response_model=list[PerfilResponse], dependencies=_gate("perfis", Action.read))
@audited("perfis", Action.read)
def list_perfis(request: Request) -> list[PerfilResponse]:
    with store_errors("Erro ao buscar perfis"):
        return [PerfilResponse.from_profile(p) for p in _rbac(request).list_profiles()]


@router.get("/perfis/{perfil_id}", response_model=PerfilResponse, dependencies=_gate("perfis", Action.read))
@audited("perfis", Action.read, id_param="perfil_id")
def get_perfil(request: Request, perfil_id: int) -> PerfilResponse:
    with store_errors("Erro ao buscar perfil"):
        profile = _rbac(request).get_profile(perfil_id)
    if profile is None:
        raise NotFound(_PERFIL_NOT_FOUND)
    return PerfilResponse.from_profile(profile)


@router.put("/perfis/{perfil_id}", response_model=PerfilResponse, dependencies=_gate("perfis", Action.update))
@audited("perfis", Action.update, id_param="perfil_id")
def update_perfil(request: Request, perfil_id: int, body: PerfilUpdate) -> PerfilResponse:
    store = _rbac(request)
    with store_errors("Erro ao atualizar perfil", conflict=_PERFIL_CONFLICT):
        role_ids = None
        if body.role_ids is not None:
            role_ids = _check_role_ids(store, body.role_ids)
        if not store.update_profile(perfil_id, name=body.nome, role_ids=role_ids):
            raise NotFound(_PERFIL_NOT_FOUND)
        return PerfilResponse.from_profile(store.get_profile(perfil_id))


@router.delete("/perfis/{perfil_id}", response_model=MessageResponse, dependencies=_gate("perfis", Action.delete))
@audited("perfis", Action.delete, id_param="perfil_id")
def delete_perfil(request: Request, perfil_id: int) -> MessageResponse:
    """Delete a profile and unassign it from every user that held it."""
    user_store: UserStore = request.app.state.user_store
    with store_errors("Erro ao remover perfil"):
        if not _rbac(request).delete_profile(perfil_id):
            raise NotFound(_PERFIL_NOT_FOUND)
        user_store.clear_profile(perfil_id)
    return MessageResponse(message="Perfil removido com sucesso")
