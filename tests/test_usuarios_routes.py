"""
tests/test_usuarios_routes.py -- Integration tests for /usuarios and the gate + recorder pipeline.

These tests exercise the full stack: gate dependency -> @audited wrapper ->
route handler -> UserStore / RbacStore -> exception handlers.

Coverage:
  - Gate: 401 without token, 403 without the grant, deny-by-default without profile
  - Audit: exactly one entry per audited request, none for gate rejections
  - Public signup: 201 with an anonymous audit entry; validation and 409 conflicts
  - Updates: PUT/PATCH partial fields, profile assignment and clearing, self-protection
  - Audit write failure never changes the response

Fixtures used (from conftest.py):
  - api_env: ApiEnv with an admin on the seeded Administrador profile
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest
from conftest import ApiEnv, grant_profile, make_user

from api.main import app
from audit.models import Outcome
from audit.store import AuditStore
from core.errors import AuditWriteFailure
from rbac.models import Action


def _entries(env: ApiEnv) -> list:
    return env.audit_store.list_entries(limit=100_000)


@pytest.fixture(scope="module")
def reader_profile(api_env: ApiEnv) -> int:
    """A profile granting only usuarios:read."""
    return grant_profile(api_env.rbac_store, "Somente leitura", [("usuarios", Action.read)])


class TestGate:
    def test_no_token_is_401(self, api_env: ApiEnv) -> None:
        resp = api_env.client.get("/usuarios")
        assert resp.status_code == 401, f"Expected 401, got {resp.status_code}: {resp.text}"
        assert resp.json() == {"error": "Token não fornecido"}

    def test_malformed_token_is_401_with_reason(self, api_env: ApiEnv) -> None:
        resp = api_env.client.get("/usuarios", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Token malformado"}

    def test_no_profile_is_403(self, api_env: ApiEnv) -> None:
        user = make_user(api_env.user_store)
        resp = api_env.client.get("/usuarios", headers=api_env.auth(user))
        assert resp.status_code == 403, f"Expected 403, got {resp.status_code}: {resp.text}"
        assert resp.json() == {"error": "Acesso negado"}

    def test_deactivated_user_token_stops_working(self, api_env: ApiEnv, reader_profile: int) -> None:
        user = make_user(api_env.user_store, profile_id=reader_profile)
        headers = api_env.auth(user)
        assert api_env.client.get("/usuarios", headers=headers).status_code == 200
        api_env.user_store.update_user(user.id, is_active=False)
        resp = api_env.client.get("/usuarios", headers=headers)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Usuário inativo"}

    def test_gate_rejections_are_not_audited(self, api_env: ApiEnv) -> None:
        before = len(_entries(api_env))
        api_env.client.get("/usuarios")
        api_env.client.get("/usuarios", headers=api_env.auth(make_user(api_env.user_store)))
        assert len(_entries(api_env)) == before


class TestReaderScenario:
    """A user whose profile grants only usuarios:read."""

    def test_delete_forbidden_read_allowed_and_audited(self, api_env: ApiEnv, reader_profile: int) -> None:
        ana = make_user(api_env.user_store, email="ana@example.com", name="Ana", profile_id=reader_profile)
        target = make_user(api_env.user_store)
        headers = api_env.auth(ana)
        before = len(_entries(api_env))

        resp = api_env.client.delete(f"/usuarios/{target.id}", headers=headers)
        assert resp.status_code == 403, f"Expected 403, got {resp.status_code}: {resp.text}"
        assert api_env.user_store.get_by_id(target.id) is not None
        assert len(_entries(api_env)) == before, "A gate rejection must not write an audit entry"

        resp = api_env.client.get(f"/usuarios/{target.id}", headers=headers)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["id"] == target.id

        entries = _entries(api_env)
        assert len(entries) == before + 1
        entry = entries[0]
        assert entry.action == Action.read
        assert entry.resource == "usuarios"
        assert entry.resource_id == str(target.id)
        assert entry.user_id == ana.id
        assert entry.outcome == Outcome.success


class TestCreate:
    def test_anonymous_signup(self, api_env: ApiEnv) -> None:
        before = len(_entries(api_env))
        body = {"nome": "Carlos Lima", "email": "Carlos@Example.com", "senha": "senha-forte-9"}
        resp = api_env.client.post("/usuarios", json=body)
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["email"] == "carlos@example.com"
        assert data["nome"] == "Carlos Lima"
        assert data["is_active"] is True
        assert data["perfil_id"] is None
        assert "senha" not in data and "hashed_password" not in data

        entries = _entries(api_env)
        assert len(entries) == before + 1
        entry = entries[0]
        assert entry.user_id is None
        assert entry.action == Action.create
        assert entry.resource == "usuarios"
        assert entry.resource_id == str(data["id"])
        assert entry.outcome == Outcome.success

    def test_new_account_can_login_but_has_no_permissions(self, api_env: ApiEnv) -> None:
        body = {"nome": "Beatriz Reis", "email": "bia@example.com", "senha": "senha-forte-9"}
        assert api_env.client.post("/usuarios", json=body).status_code == 201
        login = api_env.client.post("/auth/login", json={"email": "bia@example.com", "senha": "senha-forte-9"})
        assert login.status_code == 200
        headers = {"Authorization": f"Bearer {login.json()['access_token']}"}
        assert api_env.client.get("/usuarios", headers=headers).status_code == 403

    def test_duplicate_email_is_409_and_audited_as_failure(self, api_env: ApiEnv) -> None:
        existing = make_user(api_env.user_store)
        resp = api_env.client.post(
            "/usuarios", json={"nome": "Outro Nome", "email": existing.email.upper(), "senha": "senha-forte-9"}
        )
        assert resp.status_code == 409, f"Expected 409, got {resp.status_code}: {resp.text}"
        assert resp.json() == {"error": "Email já está em uso."}
        entry = _entries(api_env)[0]
        assert entry.outcome == Outcome.failure
        assert entry.action == Action.create
        assert entry.resource_id is None

    @pytest.mark.parametrize(
        "body, message",
        [
            ({"nome": "Sem Senha", "email": "a@example.com"}, "Nome, email e senha são obrigatórios."),
            ({"nome": "Fraca", "email": "b@example.com", "senha": "123"}, "Senha muito fraca."),
            ({"nome": "Sem Arroba", "email": "semarroba.com", "senha": "senha-forte-9"}, "O email deve conter o símbolo '@'."),
            ({"nome": "12345", "email": "c@example.com", "senha": "senha-forte-9"}, "Nome não pode ser composto apenas por números."),
        ],
        ids=["missing-senha", "weak-senha", "email-without-at", "numeric-nome"],
    )
    def test_validation_is_400_with_first_message(self, api_env: ApiEnv, body: dict, message: str) -> None:
        before = len(_entries(api_env))
        resp = api_env.client.post("/usuarios", json=body)
        assert resp.status_code == 400, f"Expected 400, got {resp.status_code}: {resp.text}"
        assert resp.json() == {"error": message}

        entries = _entries(api_env)
        assert len(entries) == before + 1, "A rejected signup must still be audited"
        entry = entries[0]
        assert entry.user_id is None
        assert entry.action == Action.create
        assert entry.outcome == Outcome.failure
        assert entry.detail == message


class TestRejectedBeforeHandler:
    """Requests FastAPI refuses while binding parameters are audited once."""

    def test_non_numeric_id_is_400_and_audited(self, api_env: ApiEnv) -> None:
        before = len(_entries(api_env))
        resp = api_env.client.get("/usuarios/abc", headers=api_env.auth())
        assert resp.status_code == 400, f"Expected 400, got {resp.status_code}: {resp.text}"

        entries = _entries(api_env)
        assert len(entries) == before + 1
        entry = entries[0]
        assert entry.action == Action.read
        assert entry.resource_id == "abc"
        assert entry.user_id == api_env.admin.id
        assert entry.outcome == Outcome.failure

    def test_unparseable_body_is_audited_for_admitted_caller(self, api_env: ApiEnv) -> None:
        user = make_user(api_env.user_store)
        headers = {**api_env.auth(), "Content-Type": "application/json"}
        before = len(_entries(api_env))
        resp = api_env.client.put(f"/usuarios/{user.id}", content="{", headers=headers)
        assert resp.status_code == 400

        entries = _entries(api_env)
        assert len(entries) == before + 1
        assert entries[0].action == Action.update
        assert entries[0].resource_id == str(user.id)
        assert entries[0].user_id == api_env.admin.id

    def test_unparseable_body_without_token_is_not_audited(self, api_env: ApiEnv) -> None:
        user = make_user(api_env.user_store)
        before = len(_entries(api_env))
        resp = api_env.client.put(
            f"/usuarios/{user.id}", content="{", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert len(_entries(api_env)) == before


class TestReadUpdateDelete:
    def test_list_as_admin(self, api_env: ApiEnv) -> None:
        resp = api_env.client.get("/usuarios", headers=api_env.auth())
        assert resp.status_code == 200
        assert any(u["id"] == api_env.admin.id for u in resp.json())

    def test_get_unknown_is_404_and_audited(self, api_env: ApiEnv) -> None:
        resp = api_env.client.get("/usuarios/987654", headers=api_env.auth())
        assert resp.status_code == 404
        assert resp.json() == {"error": "Usuário não encontrado."}
        entry = _entries(api_env)[0]
        assert entry.outcome == Outcome.failure
        assert entry.resource_id == "987654"
        assert entry.detail == "Usuário não encontrado."

    def test_patch_name_only(self, api_env: ApiEnv) -> None:
        user = make_user(api_env.user_store, name="Nome Antigo")
        resp = api_env.client.patch(f"/usuarios/{user.id}", json={"nome": "Nome Novo"}, headers=api_env.auth())
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["nome"] == "Nome Novo"
        assert resp.json()["email"] == user.email

    def test_put_password_changes_login(self, api_env: ApiEnv) -> None:
        user = make_user(api_env.user_store)
        resp = api_env.client.put(f"/usuarios/{user.id}", json={"senha": "nova-senha-77"}, headers=api_env.auth())
        assert resp.status_code == 200
        login = api_env.client.post("/auth/login", json={"email": user.email, "senha": "nova-senha-77"})
        assert login.status_code == 200

    def test_email_taken_by_other_user_is_409(self, api_env: ApiEnv) -> None:
        first = make_user(api_env.user_store)
        second = make_user(api_env.user_store)
        resp = api_env.client.patch(f"/usuarios/{second.id}", json={"email": first.email}, headers=api_env.auth())
        assert resp.status_code == 409
        assert resp.json() == {"error": "Email já está em uso por outro usuário."}

    def test_same_email_on_same_user_is_fine(self, api_env: ApiEnv) -> None:
        user = make_user(api_env.user_store)
        resp = api_env.client.patch(f"/usuarios/{user.id}", json={"email": user.email}, headers=api_env.auth())
        assert resp.status_code == 200

    def test_empty_update_is_400(self, api_env: ApiEnv) -> None:
        user = make_user(api_env.user_store)
        resp = api_env.client.patch(f"/usuarios/{user.id}", json={}, headers=api_env.auth())
        assert resp.status_code == 400
        assert resp.json() == {"error": "Nenhum dado válido fornecido para atualização."}

    def test_update_unknown_user_is_404(self, api_env: ApiEnv) -> None:
        resp = api_env.client.put("/usuarios/987654", json={"nome": "Ninguem"}, headers=api_env.auth())
        assert resp.status_code == 404

    def test_assign_unknown_profile_is_404(self, api_env: ApiEnv) -> None:
        user = make_user(api_env.user_store)
        resp = api_env.client.patch(f"/usuarios/{user.id}", json={"perfil_id": 987654}, headers=api_env.auth())
        assert resp.status_code == 404
        assert resp.json() == {"error": "Perfil não encontrado."}

    def test_assign_then_clear_profile(self, api_env: ApiEnv, reader_profile: int) -> None:
        user = make_user(api_env.user_store)
        headers = api_env.auth(user)
        assert api_env.client.get("/usuarios", headers=headers).status_code == 403

        resp = api_env.client.patch(f"/usuarios/{user.id}", json={"perfil_id": reader_profile}, headers=api_env.auth())
        assert resp.status_code == 200
        assert resp.json()["perfil_id"] == reader_profile
        assert api_env.client.get("/usuarios", headers=headers).status_code == 200

        resp = api_env.client.patch(f"/usuarios/{user.id}", json={"perfil_id": None}, headers=api_env.auth())
        assert resp.status_code == 200
        assert resp.json()["perfil_id"] is None
        assert api_env.client.get("/usuarios", headers=headers).status_code == 403

    def test_cannot_deactivate_self(self, api_env: ApiEnv) -> None:
        resp = api_env.client.patch(f"/usuarios/{api_env.admin.id}", json={"is_active": False}, headers=api_env.auth())
        assert resp.status_code == 400
        assert api_env.user_store.get_by_id(api_env.admin.id).is_active is True

    def test_cannot_delete_self(self, api_env: ApiEnv) -> None:
        resp = api_env.client.delete(f"/usuarios/{api_env.admin.id}", headers=api_env.auth())
        assert resp.status_code == 400
        assert api_env.user_store.get_by_id(api_env.admin.id) is not None

    def test_delete(self, api_env: ApiEnv) -> None:
        user = make_user(api_env.user_store)
        resp = api_env.client.delete(f"/usuarios/{user.id}", headers=api_env.auth())
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json() == {"message": "Usuário removido com sucesso"}
        assert api_env.client.get(f"/usuarios/{user.id}", headers=api_env.auth()).status_code == 404

        delete_entry = _entries(api_env)[1]
        assert delete_entry.action == Action.delete
        assert delete_entry.resource_id == str(user.id)
        assert delete_entry.outcome == Outcome.success


class TestAuditFailureIsolation:
    def test_success_response_unchanged_when_audit_write_fails(
        self, api_env: ApiEnv, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        target = make_user(api_env.user_store)
        url = f"/usuarios/{target.id}"
        normal = api_env.client.get(url, headers=api_env.auth())
        assert normal.status_code == 200

        failing = MagicMock(spec=AuditStore)
        failing.record.side_effect = AuditWriteFailure("database is locked")
        monkeypatch.setattr(app.state, "audit_store", failing)
        caplog.set_level(logging.ERROR, logger="adminhub.audit")

        resp = api_env.client.get(url, headers=api_env.auth())
        assert resp.status_code == normal.status_code
        assert resp.json() == normal.json()
        failing.record.assert_called_once()
        assert any(r.name == "adminhub.audit" and r.levelno == logging.ERROR for r in caplog.records)
