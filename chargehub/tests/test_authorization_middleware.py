# D:\ChargeHub\chargehub\tests\test_authorization_middleware.py
"""
test_authorization_middleware.py

Este módulo contém testes unitários para o decorador de autorização definido em
authorization_middleware.py. Ele verifica cenários de ausência de token, token inválido,
papel insuficiente e papel adequado.

Fixtures:
    aiohttp_client: Fixture padrão do pytest-aiohttp para criar clientes de teste AIOHTTP.
"""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient

from chargehub.middleware.authorization_middleware import require_role, validate_token
from chargehub.tests.utils.auth_utils import auth_header, make_token


def make_app() -> web.Application:
    async def admin_handler(request: web.Request) -> web.Response:
        return web.json_response({"message": "Acesso concedido", "user": request["user"]}, status=200)

    app = web.Application()
    app.router.add_get("/admin-only", require_role(["admin"])(admin_handler))
    return app


def test_validate_token():
    payload = validate_token(make_token("manager", company_id="company-7", user_id="42"))

    assert payload["sub"] == "42"
    assert payload["role"] == "manager"
    assert payload["company_id"] == "company-7"

    with pytest.raises(ValueError, match="Token expirado."):
        validate_token(make_token("admin", expires_in=-10))

    with pytest.raises(ValueError, match="Token inválido."):
        validate_token("INVALID_TOKEN")


@pytest.mark.asyncio
async def test_require_role_no_token(aiohttp_client):
    """
    Testa requisição sem cabeçalho Authorization, resultando em HTTP 401.
    """
    client: TestClient = await aiohttp_client(make_app())

    resp = await client.get("/admin-only")

    assert resp.status == 401
    data = await resp.json()
    assert "Missing or invalid Authorization header" in data["error"]


@pytest.mark.asyncio
async def test_require_role_invalid_token(aiohttp_client):
    client: TestClient = await aiohttp_client(make_app())

    # Usa um token inválido de forma intencional
    resp = await client.get("/admin-only", headers={"Authorization": "Bearer INVALID_TOKEN"})

    assert resp.status == 401
    assert (await resp.json())["error"] == "Token inválido."


@pytest.mark.asyncio
async def test_require_role_insufficient_role(aiohttp_client):
    """
    Testa usuário com papel insuficiente para acessar o recurso, resultando em HTTP 403.
    """
    client: TestClient = await aiohttp_client(make_app())

    resp = await client.get("/admin-only", headers=auth_header(make_token("manager")))

    assert resp.status == 403
    assert "Acesso negado" in (await resp.json())["error"]


@pytest.mark.asyncio
async def test_require_role_success(aiohttp_client):
    """
    Testa que o usuário autorizado chega ao handler com ID, papel e empresa no request.
    """
    client: TestClient = await aiohttp_client(make_app())

    resp = await client.get("/admin-only", headers=auth_header(make_token("admin", user_id="999")))

    assert resp.status == 200
    data = await resp.json()
    assert data["message"] == "Acesso concedido"
    assert data["user"] == {"id": "999", "role": "admin", "company_id": "company-1"}
