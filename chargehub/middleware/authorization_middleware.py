# D:\ChargeHub\chargehub\middleware\authorization_middleware.py
"""
authorization_middleware.py

Este módulo define o decorador que verifica a autorização com base no papel (role)
do usuário armazenado no token JWT. Os tokens são emitidos pelo serviço de
autenticação do back office; aqui eles são apenas validados.

Funções:
    validate_token(token: str) -> dict:
        Valida um token JWT e retorna seu payload.

    require_role(allowed_roles: List[str]) -> Callable:
        Decorador que valida o papel do usuário antes de executar a rota. Caso o token seja
        inválido/ausente ou o papel não seja suficiente, retorna o erro apropriado.

Exemplo de Uso:
    @routes.post("/payments/charges/{charge_id}/reset")
    @require_role(["admin"])
    async def reset_charge(request: web.Request) -> web.Response:
        ...
"""

import json
from typing import Callable, List

import jwt
from aiohttp import web

from chargehub.config.settings import JWT_ALGORITHM, JWT_SECRET_KEY


def validate_token(token: str) -> dict:
    """
    Decodifica e valida um token JWT.

    Args:
        token (str): Token JWT (sem o prefixo "Bearer").

    Returns:
        dict: Payload do token.

    Raises:
        ValueError: Se o token for inválido ou expirado.
    """
    try:
        return jwt.decode(
            token,
            JWT_SECRET_KEY,
            algorithms=[JWT_ALGORITHM],
            options={"verify_exp": True}
        )
    except jwt.ExpiredSignatureError:
        raise ValueError("Token expirado.")
    except jwt.InvalidTokenError:
        raise ValueError("Token inválido.")


def require_role(allowed_roles: List[str]) -> Callable:
    """
    Decorador que verifica se o usuário possui um dos papéis especificados.

    Extrai o token JWT do cabeçalho Authorization ("Bearer <token>"), valida o token
    e armazena em request["user"] o ID, o papel e a empresa do usuário.

    Args:
        allowed_roles (List[str]): Papéis que podem acessar a rota (ex.: ["admin", "manager"]).

    Returns:
        Callable: Função decoradora que envolve o handler original.

    Raises:
        web.HTTPUnauthorized: Cabeçalho ausente/inválido ou token inválido.
        web.HTTPForbidden: Papel do usuário fora de allowed_roles.
    """
    def decorator(handler: Callable) -> Callable:
        async def wrapper(request: web.Request) -> web.Response:
            auth_header = request.headers.get("Authorization", "")
            if not auth_header.startswith("Bearer "):
                raise web.HTTPUnauthorized(
                    text='{"error": "Missing or invalid Authorization header"}',
                    content_type="application/json"
                )

            try:
                payload = validate_token(auth_header.split(" ", 1)[1])
            except ValueError as e:
                raise web.HTTPUnauthorized(
                    text=json.dumps({"error": str(e)}),
                    content_type="application/json"
                )

            user_role = payload.get("role")
            if user_role not in allowed_roles:
                raise web.HTTPForbidden(
                    text='{"error": "Acesso negado: privilégio insuficiente."}',
                    content_type="application/json"
                )

            # Armazena os dados do usuário no request, para uso nas rotas.
            request["user"] = {
                "id": payload.get("sub"),
                "role": user_role,
                "company_id": payload.get("company_id"),
            }

            return await handler(request)
        return wrapper
    return decorator
