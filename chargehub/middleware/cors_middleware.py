"""
cors_middleware.py

Este módulo define a configuração CORS que permite ao front end do back office,
servido em outra origem, chamar as rotas de cobrança.

Functions:
    setup_cors(app, origins=None) -> None:
        Configura o CORS para a aplicação AIOHTTP.
"""

import os
from typing import Iterable, Optional

import aiohttp_cors

DEFAULT_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
)


def setup_cors(app, origins: Optional[Iterable[str]] = None) -> None:
    """
    Configura o CORS para a aplicação AIOHTTP.

    As origens vêm do parâmetro, da variável CORS_ORIGINS (separadas por vírgula)
    ou, na ausência de ambas, das origens locais de desenvolvimento.

    Args:
        app (web.Application): A aplicação AIOHTTP onde o CORS será configurado.
        origins (Optional[Iterable[str]]): Origens permitidas.
    """
    if origins is None:
        env_origins = os.getenv("CORS_ORIGINS", "")
        origins = [origin.strip() for origin in env_origins.split(",") if origin.strip()] or DEFAULT_ORIGINS

    cors = aiohttp_cors.setup(app, defaults={
        origin: aiohttp_cors.ResourceOptions(
            allow_credentials=True,
            expose_headers="*",
            allow_headers="*",
            allow_methods=["GET", "POST", "OPTIONS"]
        )
        for origin in origins
    })

    # Webhooks são chamados servidor a servidor e não precisam de CORS
    for route in list(app.router.routes()):
        if route.resource is not None and "/payments/webhook/" in route.resource.canonical:
            continue
        cors.add(route)
