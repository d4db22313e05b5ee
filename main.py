# D:\ChargeHub\main.py

"""
main.py

Este módulo inicializa e executa a aplicação AIOHTTP. Ele configura o logging,
o banco de dados, registra as rotas de cobrança e inicia o servidor web.

Functions:
    init_app(db_url: str = DATABASE_URL) -> web.Application:
        Inicializa a aplicação, configurando o banco de dados e as rotas.

    main() -> web.Application:
        Cria a aplicação para execução do servidor.
"""

import logging

from aiohttp import web

from chargehub.config.settings import DATABASE_URL, DB_SESSION_KEY, setup_logging
from chargehub.middleware.cors_middleware import setup_cors
from chargehub.models.database import create_database, get_async_engine, get_session_maker
from chargehub.views.payment_views import routes as payment_routes

logger = logging.getLogger(__name__)


async def init_app(db_url: str = DATABASE_URL) -> web.Application:
    """
    Inicializa a aplicação, criando as tabelas do banco de dados e configurando rotas.

    A fábrica de sessões é armazenada em app[DB_SESSION_KEY]; cada requisição abre
    a sua própria sessão.

    Args:
        db_url (str): URL do banco de dados.

    Returns:
        web.Application: Instância configurada da aplicação AIOHTTP.
    """
    engine = get_async_engine(db_url)

    # Cria as tabelas do banco de dados
    await create_database(db_url)

    app = web.Application()
    app[DB_SESSION_KEY] = get_session_maker(engine)
    app.add_routes(payment_routes)

    async def dispose_engine(app: web.Application) -> None:
        await engine.dispose()

    app.on_cleanup.append(dispose_engine)

    # Configuração do CORS
    setup_cors(app)

    return app


async def main() -> web.Application:
    """
    Cria a aplicação. O servidor escuta na porta 8000.
    """
    setup_logging()
    app = await init_app()
    logger.info("Aplicação inicializada com banco %s", DATABASE_URL.split("@")[-1])
    return app


if __name__ == "__main__":
    web.run_app(main(), host="0.0.0.0", port=8000)
