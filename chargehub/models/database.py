# D:\ChargeHub\chargehub\models\database.py
"""
database.py

Este módulo define a base declarativa do SQLAlchemy e os métodos para criação e
interação com o banco de dados de forma assíncrona.

Os modelos ficam em módulos próprios:
    charge_models.py: GatewayConfig e Charge (núcleo de cobranças).
    business_models.py: Quote e Transaction (stores colaboradores).

Functions:
    create_database(db_url: str) -> None:
        Cria o schema do banco de dados assíncrono, se não existir.

    get_async_engine(db_url: str):
        Retorna o motor assíncrono configurado para o banco de dados.

    get_session_maker(engine):
        Retorna o criador de sessões assíncronas para o banco de dados.
"""

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def get_async_engine(db_url: str):
    """
    Cria o motor assíncrono do banco de dados.

    Args:
        db_url (str): URL de conexão com o banco de dados.

    Returns:
        AsyncEngine: Motor assíncrono configurado.
    """
    return create_async_engine(db_url, echo=False)


def get_session_maker(engine) -> async_sessionmaker:
    """
    Retorna o criador de sessões assíncronas.

    Args:
        engine (AsyncEngine): Motor assíncrono do banco de dados.

    Returns:
        async_sessionmaker: Fábrica de sessões assíncronas.
    """
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def create_database(db_url: str) -> None:
    """
    Cria as tabelas do banco de dados caso ainda não existam.

    Args:
        db_url (str): URL de conexão com o banco de dados.
    """
    # Garante que todos os modelos estejam registrados no metadata
    from chargehub.models import business_models, charge_models  # noqa: F401

    engine = get_async_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
