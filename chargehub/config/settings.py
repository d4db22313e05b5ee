# D:\ChargeHub\chargehub\config\settings.py

"""
settings.py

Este módulo contém as configurações principais da aplicação, incluindo variáveis
de ambiente, configurações do banco de dados, chave JWT, limites das chamadas aos
provedores de pagamento e configuração de logging.

Configurações:
    DATABASE_URL: URL de conexão com o banco de dados assíncrono.
    JWT_SECRET_KEY: Chave secreta para verificar tokens JWT.
    PUBLIC_URL: URL pública usada para montar as URLs de notificação (webhooks).
    PROVIDER_TIMEOUT_SECONDS: Tempo máximo de cada chamada HTTP a um provedor.
    PROVIDER_MAX_ATTEMPTS: Número máximo de tentativas de criação em caso de timeout.
    DEFAULT_SANDBOX: Ambiente padrão quando a requisição não informa is_sandbox.
    LOG_LEVEL: Nível de log da aplicação.
    DB_SESSION_KEY: Chave para armazenar a fábrica de sessões na aplicação.

Functions:
    get_current_time() -> datetime:
        Retorna a data e hora atual no fuso horário da aplicação.

    setup_logging() -> None:
        Configura o logging padrão da aplicação.
"""

import logging
import os
from datetime import datetime
from zoneinfo import ZoneInfo

from aiohttp import web
from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Carrega as variáveis do arquivo .env
load_dotenv()

# URL do banco de dados assíncrono
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./chargehub.db")
"""
str: URL de conexão com o banco de dados assíncrono.
Carregada de uma variável de ambiente ou definida como SQLite padrão em ambiente de desenvolvimento.
"""

# Os tokens são emitidos pelo serviço de autenticação; aqui apenas verificamos
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "default_secret_key")
"""
str: Chave secreta usada para verificar tokens JWT emitidos pelo serviço de autenticação.
"""

JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

PUBLIC_URL = os.getenv("PUBLIC_URL", "http://localhost:8000").rstrip("/")
"""
str: URL pública do servidor. Os provedores enviam notificações para
{PUBLIC_URL}/payments/webhook/{provider}/{company_id}.
"""

PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", 15))
"""
float: Tempo máximo (em segundos) de cada chamada HTTP a um provedor de pagamento.
"""

PROVIDER_MAX_ATTEMPTS = int(os.getenv("PROVIDER_MAX_ATTEMPTS", 2))
"""
int: Número total de tentativas de criação de cobrança quando o provedor não responde
a tempo. Falhas de validação ou autenticação nunca são repetidas.
"""

DEFAULT_SANDBOX = os.getenv("DEFAULT_SANDBOX", "true").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DB_SESSION_KEY = web.AppKey("db_session", async_sessionmaker[AsyncSession])
"""
web.AppKey[async_sessionmaker]: Chave para armazenar e recuperar a fábrica de sessões
de banco de dados na aplicação AIOHTTP. Cada requisição abre a sua própria sessão.
"""

APP_TIMEZONE = ZoneInfo("America/Sao_Paulo")


def get_current_time() -> datetime:
    """
    Retorna a data e hora atual no fuso horário "America/Sao_Paulo".

    Returns:
        datetime: Data e hora atual com fuso horário.
    """
    return datetime.now(APP_TIMEZONE)


def setup_logging() -> None:
    """
    Configura o logging padrão da aplicação com o nível definido em LOG_LEVEL.
    """
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, LOG_LEVEL, logging.INFO),
    )
    # Bibliotecas HTTP são muito verbosas em INFO
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
