# D:\ChargeHub\chargehub\tests\conftest.py

"""
conftest.py

Este módulo contém fixtures para configuração de banco de dados, cliente de teste
e dados de apoio (configurações de gateway, orçamentos e cobranças) utilizados nos
testes da aplicação.

Fixtures:
    setup_database: Cria o schema em um banco em memória compartilhado.
    session_maker: Fábrica de sessões ligada ao banco de testes.
    async_db_session: Sessão de banco de dados assíncrona para testes.
    test_client_fixture: Cliente de teste para a aplicação AIOHTTP.
    make_gateway_config / make_quote / make_charge: Fábricas de registros.
    charge_request: Requisição de cobrança Pix válida.
"""

import json
from decimal import Decimal

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer, TestClient

from chargehub.config.settings import DB_SESSION_KEY
from chargehub.models.database import Base, get_async_engine, get_session_maker
from chargehub.models import business_models, charge_models  # noqa: F401
from chargehub.models.business_models import Quote
from chargehub.models.charge_models import Charge, GatewayConfig
from chargehub.services.payment.gateway_interface import ChargeRequest, CustomerInfo
from chargehub.views.payment_views import routes as payment_routes

# Usar um banco de dados em memória nomeado para ser compartilhado entre sessões
TEST_DB_URL = "sqlite+aiosqlite:///file:memdb1?mode=memory&cache=shared&uri=true"

COMPANY_ID = "company-1"

GATEWAY_CREDENTIALS = {
    "mercado_pago": {"sandbox_access_token": "TEST-mp-token", "prod_access_token": "APP_USR-mp-token"},
    "asaas": {"sandbox_api_key": "$aact_sandbox", "prod_api_key": "$aact_prod"},
    "stripe": {"sandbox_secret_key": "sk_test_123", "prod_secret_key": "sk_live_123"},
}


@pytest_asyncio.fixture(scope="function")
async def setup_database():
    """
    Configura um banco de dados compartilhado para todas as sessões.
    """
    engine = get_async_engine(TEST_DB_URL)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Limpeza após o teste
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(setup_database):
    return get_session_maker(setup_database)


@pytest_asyncio.fixture(scope="function")
async def async_db_session(session_maker):
    """
    Configura uma sessão de banco de dados assíncrona para testes.

    Yields:
        AsyncSession: Sessão de banco de dados assíncrona configurada para testes.
    """
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def test_client_fixture(session_maker):
    """
    Configura um cliente de teste para a aplicação AIOHTTP.

    Yields:
        TestClient: Cliente de teste configurado para a aplicação.
    """
    app = web.Application()
    # Injeta a fábrica de sessões usando a key do AIOHTTP
    app[DB_SESSION_KEY] = session_maker
    app.add_routes(payment_routes)

    server = TestServer(app)
    client = TestClient(server)

    async with server, client:
        yield client


@pytest.fixture
def make_gateway_config(async_db_session):
    """
    Fábrica de configurações de gateway persistidas.
    """
    async def _make(provider="mercado_pago", company_id=COMPANY_ID, is_sandbox=True,
                    credentials=None, is_active=True):
        config = GatewayConfig(
            company_id=company_id,
            provider=provider,
            config=json.dumps(credentials if credentials is not None else GATEWAY_CREDENTIALS[provider]),
            is_sandbox=is_sandbox,
            is_active=is_active,
        )
        async_db_session.add(config)
        await async_db_session.commit()
        return config
    return _make


@pytest.fixture
def make_quote(async_db_session):
    async def _make(company_id=COMPANY_ID, total_amount="150.00"):
        quote = Quote(company_id=company_id, title="Orçamento de teste", total_amount=Decimal(total_amount))
        async_db_session.add(quote)
        await async_db_session.commit()
        return quote
    return _make


@pytest.fixture
def make_charge(async_db_session):
    """
    Fábrica de cobranças persistidas diretamente, sem passar pelo provedor.
    """
    async def _make(quote_id=None, status="pending", provider="mercado_pago",
                    external_reference=None, gateway_id="123456", company_id=COMPANY_ID):
        charge = Charge(
            company_id=company_id,
            quote_id=quote_id,
            provider=provider,
            amount=Decimal("150.00"),
            description="Orçamento de teste",
            external_reference=external_reference or f"CHG-TEST-{status}-{quote_id}-{provider}",
            payment_method="pix",
            status=status,
            gateway_id=gateway_id,
            is_sandbox=True,
        )
        async_db_session.add(charge)
        await async_db_session.commit()
        return charge
    return _make


@pytest.fixture
def customer():
    return CustomerInfo(
        name="Maria Souza",
        email="maria@example.com",
        tax_id="123.456.789-09",
        phone="(11) 98765-4321",
    )


@pytest.fixture
def charge_request(customer):
    """Requisição Pix válida para todos os provedores."""
    return ChargeRequest(
        amount=Decimal("150.00"),
        description="Orçamento #1",
        external_reference="CHG-1700000000000-ABC123",
        customer=customer,
        notification_url="https://example.com/payments/webhook/mercado_pago/company-1",
        payment_method="pix",
    )
