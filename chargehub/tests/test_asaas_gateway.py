"""
test_asaas_gateway.py

Módulo de testes para o adaptador de pagamento Asaas.
As chamadas HTTP são simuladas substituindo o método _request do adaptador.

Testes:
    - Criação de Pix com cliente existente ou novo
    - Reaproveitamento de pagamento com a mesma referência externa
    - Falhas do provedor e timeouts
    - Notificações e eventos especiais
    - Teste de conexão e criação de chave Pix
    - Respostas HTTP sem JSON e remoção da fatura
"""

import json
from unittest import mock

import aiohttp
import pytest

from chargehub.services.payment.asaas_gateway import AsaasAdapter
from chargehub.services.payment.exceptions import ProviderRequestError, UnsupportedNotificationError
from chargehub.services.payment.gateway_interface import ProviderCredentials

PAYMENT = {
    "id": "pay_123",
    "status": "PENDING",
    "billingType": "PIX",
    "invoiceUrl": "https://sandbox.asaas.com/i/pay_123",
}


def fake_api(routes):
    """
    Monta um _request simulado a partir de um mapa (método, caminho) -> resposta.
    Respostas que são exceções são levantadas.
    """
    async def _request(method, path, json=None, params=None):
        response = routes[(method, path)]
        if isinstance(response, Exception):
            raise response
        return response
    return mock.AsyncMock(side_effect=_request)


def fake_session(status, body=None, error=None):
    """
    Simula aiohttp.ClientSession com uma única resposta HTTP.
    """
    response = mock.MagicMock(status=status)
    response.json = mock.AsyncMock(return_value=body, side_effect=error)

    request_ctx = mock.MagicMock()
    request_ctx.__aenter__ = mock.AsyncMock(return_value=response)
    request_ctx.__aexit__ = mock.AsyncMock(return_value=False)

    session = mock.MagicMock()
    session.request.return_value = request_ctx

    session_ctx = mock.MagicMock()
    session_ctx.__aenter__ = mock.AsyncMock(return_value=session)
    session_ctx.__aexit__ = mock.AsyncMock(return_value=False)
    return mock.patch.object(aiohttp, "ClientSession", return_value=session_ctx), session


@pytest.fixture
def adapter():
    return AsaasAdapter(ProviderCredentials(secret="$aact_sandbox", is_sandbox=True))


@pytest.mark.asyncio
async def test_create_pix_with_new_customer(adapter, charge_request):
    adapter._request = fake_api({
        ("GET", "/payments"): {"data": []},
        ("GET", "/customers"): {"data": []},
        ("POST", "/customers"): {"id": "cus_1"},
        ("POST", "/payments"): PAYMENT,
        ("GET", "/payments/pay_123/pixQrCode"): {"payload": "00020126...", "encodedImage": "iVBOR="},
    })

    result = await adapter.create_charge(charge_request)

    assert result.success is True
    assert result.payment_id == "pay_123"
    assert result.status == "pending"
    assert result.qr_code == "00020126..."
    assert result.qr_code_base64 == "iVBOR="
    assert result.payment_link == PAYMENT["invoiceUrl"]

    calls = {(c.args[0], c.args[1]): c.kwargs for c in adapter._request.call_args_list}
    assert calls[("GET", "/customers")]["params"] == {"cpfCnpj": "12345678909"}
    payment_payload = calls[("POST", "/payments")]["json"]
    assert payment_payload["customer"] == "cus_1"
    assert payment_payload["billingType"] == "PIX"
    assert payment_payload["value"] == 150.0
    assert payment_payload["externalReference"] == charge_request.external_reference


@pytest.mark.asyncio
async def test_create_boleto_with_existing_customer(adapter, charge_request):
    charge_request.payment_method = "boleto"
    adapter._request = fake_api({
        ("GET", "/payments"): {"data": []},
        ("GET", "/customers"): {"data": [{"id": "cus_existing"}]},
        ("POST", "/payments"): dict(PAYMENT, billingType="BOLETO"),
    })

    result = await adapter.create_charge(charge_request)

    assert result.success is True
    assert result.qr_code is None
    posted = [c for c in adapter._request.call_args_list if c.args[:2] == ("POST", "/payments")]
    assert posted[0].kwargs["json"]["customer"] == "cus_existing"
    assert posted[0].kwargs["json"]["billingType"] == "BOLETO"


@pytest.mark.asyncio
async def test_create_reuses_live_payment(adapter, charge_request):
    """
    Testa que uma nova tentativa com a mesma referência reaproveita o pagamento existente.
    """
    adapter._request = fake_api({
        ("GET", "/payments"): {"data": [dict(PAYMENT, id="pay_old", status="DELETED", deleted=True), PAYMENT]},
        ("GET", "/payments/pay_123/pixQrCode"): {"payload": "qr", "encodedImage": "img"},
    })

    result = await adapter.create_charge(charge_request)

    assert result.success is True
    assert result.payment_id == "pay_123"
    assert all(c.args[0] == "GET" for c in adapter._request.call_args_list)


@pytest.mark.asyncio
async def test_qr_code_failure_keeps_invoice_link(adapter, charge_request):
    adapter._request = fake_api({
        ("GET", "/payments"): {"data": []},
        ("GET", "/customers"): {"data": [{"id": "cus_1"}]},
        ("POST", "/payments"): PAYMENT,
        ("GET", "/payments/pay_123/pixQrCode"): ProviderRequestError("indisponível", provider="asaas"),
    })

    result = await adapter.create_charge(charge_request)

    assert result.success is True
    assert result.qr_code is None
    assert result.payment_link == PAYMENT["invoiceUrl"]


@pytest.mark.asyncio
async def test_create_charge_provider_error(adapter, charge_request):
    adapter._request = fake_api({
        ("GET", "/payments"): {"data": []},
        ("GET", "/customers"): {"data": [{"id": "cus_1"}]},
        ("POST", "/payments"): ProviderRequestError("CPF/CNPJ inválido", provider="asaas"),
    })

    result = await adapter.create_charge(charge_request)

    assert result.success is False
    assert result.status == "rejected"
    assert result.error == "CPF/CNPJ inválido"
    assert result.transient is False


@pytest.mark.asyncio
async def test_create_charge_timeout(adapter, charge_request):
    adapter._request = fake_api({
        ("GET", "/payments"): ProviderRequestError("Asaas indisponível", provider="asaas", transient=True),
    })

    result = await adapter.create_charge(charge_request)

    assert result.success is False
    assert result.transient is True


def test_asaas_requires_tax_id(adapter, charge_request):
    charge_request.customer.tax_id = None

    assert adapter.missing_fields(charge_request) == ["customer.tax_id"]


@pytest.mark.asyncio
async def test_get_payment_status(adapter):
    adapter._request = fake_api({("GET", "/payments/pay_123"): dict(PAYMENT, status="RECEIVED")})

    result = await adapter.get_payment_status("pay_123")

    assert result.status == "approved"
    assert result.provider_status == "RECEIVED"


@pytest.mark.asyncio
async def test_handle_notification(adapter):
    payload = {"event": "PAYMENT_CONFIRMED", "payment": dict(PAYMENT, status="CONFIRMED", externalReference="CHG-1")}

    result = await adapter.handle_notification(payload)

    assert result.external_reference == "CHG-1"
    assert result.status == "approved"


@pytest.mark.asyncio
async def test_handle_notification_event_overrides(adapter):
    refused = {
        "event": "PAYMENT_CREDIT_CARD_CAPTURE_REFUSED",
        "payment": dict(PAYMENT, status="PENDING", externalReference="CHG-1"),
    }
    deleted = {"event": "PAYMENT_DELETED", "payment": dict(PAYMENT, externalReference="CHG-1")}

    assert (await adapter.handle_notification(refused)).status == "rejected"
    assert (await adapter.handle_notification(deleted)).status == "cancelled"


@pytest.mark.asyncio
async def test_handle_notification_unsupported(adapter):
    with pytest.raises(UnsupportedNotificationError):
        await adapter.handle_notification({"event": "ACCOUNT_STATUS_UPDATED"})

    with pytest.raises(UnsupportedNotificationError):
        await adapter.handle_notification({"event": "PAYMENT_RECEIVED", "payment": PAYMENT})


@pytest.mark.asyncio
async def test_test_connection(adapter):
    adapter._request = fake_api({
        ("GET", "/accounts"): {"data": []},
        ("GET", "/pix/addressKeys"): {"data": []},
    })
    result = await adapter.test_connection()
    assert result.success is True
    assert "não tem uma chave PIX" in result.message

    adapter._request = fake_api({
        ("GET", "/accounts"): ProviderRequestError("Chave de API inválida", provider="asaas"),
    })
    result = await adapter.test_connection()
    assert result.success is False
    assert "Chave de API inválida" in result.message


@pytest.mark.asyncio
async def test_create_random_pix_key(adapter):
    adapter._request = fake_api({("POST", "/pix/addressKeys"): {"key": "b1c2-evp"}})

    result = await adapter.create_random_pix_key()

    assert result == {"success": True, "message": "Chave Aleatória (EVP) criada com sucesso!", "key": "b1c2-evp"}
    assert adapter._request.call_args.kwargs["json"] == {"type": "EVP"}


@pytest.mark.asyncio
async def test_request_non_json_error_page(adapter):
    """
    Testa que uma página de erro HTML (ex.: 502 do proxy) vira ProviderRequestError.
    """
    patcher, session = fake_session(502, error=json.JSONDecodeError("Expecting value", "<html>", 0))

    with patcher, pytest.raises(ProviderRequestError) as exc_info:
        await adapter.get_payment_status("pay_123")

    assert "502" in str(exc_info.value)
    assert exc_info.value.provider == "asaas"
    method, url = session.request.call_args.args
    assert method == "GET"
    assert url.endswith("/payments/pay_123")


@pytest.mark.asyncio
async def test_request_non_json_success_body(adapter):
    patcher, _ = fake_session(200, error=json.JSONDecodeError("Expecting value", "OK", 0))

    with patcher, pytest.raises(ProviderRequestError):
        await adapter.get_payment_status("pay_123")


@pytest.mark.asyncio
async def test_request_error_description(adapter):
    patcher, _ = fake_session(400, body={"errors": [{"code": "invalid", "description": "Cliente inválido"}]})

    with patcher, pytest.raises(ProviderRequestError) as exc_info:
        await adapter.get_payment_status("pay_123")

    assert "Cliente inválido" in str(exc_info.value)


@pytest.mark.asyncio
async def test_cancel_charge_deletes_payment(adapter):
    adapter._request = fake_api({("DELETE", "/payments/pay_123"): {"deleted": True, "id": "pay_123"}})

    await adapter.cancel_charge("pay_123")

    adapter._request.assert_awaited_once_with("DELETE", "/payments/pay_123")


@pytest.mark.asyncio
async def test_cancel_charge_error(adapter):
    adapter._request = fake_api({
        ("DELETE", "/payments/pay_123"): ProviderRequestError("Cobrança já recebida", provider="asaas"),
    })

    with pytest.raises(ProviderRequestError):
        await adapter.cancel_charge("pay_123")
