# D:\ChargeHub\chargehub\views\payment_views.py
"""
payment_views.py

Módulo responsável pelos endpoints de cobranças e pela entrada dos webhooks dos
provedores de pagamento.

Endpoints:
    - POST /payments/charges: Cria uma cobrança
    - GET /payments/charges: Lista cobranças da empresa
    - POST /payments/charges/{charge_id}/retire: Cancela uma cobrança pendente
    - POST /payments/charges/{charge_id}/refresh: Consulta o provedor e reconcilia o status
    - POST /payments/charges/{charge_id}/reset: Reabre uma cobrança finalizada (admin)
    - POST /payments/webhook/{provider}/{company_id}: Recebe notificações dos provedores
    - GET /payments/checkout/{external_reference}: Dados públicos do checkout
    - POST /payments/checkout/{external_reference}: Gera o pagamento escolhido pelo cliente
    - POST /payments/test-connection: Testa as credenciais de um gateway
    - POST /payments/asaas/create-key: Cria uma chave Pix aleatória no Asaas

Regras de Negócio:
    - A empresa é a do token JWT (claim company_id); administradores podem informá-la
      no corpo ou na query string
    - Webhooks e o checkout não exigem autenticação (provedores e clientes finais)
    - Uma cobrança pendente duplicada responde 409 com as opções reutilizar/retirar

Dependências:
    - AIOHTTP para manipulação de requisições.
    - Middleware de autorização para proteção dos endpoints.
    - ChargeService e NotificationService para as regras de cobrança.
"""

import json
import logging
from typing import Any, Dict, Optional

from aiohttp import web

from chargehub.config.settings import DB_SESSION_KEY, DEFAULT_SANDBOX
from chargehub.middleware.authorization_middleware import require_role
from chargehub.services.charge_service import ChargeService
from chargehub.services.gateway_config_service import GatewayConfigService
from chargehub.services.notification_service import NotificationService
from chargehub.services.payment.asaas_gateway import AsaasAdapter
from chargehub.services.payment.exceptions import (
    ChargeNotFoundError, ConfigurationError, DuplicatePendingChargeError,
    NotificationSignatureError, ProviderRequestError, ReconciliationConflict, ValidationError,
)
from chargehub.services.payment.gateway_factory import PaymentAdapterRegistry
from chargehub.services.payment.gateway_interface import ChargeRequest, CustomerInfo

logger = logging.getLogger(__name__)

# Definição das rotas
routes = web.RouteTableDef()


def _error_response(error: Exception) -> web.Response:
    """
    Converte as exceções do núcleo de cobranças em respostas JSON.
    """
    if isinstance(error, ValidationError):
        return web.json_response({"error": str(error), "fields": error.fields}, status=422)
    if isinstance(error, DuplicatePendingChargeError):
        return web.json_response(
            {
                "error": str(error),
                "existing_charge": error.existing_charge.to_dict(),
                "options": ["reuse", "retire"],
            },
            status=409
        )
    if isinstance(error, ReconciliationConflict):
        return web.json_response(
            {
                "error": str(error),
                "current_status": error.current_status,
                "requested_status": error.requested_status,
            },
            status=409
        )
    if isinstance(error, (ConfigurationError, NotificationSignatureError)):
        return web.json_response({"error": str(error)}, status=400)
    if isinstance(error, ChargeNotFoundError):
        return web.json_response({"error": str(error)}, status=404)
    if isinstance(error, PermissionError):
        return web.json_response({"error": str(error)}, status=403)
    if isinstance(error, ProviderRequestError):
        return web.json_response({"error": str(error), "provider": error.provider}, status=502)
    raise error


def _company_id(request: web.Request, data: Optional[Dict[str, Any]] = None) -> str:
    user = request["user"]
    company_id = user.get("company_id")
    if not company_id and user.get("role") == "admin":
        company_id = (data or {}).get("company_id") or request.query.get("company_id")
    if not company_id:
        raise ValidationError(["company_id"], "Empresa não identificada")
    return str(company_id)


def _parse_sandbox(value: Any, default: Optional[bool]) -> Optional[bool]:
    if value is None:
        return default
    if isinstance(value, str):
        return value.lower() in ("1", "true", "yes")
    return bool(value)


async def _read_json(request: web.Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except json.JSONDecodeError:
        raise ValidationError(["body"], "JSON inválido")
    if not isinstance(data, dict):
        raise ValidationError(["body"], "JSON inválido")
    return data


@routes.post('/payments/charges')
@require_role(['admin', 'manager'])
async def create_charge(request: web.Request) -> web.Response:
    """
    Cria uma cobrança no gateway configurado pela empresa.

    JSON de entrada:
        {
            "provider": "mercado_pago",
            "quote_id": 1,
            "amount": 150.00,
            "description": "Orçamento #1",
            "payment_method": "pix",
            "external_reference": "opcional",
            "is_sandbox": true,            // opcional, padrão da configuração
            "create_transaction": true,    // opcional
            "customer_id": "opcional",
            "customer": {"name": "...", "email": "...", "tax_id": "...", "phone": "..."}
        }

    Returns:
        web.Response: 201 com a cobrança criada, 200 para replay da mesma
        referência externa, 502 se o provedor recusar.
    """
    try:
        data = await _read_json(request)
        company_id = _company_id(request, data)
        charge_request = ChargeRequest.from_dict(data)

        async with request.app[DB_SESSION_KEY]() as session:
            config = await GatewayConfigService(session).get_config(company_id, data.get("provider"))
            if not config:
                raise ConfigurationError(f"Gateway {data.get('provider')} não configurado para a empresa")

            creation = await ChargeService(session).create_charge(
                quote_id=data.get("quote_id"),
                gateway_config=config,
                is_sandbox=_parse_sandbox(data.get("is_sandbox"), None),
                request=charge_request,
                customer_id=data.get("customer_id"),
                create_transaction=bool(data.get("create_transaction", False)),
            )

        if not creation.success:
            return web.json_response(creation.to_dict(), status=502)
        return web.json_response(creation.to_dict(), status=200 if creation.replayed else 201)
    except (ValidationError, ConfigurationError, ReconciliationConflict) as e:
        return _error_response(e)
    except Exception as e:
        logger.exception("Erro ao criar cobrança")
        return web.json_response({"error": f"Erro ao criar cobrança: {str(e)}"}, status=500)


@routes.get('/payments/charges')
@require_role(['admin', 'manager'])
async def list_charges(request: web.Request) -> web.Response:
    """
    Lista as cobranças da empresa.

    Query params:
        quote_id (int, opcional): Filtra por orçamento.
        status (str, opcional): Filtra por status canônico.
    """
    try:
        company_id = _company_id(request)
        quote_id = request.query.get("quote_id")
        if quote_id is not None and not quote_id.isdigit():
            raise ValidationError(["quote_id"])

        async with request.app[DB_SESSION_KEY]() as session:
            charges = await ChargeService(session).list_charges(
                company_id,
                quote_id=int(quote_id) if quote_id else None,
                status=request.query.get("status"),
            )
            return web.json_response({"charges": [charge.to_dict() for charge in charges]})
    except ValidationError as e:
        return _error_response(e)
    except Exception as e:
        logger.exception("Erro ao listar cobranças")
        return web.json_response({"error": f"Erro ao listar cobranças: {str(e)}"}, status=500)


def _charge_id(request: web.Request) -> int:
    try:
        return int(request.match_info["charge_id"])
    except ValueError:
        raise ValidationError(["charge_id"])


@routes.post('/payments/charges/{charge_id}/retire')
@require_role(['admin', 'manager'])
async def retire_charge(request: web.Request) -> web.Response:
    """
    Cancela explicitamente uma cobrança pendente para permitir gerar outra.
    """
    try:
        company_id = _company_id(request)
        async with request.app[DB_SESSION_KEY]() as session:
            charge = await ChargeService(session).retire_charge(_charge_id(request), company_id)
            return web.json_response({"charge": charge.to_dict()})
    except (ValidationError, ChargeNotFoundError, ReconciliationConflict) as e:
        return _error_response(e)
    except Exception as e:
        logger.exception("Erro ao retirar cobrança")
        return web.json_response({"error": f"Erro ao retirar cobrança: {str(e)}"}, status=500)


@routes.post('/payments/charges/{charge_id}/refresh')
@require_role(['admin', 'manager'])
async def refresh_charge(request: web.Request) -> web.Response:
    """
    Consulta o status da cobrança no provedor e aplica a reconciliação.
    """
    try:
        company_id = _company_id(request)
        async with request.app[DB_SESSION_KEY]() as session:
            charge = await ChargeService(session).refresh_charge_status(_charge_id(request), company_id)
            return web.json_response({"charge": charge.to_dict()})
    except (ValidationError, ChargeNotFoundError, ConfigurationError,
            ProviderRequestError, ReconciliationConflict) as e:
        return _error_response(e)
    except Exception as e:
        logger.exception("Erro ao atualizar cobrança")
        return web.json_response({"error": f"Erro ao atualizar cobrança: {str(e)}"}, status=500)


@routes.post('/payments/charges/{charge_id}/reset')
@require_role(['admin'])
async def reset_charge(request: web.Request) -> web.Response:
    """
    Reabre uma cobrança finalizada, desfazendo a baixa da transação e do orçamento.

    Requer: Papel de administrador.
    """
    try:
        async with request.app[DB_SESSION_KEY]() as session:
            charge = await ChargeService(session).reset_charge(
                _charge_id(request), request["user"], _company_id(request)
            )
            return web.json_response({"charge": charge.to_dict()})
    except (ValidationError, ChargeNotFoundError, PermissionError, ReconciliationConflict) as e:
        return _error_response(e)
    except Exception as e:
        logger.exception("Erro ao reabrir cobrança")
        return web.json_response({"error": f"Erro ao reabrir cobrança: {str(e)}"}, status=500)


async def _read_notification(request: web.Request, provider: str) -> Dict[str, Any]:
    signature = request.headers.get("Stripe-Signature")
    if provider == "stripe" and signature:
        # A assinatura é calculada sobre o corpo bruto
        return {"payload": await request.text(), "signature": signature}

    if request.content_type == 'application/json':
        try:
            body = await request.json()
        except json.JSONDecodeError:
            body = {}
    else:
        # Para form data
        body = dict(await request.post())

    # O Mercado Pago (IPN) envia topic e id na query string
    payload = dict(request.query)
    if isinstance(body, dict):
        payload.update(body)
    return payload


@routes.post('/payments/webhook/{provider}/{company_id}')
async def receive_payment_webhook(request: web.Request) -> web.Response:
    """
    Recebe as notificações dos provedores de pagamento.

    Params:
        provider (str): Provedor ('mercado_pago', 'asaas', 'stripe').
        company_id (str): Empresa dona da configuração do gateway.

    Returns:
        web.Response: 200 com a ação tomada; 400 para configuração ou assinatura
        inválidas; 502 se o provedor não puder ser consultado (ele reenviará).

    Notas:
        - Este endpoint NÃO requer autenticação, pois é chamado pelos serviços externos.
    """
    provider = request.match_info["provider"].lower()
    company_id = request.match_info["company_id"]
    try:
        payload = await _read_notification(request, provider)
        async with request.app[DB_SESSION_KEY]() as session:
            outcome = await NotificationService(session).process_notification(provider, company_id, payload)
        return web.json_response(outcome.to_dict(), status=200)
    except (ConfigurationError, NotificationSignatureError, ProviderRequestError) as e:
        logger.error("Webhook %s/%s recusado: %s", provider, company_id, e)
        return _error_response(e)
    except Exception as e:
        logger.exception("Erro ao processar webhook %s/%s", provider, company_id)
        return web.json_response({"error": f"Erro ao processar webhook: {str(e)}"}, status=500)


@routes.get('/payments/checkout/{external_reference}')
async def get_checkout(request: web.Request) -> web.Response:
    """
    Dados exibidos na página de checkout do cliente.

    Returns:
        web.Response: Cobrança (somente dados públicos) e provedores disponíveis.
    """
    try:
        async with request.app[DB_SESSION_KEY]() as session:
            charge, providers = await ChargeService(session).get_checkout(request.match_info["external_reference"])
            return web.json_response({"charge": charge.to_checkout_dict(), "providers": providers})
    except ChargeNotFoundError as e:
        return _error_response(e)
    except Exception as e:
        logger.exception("Erro ao carregar checkout")
        return web.json_response({"error": f"Erro ao carregar checkout: {str(e)}"}, status=500)


@routes.post('/payments/checkout/{external_reference}')
async def process_checkout(request: web.Request) -> web.Response:
    """
    Gera o pagamento da cobrança no provedor e no método escolhidos pelo cliente.

    JSON de entrada:
        {
            "provider": "asaas",
            "payment_method": "pix",
            "customer": {"name": "...", "email": "...", "tax_id": "...", "phone": "..."}
        }

    Returns:
        web.Response: 200 com os dados de pagamento, 409 se a cobrança não estiver
        pendente, 502 se o provedor recusar.
    """
    try:
        data = await _read_json(request)
        customer_data = data.get("customer")
        if not isinstance(customer_data, dict):
            raise ValidationError(["customer"])
        async with request.app[DB_SESSION_KEY]() as session:
            creation = await ChargeService(session).process_checkout(
                request.match_info["external_reference"],
                (data.get("provider") or "").lower(),
                (data.get("payment_method") or "pix").lower(),
                CustomerInfo.from_dict(customer_data),
            )

        if not creation.success:
            return web.json_response({"success": False, "error": creation.result.error}, status=502)
        return web.json_response({"success": True, "charge": creation.charge.to_checkout_dict()})
    except (ValidationError, ChargeNotFoundError, ConfigurationError, ReconciliationConflict) as e:
        return _error_response(e)
    except Exception as e:
        logger.exception("Erro no checkout")
        return web.json_response({"error": f"Erro no checkout: {str(e)}"}, status=500)


@routes.post('/payments/test-connection')
@require_role(['admin', 'manager'])
async def test_connection(request: web.Request) -> web.Response:
    """
    Testa as credenciais de um gateway.

    JSON de entrada:
        {
            "provider": "asaas",
            "is_sandbox": true,
            "credentials": {"sandbox_api_key": "..."}   // opcional, senão usa a configuração salva
        }
    """
    try:
        data = await _read_json(request)
        provider = data.get("provider")

        async with request.app[DB_SESSION_KEY]() as session:
            config_service = GatewayConfigService(session)
            config = None
            if isinstance(data.get("credentials"), dict):
                adapter = PaymentAdapterRegistry.get_adapter(
                    provider,
                    data["credentials"],
                    _parse_sandbox(data.get("is_sandbox"), DEFAULT_SANDBOX),
                )
            else:
                config = await config_service.get_config(_company_id(request, data), provider)
                if not config:
                    raise ConfigurationError(f"Gateway {provider} não configurado para a empresa")
                adapter = PaymentAdapterRegistry.from_gateway_config(
                    config, _parse_sandbox(data.get("is_sandbox"), None)
                )

            result = await adapter.test_connection()
            if result.success and config is not None:
                await config_service.mark_verified(config)

        return web.json_response({"success": result.success, "message": result.message})
    except (ValidationError, ConfigurationError) as e:
        return _error_response(e)
    except Exception as e:
        logger.exception("Erro ao testar conexão")
        return web.json_response({"error": f"Erro ao testar conexão: {str(e)}"}, status=500)


@routes.post('/payments/asaas/create-key')
@require_role(['admin'])
async def create_asaas_pix_key(request: web.Request) -> web.Response:
    """
    Cria uma chave Pix aleatória (EVP) na conta Asaas da empresa.

    Requer: Papel de administrador.
    """
    try:
        data = await _read_json(request) if request.can_read_body else {}
        async with request.app[DB_SESSION_KEY]() as session:
            config = await GatewayConfigService(session).get_config(_company_id(request, data), "asaas")
            if not config:
                raise ConfigurationError("Gateway asaas não configurado para a empresa")
            adapter = PaymentAdapterRegistry.from_gateway_config(
                config, _parse_sandbox(data.get("is_sandbox"), None)
            )

        if not isinstance(adapter, AsaasAdapter):
            raise ConfigurationError("Configuração não pertence ao Asaas")

        result = await adapter.create_random_pix_key()
        return web.json_response(result, status=200 if result["success"] else 502)
    except (ValidationError, ConfigurationError) as e:
        return _error_response(e)
    except Exception as e:
        logger.exception("Erro ao criar chave Pix")
        return web.json_response({"error": f"Erro ao criar chave Pix: {str(e)}"}, status=500)
