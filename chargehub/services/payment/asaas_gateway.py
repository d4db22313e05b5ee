# D:\ChargeHub\chargehub\services\payment\asaas_gateway.py
"""
asaas_gateway.py

Implementação da interface de adaptador de pagamento para o Asaas (API REST v3).
O Asaas não oferece SDK oficial em Python; as chamadas são feitas com aiohttp.

Regras:
1. Todo pagamento exige um cliente Asaas, localizado (ou criado) pelo CPF/CNPJ
2. Pix devolve o QR Code em uma segunda chamada (/payments/{id}/pixQrCode)
3. Como a API não aceita cabeçalho de idempotência, a referência externa é
   consultada antes da criação e um pagamento ainda válido é reaproveitado

Classes:
    AsaasAdapter: Implementação do adaptador Asaas.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import aiohttp

from chargehub.config.settings import get_current_time

from .exceptions import ProviderRequestError, UnsupportedNotificationError
from .gateway_interface import (
    APPROVED, CANCELLED, PENDING, REJECTED,
    ChargeRequest, ChargeResult, ConnectionTestResult, NotificationResult,
    PaymentAdapterInterface, ProviderCredentials, only_digits,
)

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.asaas.com/api/v3"
PRODUCTION_URL = "https://www.asaas.com/api/v3"


class AsaasAdapter(PaymentAdapterInterface):
    """
    Implementação específica do adaptador de pagamento Asaas.
    """

    PROVIDER_NAME = "asaas"
    CREDENTIAL_KEY = "api_key"
    REQUIRED_FIELDS = {
        "*": ("customer.name", "customer.email", "customer.tax_id"),
    }

    _STATUS_MAP = {
        "RECEIVED": APPROVED,
        "CONFIRMED": APPROVED,
        "RECEIVED_IN_CASH": APPROVED,
        "PENDING": PENDING,
        "AWAITING_RISK_ANALYSIS": PENDING,
        "OVERDUE": CANCELLED,
        "REFUNDED": CANCELLED,
        "REFUND_REQUESTED": CANCELLED,
        "REFUND_IN_PROGRESS": CANCELLED,
        "CHARGEBACK_REQUESTED": CANCELLED,
        "CHARGEBACK_DISPUTE": CANCELLED,
        "AWAITING_CHARGEBACK_REVERSAL": CANCELLED,
        "DELETED": CANCELLED,
    }

    # Eventos cujo significado não aparece no status do pagamento
    _EVENT_STATUS = {
        "PAYMENT_CREDIT_CARD_CAPTURE_REFUSED": REJECTED,
        "PAYMENT_REPROVED_BY_RISK_ANALYSIS": REJECTED,
        "PAYMENT_DELETED": CANCELLED,
    }

    _BILLING_TYPES = {
        "pix": "PIX",
        "boleto": "BOLETO",
        "credit_card": "CREDIT_CARD",
        "debit_card": "UNDEFINED",
        "all": "UNDEFINED",
    }

    def __init__(self, credentials: ProviderCredentials):
        super().__init__(credentials)
        self.base_url = SANDBOX_URL if credentials.is_sandbox else PRODUCTION_URL

    @staticmethod
    def map_status(provider_status: Optional[str]) -> str:
        if not isinstance(provider_status, str):
            return PENDING
        return AsaasAdapter._STATUS_MAP.get(provider_status.upper(), PENDING)

    @staticmethod
    def _error_message(body: Any, default: str) -> str:
        if isinstance(body, dict):
            errors = body.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                return errors[0].get("description") or default
        return default

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Executa uma chamada autenticada à API do Asaas.

        Args:
            method (str): Método HTTP.
            path (str): Caminho relativo (ex.: '/payments').
            json (Optional[Dict[str, Any]]): Corpo da requisição.
            params (Optional[Dict[str, Any]]): Query string.

        Returns:
            Dict[str, Any]: Corpo da resposta.

        Raises:
            ProviderRequestError: Resposta de erro, timeout ou falha de conexão.
        """
        timeout = aiohttp.ClientTimeout(total=self.credentials.timeout)
        headers = {"access_token": self.credentials.secret, "Content-Type": "application/json"}
        try:
            async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
                async with session.request(method, f"{self.base_url}{path}", json=json, params=params) as response:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        # Páginas de erro do proxy (HTML) em vez de JSON
                        body = None
                        if response.status < 400:
                            raise ProviderRequestError(
                                f"Resposta inválida do Asaas (HTTP {response.status})", provider=self.PROVIDER_NAME
                            )
                    if response.status >= 400:
                        raise ProviderRequestError(
                            self._error_message(body, f"Asaas respondeu HTTP {response.status}"),
                            provider=self.PROVIDER_NAME,
                        )
                    return body if isinstance(body, dict) else {}
        except (asyncio.TimeoutError, aiohttp.ClientConnectionError) as e:
            raise ProviderRequestError(
                f"Asaas indisponível: {e or 'tempo limite excedido'}",
                provider=self.PROVIDER_NAME,
                transient=True,
            ) from e
        except aiohttp.ClientError as e:
            raise ProviderRequestError(f"Erro na comunicação com o Asaas: {e}", provider=self.PROVIDER_NAME) from e

    async def _get_or_create_customer(self, request: ChargeRequest) -> str:
        customer = request.customer
        tax_id = only_digits(customer.tax_id)

        found = await self._request("GET", "/customers", params={"cpfCnpj": tax_id})
        if found.get("data"):
            return found["data"][0]["id"]

        payload = {"name": customer.name, "email": customer.email, "cpfCnpj": tax_id}
        phone = only_digits(customer.phone)
        if phone:
            payload["mobilePhone"] = phone
        created = await self._request("POST", "/customers", json=payload)
        logger.info("Cliente criado no Asaas: %s", created.get("id"))
        return created["id"]

    async def _find_live_payment(self, external_reference: str) -> Optional[Dict[str, Any]]:
        found = await self._request("GET", "/payments", params={"externalReference": external_reference})
        for payment in found.get("data") or []:
            if not payment.get("deleted") and self.map_status(payment.get("status")) in (PENDING, APPROVED):
                return payment
        return None

    async def _build_result(self, payment: Dict[str, Any], billing_type: str) -> ChargeResult:
        qr_code = qr_code_base64 = None
        if billing_type == "PIX":
            try:
                qr_data = await self._request("GET", f"/payments/{payment['id']}/pixQrCode")
                qr_code = qr_data.get("payload")
                qr_code_base64 = qr_data.get("encodedImage")
            except ProviderRequestError as e:
                # O link da fatura ainda permite o pagamento
                logger.warning("QR Code Pix indisponível para o pagamento Asaas %s: %s", payment["id"], e)

        provider_status = payment.get("status")
        return ChargeResult(
            success=True,
            payment_id=payment["id"],
            qr_code=qr_code,
            qr_code_base64=qr_code_base64,
            payment_link=payment.get("invoiceUrl"),
            status=self.map_status(provider_status),
            provider_status=provider_status,
        )

    async def create_charge(self, request: ChargeRequest) -> ChargeResult:
        """
        Cria o pagamento no Asaas, reaproveitando um pagamento válido com a mesma
        referência externa.

        Args:
            request (ChargeRequest): Dados da cobrança.

        Returns:
            ChargeResult: Resultado normalizado.
        """
        billing_type = self._BILLING_TYPES.get(request.payment_method, "UNDEFINED")
        try:
            existing = await self._find_live_payment(request.external_reference)
            if existing:
                logger.info(
                    "Pagamento Asaas %s reaproveitado para %s", existing.get("id"), request.external_reference
                )
                return await self._build_result(existing, existing.get("billingType") or billing_type)

            payload = {
                "customer": await self._get_or_create_customer(request),
                "billingType": billing_type,
                "value": float(request.amount),
                "dueDate": (get_current_time().date() + timedelta(days=1)).isoformat(),
                "description": request.description,
                "externalReference": request.external_reference,
            }
            payment = await self._request("POST", "/payments", json=payload)
            return await self._build_result(payment, billing_type)
        except ProviderRequestError as e:
            logger.error("Erro do Asaas ao criar %s: %s", request.external_reference, e)
            return ChargeResult.failure(str(e), transient=e.transient)
        except Exception as e:
            logger.exception("Erro inesperado ao criar cobrança %s no Asaas", request.external_reference)
            return ChargeResult.failure(f"Erro ao gerar pagamento no Asaas: {e}")

    async def get_payment_status(self, payment_id: str) -> ChargeResult:
        payment = await self._request("GET", f"/payments/{payment_id}")
        provider_status = payment.get("status")
        return ChargeResult(
            success=True,
            payment_id=payment.get("id", payment_id),
            payment_link=payment.get("invoiceUrl"),
            status=self.map_status(provider_status),
            provider_status=provider_status,
        )

    async def cancel_charge(self, payment_id: str) -> None:
        """Remove a fatura no Asaas; o link da fatura deixa de aceitar pagamento."""
        await self._request("DELETE", f"/payments/{payment_id}")
        logger.info("Pagamento %s removido no Asaas", payment_id)

    async def handle_notification(self, payload: Dict[str, Any]) -> NotificationResult:
        """
        Converte um webhook do Asaas ({"event": ..., "payment": {...}}).

        Raises:
            UnsupportedNotificationError: Sem objeto de pagamento ou sem referência externa.
        """
        payment = payload.get("payment") if isinstance(payload, dict) else None
        if not isinstance(payment, dict):
            raise UnsupportedNotificationError("Payload do Asaas sem objeto de pagamento")

        external_reference = payment.get("externalReference")
        if not external_reference:
            raise UnsupportedNotificationError(
                f"Pagamento Asaas {payment.get('id')} sem referência externa"
            )

        event = payload.get("event")
        provider_status = payment.get("status")
        status = self._EVENT_STATUS.get(event) or self.map_status(provider_status)
        return NotificationResult(
            external_reference=str(external_reference),
            status=status,
            provider_status=provider_status or event,
        )

    async def test_connection(self) -> ConnectionTestResult:
        """
        Testa a chave de API e verifica se a conta possui chave Pix cadastrada.
        """
        try:
            await self._request("GET", "/accounts")
            keys = await self._request("GET", "/pix/addressKeys")
        except ProviderRequestError as e:
            logger.error("Erro no teste de conexão com o Asaas: %s", e)
            return ConnectionTestResult(False, f"Erro: {e}")
        except Exception as e:
            logger.exception("Erro inesperado no teste de conexão com o Asaas")
            return ConnectionTestResult(False, f"Erro: {e}")

        if not keys.get("data"):
            return ConnectionTestResult(
                True,
                "Conexão OK, mas você não tem uma chave PIX no Asaas. "
                "Recomendamos criar uma chave aleatória para pagamentos mais rápidos.",
            )
        return ConnectionTestResult(True, "Conexão com Asaas estabelecida e Chave PIX detectada!")

    async def create_random_pix_key(self) -> Dict[str, Any]:
        """
        Cria uma chave Pix aleatória (EVP) na conta Asaas.

        Returns:
            Dict[str, Any]: {"success": bool, "message": str, "key": Optional[str]}
        """
        try:
            created = await self._request("POST", "/pix/addressKeys", json={"type": "EVP"})
        except ProviderRequestError as e:
            logger.error("Erro ao criar chave Pix no Asaas: %s", e)
            return {"success": False, "message": f"Erro ao criar chave: {e}", "key": None}

        return {
            "success": True,
            "message": "Chave Aleatória (EVP) criada com sucesso!",
            "key": created.get("key"),
        }
