# D:\ChargeHub\chargehub\services\payment\mercadopago_gateway.py

"""
mercadopago_gateway.py

Implementação da interface de adaptador de pagamento para o Mercado Pago.
Este módulo fornece as funcionalidades específicas para gerar cobranças
utilizando a API do Mercado Pago, em dois modos:

    - Pix direto (/v1/payments): uma chamada síncrona que já devolve o QR Code.
    - Checkout Pro (preferências): para boleto e cartão, devolve um link de pagamento
      e o resultado real só é conhecido via notificação.

A referência externa é enviada no cabeçalho X-Idempotency-Key, de modo que uma nova
tentativa nunca cria um segundo pagamento no Mercado Pago.

Classes:
    MercadoPagoAdapter: Implementação do adaptador Mercado Pago.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import mercadopago
import requests
from mercadopago.config import RequestOptions

from chargehub.config.settings import get_current_time

from .exceptions import ProviderRequestError, UnsupportedNotificationError
from .gateway_interface import (
    APPROVED, CANCELLED, PENDING, REJECTED,
    ChargeRequest, ChargeResult, ConnectionTestResult, NotificationResult,
    PaymentAdapterInterface, ProviderCredentials, only_digits,
)

logger = logging.getLogger(__name__)


class MercadoPagoAdapter(PaymentAdapterInterface):
    """
    Implementação específica do adaptador de pagamento Mercado Pago.
    """

    PROVIDER_NAME = "mercado_pago"
    CREDENTIAL_KEY = "access_token"
    REQUIRED_FIELDS = {
        "*": ("customer.name", "customer.email"),
        "boleto": ("customer.tax_id",),
    }

    _STATUS_MAP = {
        "approved": APPROVED,
        "pending": PENDING,
        "in_process": PENDING,
        "authorized": PENDING,
        "in_mediation": PENDING,
        "rejected": REJECTED,
        "cancelled": CANCELLED,
        "refunded": CANCELLED,
        "charged_back": CANCELLED,
    }

    # Tipos de pagamento excluídos do Checkout Pro conforme o método solicitado
    _EXCLUDED_PAYMENT_TYPES = {
        "boleto": ["credit_card", "debit_card"],
        "credit_card": ["ticket", "bank_transfer"],
        "debit_card": ["ticket", "bank_transfer", "credit_card"],
    }

    def __init__(self, credentials: ProviderCredentials):
        super().__init__(credentials)
        self.sdk = mercadopago.SDK(credentials.secret)

    @staticmethod
    def map_status(provider_status: Optional[str]) -> str:
        if not isinstance(provider_status, str):
            return PENDING
        return MercadoPagoAdapter._STATUS_MAP.get(provider_status.lower(), PENDING)

    def _request_options(self, idempotency_key: Optional[str] = None) -> RequestOptions:
        headers = {"x-idempotency-key": idempotency_key} if idempotency_key else None
        # Novas tentativas são decididas pelo chamador
        return RequestOptions(
            access_token=self.credentials.secret,
            connection_timeout=float(self.credentials.timeout),
            custom_headers=headers,
            max_retries=0,
        )

    async def _call(self, func, *args) -> Tuple[int, Dict[str, Any]]:
        """
        Executa uma chamada bloqueante do SDK fora do loop de eventos.

        Returns:
            Tuple[int, Dict[str, Any]]: Código HTTP e corpo da resposta.
        """
        response = await asyncio.to_thread(func, *args)
        body = response.get("response")
        return int(response.get("status", 500)), body if isinstance(body, dict) else {"message": body}

    @staticmethod
    def _error_message(body: Dict[str, Any], default: str) -> str:
        message = body.get("message") or default
        causes = body.get("cause")
        if isinstance(causes, list) and causes and isinstance(causes[0], dict):
            description = causes[0].get("description")
            if description:
                message = f"{message}: {description}"
        return message

    def _payer(self, request: ChargeRequest) -> Dict[str, Any]:
        customer = request.customer
        payer: Dict[str, Any] = {
            "email": customer.email,
            "first_name": customer.first_name,
            "last_name": customer.last_name,
        }
        if customer.tax_id:
            payer["identification"] = {
                "type": customer.tax_id_type,
                "number": only_digits(customer.tax_id),
            }
        return payer

    def _build_pix_payment(self, request: ChargeRequest) -> Dict[str, Any]:
        payment_data = {
            "transaction_amount": float(request.amount),
            "description": request.description,
            "external_reference": request.external_reference,
            "payment_method_id": "pix",
            "payer": self._payer(request),
        }
        if request.notification_url:
            payment_data["notification_url"] = request.notification_url
        return payment_data

    def _build_preference(self, request: ChargeRequest) -> Dict[str, Any]:
        customer = request.customer
        payer = self._payer(request)
        # Preferências usam name/surname em vez de first_name/last_name
        payer["name"] = payer.pop("first_name")
        payer["surname"] = payer.pop("last_name")

        phone = only_digits(customer.phone)
        if len(phone) >= 10:
            payer["phone"] = {"area_code": phone[:2], "number": phone[2:]}

        address = customer.address or {}
        if address:
            street_number = only_digits(str(address.get("number") or ""))
            payer["address"] = {
                "street_name": address.get("street"),
                "street_number": int(street_number) if street_number else None,
                "zip_code": only_digits(address.get("zip_code")),
            }

        preference: Dict[str, Any] = {
            "items": [
                {
                    "title": request.description,
                    "quantity": 1,
                    "unit_price": float(request.amount),
                    "currency_id": "BRL",
                }
            ],
            "external_reference": request.external_reference,
            "payer": payer,
        }

        excluded = self._EXCLUDED_PAYMENT_TYPES.get(request.payment_method)
        if excluded:
            preference["payment_methods"] = {
                "excluded_payment_types": [{"id": payment_type} for payment_type in excluded]
            }

        if request.notification_url:
            preference["notification_url"] = request.notification_url
            preference["back_urls"] = {
                "success": request.notification_url,
                "pending": request.notification_url,
                "failure": request.notification_url,
            }
            preference["auto_return"] = "all"
        return preference

    async def create_charge(self, request: ChargeRequest) -> ChargeResult:
        """
        Cria a cobrança no Mercado Pago.

        Pix é criado como pagamento direto (QR Code imediato); os demais métodos
        geram uma preferência do Checkout Pro com link de pagamento.

        Args:
            request (ChargeRequest): Dados da cobrança.

        Returns:
            ChargeResult: Resultado normalizado.
        """
        options = self._request_options(request.external_reference)
        try:
            if request.payment_method == "pix":
                status_code, body = await self._call(
                    self.sdk.payment().create, self._build_pix_payment(request), options
                )
                if status_code >= 300:
                    message = self._error_message(body, "Erro ao gerar pagamento no Mercado Pago")
                    logger.error("Mercado Pago recusou o Pix %s: %s", request.external_reference, message)
                    return ChargeResult.failure(message)

                transaction_data = (body.get("point_of_interaction") or {}).get("transaction_data") or {}
                provider_status = body.get("status")
                return ChargeResult(
                    success=True,
                    payment_id=str(body.get("id")),
                    qr_code=transaction_data.get("qr_code"),
                    qr_code_base64=transaction_data.get("qr_code_base64"),
                    payment_link=transaction_data.get("ticket_url"),
                    status=self.map_status(provider_status),
                    provider_status=provider_status,
                )

            status_code, body = await self._call(
                self.sdk.preference().create, self._build_preference(request), options
            )
            if status_code >= 300:
                message = self._error_message(body, "Erro ao gerar pagamento no Mercado Pago")
                logger.error("Mercado Pago recusou a preferência %s: %s", request.external_reference, message)
                return ChargeResult.failure(message)

            link = body.get("sandbox_init_point") if self.is_sandbox else None
            return ChargeResult(
                success=True,
                payment_id=str(body.get("id")),
                payment_link=link or body.get("init_point"),
                status=PENDING,
            )
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            logger.error("Mercado Pago indisponível ao criar %s: %s", request.external_reference, e)
            return ChargeResult.failure(f"Mercado Pago indisponível: {e}", transient=True)
        except Exception as e:
            logger.exception("Erro inesperado ao criar cobrança %s no Mercado Pago", request.external_reference)
            return ChargeResult.failure(f"Erro ao gerar pagamento no Mercado Pago: {e}")

    async def _get_payment(self, payment_id: str) -> Dict[str, Any]:
        try:
            status_code, body = await self._call(self.sdk.payment().get, payment_id, self._request_options())
        except requests.exceptions.RequestException as e:
            raise ProviderRequestError(
                f"Mercado Pago indisponível: {e}", provider=self.PROVIDER_NAME, transient=True
            ) from e
        if status_code >= 300:
            raise ProviderRequestError(
                self._error_message(body, f"Erro ao consultar pagamento {payment_id}"),
                provider=self.PROVIDER_NAME,
            )
        return body

    async def _get_latest_payment_for_preference(self, preference_id: str) -> Optional[Dict[str, Any]]:
        try:
            status_code, preference = await self._call(
                self.sdk.preference().get, preference_id, self._request_options()
            )
            if status_code >= 300:
                raise ProviderRequestError(
                    self._error_message(preference, f"Preferência {preference_id} não encontrada"),
                    provider=self.PROVIDER_NAME,
                )

            filters = {
                "external_reference": preference.get("external_reference"),
                "sort": "date_created",
                "criteria": "desc",
            }
            status_code, search = await self._call(self.sdk.payment().search, filters, self._request_options())
        except requests.exceptions.RequestException as e:
            raise ProviderRequestError(
                f"Mercado Pago indisponível: {e}", provider=self.PROVIDER_NAME, transient=True
            ) from e

        if status_code >= 300:
            raise ProviderRequestError(
                self._error_message(search, "Erro ao buscar pagamentos da preferência"),
                provider=self.PROVIDER_NAME,
            )
        results = search.get("results") or []
        return results[0] if results else None

    async def get_payment_status(self, payment_id: str) -> ChargeResult:
        """
        Consulta o status de um pagamento ou de uma preferência do Checkout Pro.

        IDs de preferência não são numéricos; nesse caso é consultado o pagamento
        mais recente com a mesma referência externa (nenhum pagamento -> pending).

        Raises:
            ProviderRequestError: Em falhas de rede ou do provedor.
        """
        payment_id = str(payment_id)
        if payment_id.isdigit():
            payment = await self._get_payment(payment_id)
        else:
            payment = await self._get_latest_payment_for_preference(payment_id)
            if payment is None:
                return ChargeResult(success=True, payment_id=payment_id, status=PENDING)

        provider_status = payment.get("status")
        return ChargeResult(
            success=True,
            payment_id=str(payment.get("id", payment_id)),
            status=self.map_status(provider_status),
            provider_status=provider_status,
        )

    @classmethod
    def notification_environment(cls, payload: Dict[str, Any]) -> Optional[bool]:
        """Webhooks trazem live_mode; notificações IPN (query string) não."""
        live_mode = payload.get("live_mode") if isinstance(payload, dict) else None
        if isinstance(live_mode, bool):
            return not live_mode
        if isinstance(live_mode, str) and live_mode.lower() in ("true", "false"):
            return live_mode.lower() == "false"
        return None

    async def handle_notification(self, payload: Dict[str, Any]) -> NotificationResult:
        """
        Processa uma notificação do Mercado Pago (webhook ou IPN).

        A notificação só traz o ID do pagamento; o status é confirmado consultando
        o pagamento na API.

        Raises:
            UnsupportedNotificationError: Tópico diferente de 'payment' ou payload incompleto.
            ProviderRequestError: Se a consulta do pagamento falhar.
        """
        if not isinstance(payload, dict):
            raise UnsupportedNotificationError("Payload do Mercado Pago inválido")

        topic = payload.get("type") or payload.get("topic")
        if topic != "payment":
            raise UnsupportedNotificationError(f"Tipo de notificação não suportado: {topic}")

        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        payment_id = data.get("id") or payload.get("id") or payload.get("data.id")
        if not payment_id:
            raise UnsupportedNotificationError("Notificação de pagamento sem ID")

        payment = await self._get_payment(str(payment_id))
        external_reference = payment.get("external_reference")
        if not external_reference:
            raise UnsupportedNotificationError(
                f"Pagamento {payment_id} não possui referência externa"
            )

        provider_status = payment.get("status")
        return NotificationResult(
            external_reference=str(external_reference),
            status=self.map_status(provider_status),
            provider_status=provider_status,
        )

    async def test_connection(self) -> ConnectionTestResult:
        """
        Testa o access token listando os meios de pagamento da conta.
        """
        try:
            status_code, body = await self._call(self.sdk.payment_methods().list_all, self._request_options())
            if status_code == 200:
                return ConnectionTestResult(True, "Conexão estabelecida com sucesso!")
            return ConnectionTestResult(
                False, f"Falha na autenticação com o provedor: {self._error_message(body, status_code)}"
            )
        except Exception as e:
            logger.error("Erro no teste de conexão com o Mercado Pago: %s", e)
            return ConnectionTestResult(False, f"Erro: {e}")

    async def cancel_charge(self, payment_id: str) -> None:
        """
        Cancela um Pix direto ou expira uma preferência do Checkout Pro.

        Raises:
            ProviderRequestError: Se o Mercado Pago recusar ou estiver indisponível.
        """
        payment_id = str(payment_id)
        try:
            if payment_id.isdigit():
                status_code, body = await self._call(
                    self.sdk.payment().update, payment_id, {"status": "cancelled"}, self._request_options()
                )
            else:
                expiration = {
                    "expires": True,
                    "expiration_date_to": get_current_time().isoformat(timespec="milliseconds"),
                }
                status_code, body = await self._call(
                    self.sdk.preference().update, payment_id, expiration, self._request_options()
                )
        except requests.exceptions.RequestException as e:
            raise ProviderRequestError(
                f"Mercado Pago indisponível: {e}", provider=self.PROVIDER_NAME, transient=True
            ) from e

        if status_code >= 300:
            raise ProviderRequestError(
                self._error_message(body, f"Erro ao cancelar {payment_id} no Mercado Pago"),
                provider=self.PROVIDER_NAME,
            )
        logger.info("Cobrança %s invalidada no Mercado Pago", payment_id)
