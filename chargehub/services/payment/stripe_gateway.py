# D:\ChargeHub\chargehub\services\payment\stripe_gateway.py
"""
stripe_gateway.py

Implementação da interface de adaptador de pagamento para o Stripe.
Todas as cobranças são criadas como Checkout Sessions (página hospedada): a criação
devolve apenas o link de pagamento com status pendente, e o resultado chega depois
pelos eventos de webhook.

Regras:
1. Valores são enviados em centavos (BRL)
2. A referência externa vai em metadata da sessão e do PaymentIntent, e também
   como Idempotency-Key da criação
3. Com webhook_secret configurado, somente eventos assinados
   ({"payload": ..., "signature": ...}) verificados por stripe.Webhook.construct_event
   são aceitos

Classes:
    StripeAdapter: Implementação do adaptador Stripe.
"""

import asyncio
import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import stripe

from chargehub.config.settings import PUBLIC_URL

from .exceptions import (
    NotificationSignatureError, ProviderRequestError, UnsupportedNotificationError,
)
from .gateway_interface import (
    APPROVED, CANCELLED, PENDING, REJECTED,
    ChargeRequest, ChargeResult, ConnectionTestResult, NotificationResult,
    PaymentAdapterInterface, ProviderCredentials,
)

logger = logging.getLogger(__name__)

PIX_EXPIRATION_SECONDS = 86400


class StripeAdapter(PaymentAdapterInterface):
    """
    Implementação específica do adaptador de pagamento Stripe.
    """

    PROVIDER_NAME = "stripe"
    CREDENTIAL_KEY = "secret_key"

    _STATUS_MAP = {
        "paid": APPROVED,
        "no_payment_required": APPROVED,
        "unpaid": PENDING,
        "open": PENDING,
        "complete": PENDING,
        "expired": CANCELLED,
    }

    # Eventos com status fixo; checkout.session.completed depende do payment_status
    _EVENT_STATUS = {
        "checkout.session.async_payment_succeeded": APPROVED,
        "checkout.session.async_payment_failed": REJECTED,
        "checkout.session.expired": CANCELLED,
        "payment_intent.payment_failed": REJECTED,
        "charge.refunded": CANCELLED,
    }

    def __init__(self, credentials: ProviderCredentials):
        super().__init__(credentials)
        self.client = stripe.StripeClient(
            credentials.secret,
            http_client=stripe.RequestsClient(timeout=credentials.timeout),
            max_network_retries=0,
        )

    @staticmethod
    def map_status(provider_status: Optional[str], session_status: Optional[str] = None) -> str:
        """
        Converte o payment_status (e opcionalmente o status) de uma Checkout Session.

        Uma sessão expirada é cancelada mesmo que o payment_status seja 'unpaid'.
        """
        if isinstance(provider_status, str) and StripeAdapter._STATUS_MAP.get(provider_status.lower()) == APPROVED:
            return APPROVED
        if session_status == "expired":
            return CANCELLED
        if not isinstance(provider_status, str):
            return PENDING
        return StripeAdapter._STATUS_MAP.get(provider_status.lower(), PENDING)

    @staticmethod
    def _payment_method_types(payment_method: str) -> List[str]:
        types = ["card"]
        if payment_method in ("pix", "all"):
            types.append("pix")
        if payment_method in ("boleto", "all"):
            types.append("boleto")
        return types

    @staticmethod
    def _field(obj: Any, name: str) -> Any:
        try:
            return obj[name]
        except (KeyError, TypeError):
            return None

    @staticmethod
    def _error_message(error: Exception) -> str:
        return getattr(error, "user_message", None) or str(error)

    def _build_session(self, request: ChargeRequest) -> Dict[str, Any]:
        amount_cents = int((request.amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return_url = request.notification_url or PUBLIC_URL
        metadata = {"external_reference": request.external_reference}

        return {
            "mode": "payment",
            "payment_method_types": self._payment_method_types(request.payment_method),
            "line_items": [
                {
                    "price_data": {
                        "currency": "brl",
                        "product_data": {"name": request.description},
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            "payment_method_options": {
                "pix": {"expires_after_seconds": PIX_EXPIRATION_SECONDS}
            },
            "success_url": f"{return_url}?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": return_url,
            "customer_email": request.customer.email,
            "client_reference_id": request.external_reference,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }

    async def create_charge(self, request: ChargeRequest) -> ChargeResult:
        """
        Cria uma Checkout Session no Stripe.

        Args:
            request (ChargeRequest): Dados da cobrança.

        Returns:
            ChargeResult: Link da sessão com status pendente, ou falha estruturada.
        """
        try:
            session = await asyncio.to_thread(
                self.client.checkout.sessions.create,
                params=self._build_session(request),
                options={"idempotency_key": request.external_reference},
            )
        except stripe.APIConnectionError as e:
            logger.error("Stripe indisponível ao criar %s: %s", request.external_reference, e)
            return ChargeResult.failure(f"Stripe indisponível: {self._error_message(e)}", transient=True)
        except stripe.StripeError as e:
            logger.error("Stripe recusou a sessão %s: %s", request.external_reference, e)
            return ChargeResult.failure(self._error_message(e))
        except Exception as e:
            logger.exception("Erro inesperado ao criar sessão %s no Stripe", request.external_reference)
            return ChargeResult.failure(f"Erro ao criar pagamento no Stripe: {e}")

        return ChargeResult(
            success=True,
            payment_id=self._field(session, "id"),
            payment_link=self._field(session, "url"),
            status=PENDING,
            provider_status=self._field(session, "payment_status"),
        )

    async def get_payment_status(self, payment_id: str) -> ChargeResult:
        """
        Consulta uma Checkout Session pelo ID.

        Raises:
            ProviderRequestError: Em falhas de rede ou do Stripe.
        """
        try:
            session = await asyncio.to_thread(self.client.checkout.sessions.retrieve, payment_id)
        except stripe.StripeError as e:
            raise ProviderRequestError(
                self._error_message(e),
                provider=self.PROVIDER_NAME,
                transient=isinstance(e, stripe.APIConnectionError),
            ) from e

        payment_status = self._field(session, "payment_status")
        session_status = self._field(session, "status")
        status = self.map_status(payment_status, session_status)
        return ChargeResult(
            success=True,
            payment_id=self._field(session, "id") or payment_id,
            status=status,
            provider_status="expired" if status == CANCELLED else payment_status,
        )

    def _parse_event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        signed = "payload" in payload
        if self.credentials.webhook_secret:
            if not signed:
                raise NotificationSignatureError("Evento do Stripe sem assinatura")
            try:
                event = stripe.Webhook.construct_event(
                    payload.get("payload") or "", payload.get("signature") or "", self.credentials.webhook_secret
                )
            except (stripe.SignatureVerificationError, ValueError) as e:
                raise NotificationSignatureError(f"Assinatura do Stripe inválida: {e}") from e
            return event.to_dict()

        if not signed:
            if "type" not in payload:
                raise UnsupportedNotificationError("Payload do Stripe sem tipo de evento")
            return payload

        raw = payload.get("payload") or ""
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise UnsupportedNotificationError("Payload do Stripe não é um JSON válido") from e

    async def handle_notification(self, payload: Dict[str, Any]) -> NotificationResult:
        """
        Converte um evento do Stripe na projeção canônica.

        Raises:
            NotificationSignatureError: Se a assinatura não conferir.
            UnsupportedNotificationError: Evento não tratado ou sem referência externa.
        """
        if not isinstance(payload, dict):
            raise UnsupportedNotificationError("Payload do Stripe inválido")

        event = self._parse_event(payload)
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == "checkout.session.completed":
            status = self.map_status(obj.get("payment_status"))
        elif event_type in self._EVENT_STATUS:
            status = self._EVENT_STATUS[event_type]
        else:
            raise UnsupportedNotificationError(f"Evento do Stripe não tratado: {event_type}")

        metadata = obj.get("metadata") or {}
        external_reference = metadata.get("external_reference") or obj.get("client_reference_id")
        if not external_reference:
            raise UnsupportedNotificationError(f"Evento {event_type} sem referência externa")

        return NotificationResult(
            external_reference=str(external_reference),
            status=status,
            provider_status=event_type,
        )

    async def cancel_charge(self, payment_id: str) -> None:
        """
        Expira a Checkout Session, que deixa de aceitar pagamento.

        Raises:
            ProviderRequestError: Em falhas de rede ou do Stripe (ex.: sessão já concluída).
        """
        try:
            await asyncio.to_thread(self.client.checkout.sessions.expire, payment_id)
        except stripe.StripeError as e:
            raise ProviderRequestError(
                self._error_message(e),
                provider=self.PROVIDER_NAME,
                transient=isinstance(e, stripe.APIConnectionError),
            ) from e
        logger.info("Checkout Session %s expirada no Stripe", payment_id)

    async def test_connection(self) -> ConnectionTestResult:
        """
        Testa a chave secreta consultando o saldo da conta.
        """
        try:
            await asyncio.to_thread(self.client.balance.retrieve)
            return ConnectionTestResult(True, "Conexão com Stripe estabelecida!")
        except Exception as e:
            logger.error("Erro no teste de conexão com o Stripe: %s", e)
            return ConnectionTestResult(False, f"Erro no Stripe: {self._error_message(e)}")
