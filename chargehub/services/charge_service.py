# D:\ChargeHub\chargehub\services\charge_service.py

"""
charge_service.py

Este módulo contém o orquestrador de cobranças: valida a requisição, garante a
idempotência pela referência externa, impede uma segunda cobrança pendente para o
mesmo orçamento, chama o adaptador do provedor e persiste o resultado.

Regras de Negócio:
    - Nenhuma chamada ao provedor é feita com dados incompletos
    - Uma referência externa já registrada devolve a cobrança existente (replay)
    - A cobrança é reservada na transação antes da chamada ao provedor e só é
      confirmada (commit) se o provedor aceitar
    - Apenas falhas transitórias (timeout/conexão) são repetidas, reaproveitando a
      mesma referência externa
    - Orçamentos já pagos não recebem nova cobrança
    - No checkout público o cliente escolhe provedor e método para uma cobrança
      pendente; a referência externa da cobrança continua sendo a chave de idempotência

Classes:
    ChargeCreation: Resultado da criação de cobrança.
    ChargeService: Operações sobre cobranças.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chargehub.config.settings import PROVIDER_MAX_ATTEMPTS, PUBLIC_URL
from chargehub.models.business_models import Quote, Transaction
from chargehub.models.charge_models import Charge, GatewayConfig
from chargehub.services.gateway_config_service import GatewayConfigService
from chargehub.services.payment.exceptions import (
    ChargeNotFoundError, ConfigurationError, DuplicatePendingChargeError, ProviderRequestError,
    ReconciliationConflict, ValidationError,
)
from chargehub.services.payment.gateway_factory import PaymentAdapterRegistry
from chargehub.services.payment.gateway_interface import (
    CANCELLED, PAYMENT_METHODS, PENDING, ChargeRequest, ChargeResult, CustomerInfo,
    PaymentAdapterInterface,
)
from chargehub.services.reconciliation_service import ReconciliationGuard

logger = logging.getLogger(__name__)


def generate_external_reference() -> str:
    """Gera uma referência externa no formato CHG-<timestamp-ms>-<aleatório>."""
    return f"CHG-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6].upper()}"


def build_notification_url(provider: str, company_id: str) -> str:
    return f"{PUBLIC_URL}/payments/webhook/{provider}/{company_id}"


@dataclass
class ChargeCreation:
    """
    Resultado da criação de uma cobrança.

    Attributes:
        success (bool): Se a cobrança foi criada (ou reaproveitada).
        charge (Optional[Charge]): Cobrança persistida.
        result (Optional[ChargeResult]): Resultado do provedor (ausente em replays).
        replayed (bool): True se a referência externa já existia.
        attempts (int): Número de chamadas feitas ao provedor.
    """
    success: bool
    charge: Optional[Charge] = None
    result: Optional[ChargeResult] = None
    replayed: bool = False
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = {"success": self.success, "replayed": self.replayed}
        if self.charge is not None:
            data["charge"] = self.charge.to_dict()
        if not self.success and self.result is not None:
            data["error"] = self.result.error
        return data


class ChargeService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.guard = ReconciliationGuard(session)

    async def _get_by_reference(self, external_reference: str) -> Optional[Charge]:
        result = await self.session.execute(
            select(Charge).where(Charge.external_reference == external_reference)
        )
        return result.scalars().first()

    async def _call_provider(
        self, adapter: PaymentAdapterInterface, request: ChargeRequest
    ) -> Tuple[ChargeResult, int]:
        """
        Chama o provedor repetindo apenas falhas transitórias, sempre com a mesma
        referência externa.

        Returns:
            Tuple[ChargeResult, int]: Último resultado e número de chamadas feitas.
        """
        attempts = 0
        while True:
            attempts += 1
            result = await adapter.create_charge(request)
            if result.success or not result.transient or attempts >= PROVIDER_MAX_ATTEMPTS:
                return result, attempts
            logger.warning(
                "Falha transitória no %s para %s (tentativa %d): %s",
                adapter.PROVIDER_NAME, request.external_reference, attempts, result.error,
            )

    def _validate(self, adapter, request: ChargeRequest) -> None:
        invalid = []
        if request.amount is None or not request.amount.is_finite() or request.amount <= 0:
            invalid.append("amount")
        if not request.description:
            invalid.append("description")
        if request.payment_method not in PAYMENT_METHODS:
            invalid.append("payment_method")
        invalid += [name for name in adapter.missing_fields(request) if name not in invalid]
        if invalid:
            raise ValidationError(invalid)

    async def create_charge(
        self,
        quote_id: Optional[int],
        gateway_config: GatewayConfig,
        is_sandbox: Optional[bool],
        request: ChargeRequest,
        customer_id: Optional[str] = None,
        create_transaction: bool = False
    ) -> ChargeCreation:
        """
        Cria uma cobrança no provedor configurado e a persiste.

        Args:
            quote_id (Optional[int]): Orçamento cobrado (referência de negócio).
            gateway_config (GatewayConfig): Configuração do gateway da empresa.
            is_sandbox (Optional[bool]): Ambiente; None usa o da configuração.
            request (ChargeRequest): Dados da cobrança.
            customer_id (Optional[str]): Contato cobrado.
            create_transaction (bool): Se deve criar a transação financeira pendente.

        Returns:
            ChargeCreation: Cobrança criada, reaproveitada, ou falha do provedor.

        Raises:
            ConfigurationError: Provedor não suportado ou credencial ausente.
            ValidationError: Dados incompletos para o método de pagamento.
            DuplicatePendingChargeError: Já existe cobrança pendente para o orçamento.
            ReconciliationConflict: O orçamento já está pago.
        """
        company_id = gateway_config.company_id
        adapter = PaymentAdapterRegistry.from_gateway_config(gateway_config, is_sandbox)

        if not request.external_reference:
            request.external_reference = generate_external_reference()
        if not request.notification_url:
            request.notification_url = build_notification_url(adapter.PROVIDER_NAME, company_id)
        self._validate(adapter, request)

        quote = None
        if quote_id is not None:
            quote = await self.session.get(Quote, quote_id)
            if not quote or quote.company_id != company_id:
                raise ValidationError(["quote_id"], "Orçamento não encontrado")

        existing = await self._get_by_reference(request.external_reference)
        if existing:
            if existing.company_id != company_id:
                raise ValidationError(["external_reference"], "Referência externa já utilizada")
            logger.info("Replay da cobrança %s (%s)", existing.id, existing.external_reference)
            return ChargeCreation(success=True, charge=existing, replayed=True)

        if quote is not None:
            await self.guard.ensure_quote_payable(quote)

        pending = await self.guard.find_pending_charge(quote_id)
        if pending:
            raise DuplicatePendingChargeError(pending)

        charge = Charge(
            company_id=company_id,
            customer_id=customer_id,
            quote_id=quote_id,
            provider=adapter.PROVIDER_NAME,
            amount=request.amount,
            description=request.description,
            external_reference=request.external_reference,
            payment_method=request.payment_method,
            status=PENDING,
            is_sandbox=adapter.is_sandbox,
        )
        self.session.add(charge)
        try:
            await self.session.flush()
        except IntegrityError:
            # Outra requisição reservou o orçamento ou a referência primeiro
            await self.session.rollback()
            pending = await self.guard.find_pending_charge(quote_id)
            if pending:
                raise DuplicatePendingChargeError(pending)
            existing = await self._get_by_reference(request.external_reference)
            if existing:
                return ChargeCreation(success=True, charge=existing, replayed=True)
            raise

        try:
            result, attempts = await self._call_provider(adapter, request)
            if not result.success:
                await self.session.rollback()
                logger.error(
                    "Cobrança %s não criada no %s: %s",
                    request.external_reference, adapter.PROVIDER_NAME, result.error,
                )
                return ChargeCreation(success=False, result=result, attempts=attempts)

            charge.gateway_id = result.payment_id
            charge.payment_link = result.payment_link
            charge.qr_code = result.qr_code
            charge.qr_code_base64 = result.qr_code_base64
            charge.provider_status = result.provider_status

            if create_transaction:
                self.session.add(Transaction(
                    company_id=company_id,
                    quote_id=quote_id,
                    charge_id=charge.id,
                    description=request.description,
                    amount=request.amount,
                    status="pending",
                ))
                await self.session.flush()

            # O provedor pode confirmar o pagamento já na criação
            await self.guard.apply_status(charge, result.status, result.provider_status)

            if charge.status == PENDING and quote is not None and quote.payment_status != "paid":
                quote.payment_status = "pending"

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Cobrança %s criada no %s (%s, %s)",
            charge.id, adapter.PROVIDER_NAME, charge.external_reference, charge.status,
        )
        return ChargeCreation(success=True, charge=charge, result=result, attempts=attempts)

    async def get_charge(self, charge_id: int, company_id: Optional[str] = None) -> Optional[Charge]:
        charge = await self.session.get(Charge, charge_id)
        if charge and company_id is not None and charge.company_id != company_id:
            return None
        return charge

    async def _require_charge(self, charge_id: int, company_id: Optional[str] = None) -> Charge:
        charge = await self.get_charge(charge_id, company_id)
        if not charge:
            raise ChargeNotFoundError(charge_id)
        return charge

    async def list_charges(
        self,
        company_id: str,
        quote_id: Optional[int] = None,
        status: Optional[str] = None
    ) -> List[Charge]:
        """
        Lista as cobranças da empresa, das mais recentes para as mais antigas.
        """
        query = select(Charge).where(Charge.company_id == company_id)
        if quote_id is not None:
            query = query.where(Charge.quote_id == quote_id)
        if status:
            query = query.where(Charge.status == status)
        result = await self.session.execute(query.order_by(Charge.created_at.desc(), Charge.id.desc()))
        return list(result.scalars().all())

    async def retire_charge(self, charge_id: int, company_id: Optional[str] = None) -> Charge:
        """
        Cancela explicitamente uma cobrança pendente, liberando o orçamento para
        uma nova cobrança.

        O pagamento/sessão/fatura no provedor também é invalidado, para que o link
        antigo não seja pago junto com a cobrança que o substituir. Se o provedor
        recusar, a retirada local é mantida e a falha fica registrada no log.

        Raises:
            ChargeNotFoundError: Se a cobrança não existir.
            ReconciliationConflict: Se a cobrança já estiver em outro estado terminal.
        """
        charge = await self._require_charge(charge_id, company_id)
        _, changed = self.guard.merge_status(charge.status, CANCELLED)
        if not changed:
            return charge

        await self._cancel_at_provider(charge.company_id, charge.provider, charge.gateway_id, charge.is_sandbox)
        await self.guard.apply_status(charge, CANCELLED, "retired")
        await self.session.commit()
        logger.info("Cobrança %s retirada", charge.id)
        return charge

    async def _cancel_at_provider(
        self, company_id: str, provider: str, gateway_id: Optional[str], is_sandbox: bool
    ) -> bool:
        """
        Invalida no provedor um pagamento que não deve mais ser pago.

        Returns:
            bool: True se o provedor confirmou o cancelamento.
        """
        if not gateway_id:
            return False
        try:
            config = await GatewayConfigService(self.session).get_config(company_id, provider)
            if not config:
                raise ConfigurationError(f"Gateway {provider} não configurado para a empresa")
            adapter = PaymentAdapterRegistry.from_gateway_config(config, is_sandbox)
            await adapter.cancel_charge(gateway_id)
            return True
        except (ConfigurationError, ProviderRequestError) as e:
            logger.warning(
                "Pagamento %s não foi invalidado no %s e ainda pode ser pago: %s", gateway_id, provider, e
            )
            return False

    async def refresh_charge_status(self, charge_id: int, company_id: Optional[str] = None) -> Charge:
        """
        Reconciliação manual: consulta o provedor e aplica o status retornado.

        Raises:
            ChargeNotFoundError: Se a cobrança não existir.
            ConfigurationError: Se a configuração do provedor não estiver ativa.
            ProviderRequestError: Em falhas na consulta ao provedor.
            ReconciliationConflict: Se o provedor informar outro estado terminal.
        """
        charge = await self._require_charge(charge_id, company_id)
        if not charge.gateway_id:
            raise ValidationError(["gateway_id"], "Cobrança sem identificador no provedor")

        config = await GatewayConfigService(self.session).get_config(charge.company_id, charge.provider)
        if not config:
            raise ConfigurationError(f"Gateway {charge.provider} não configurado para a empresa")

        adapter = PaymentAdapterRegistry.from_gateway_config(config, charge.is_sandbox)
        result = await adapter.get_payment_status(charge.gateway_id)
        try:
            await self.guard.apply_status(charge, result.status, result.provider_status)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return charge

    async def reset_charge(self, charge_id: int, actor: Dict[str, Any], company_id: Optional[str] = None) -> Charge:
        return await self.guard.reset_charge(charge_id, actor, company_id)

    async def get_checkout(self, external_reference: str) -> Tuple[Charge, List[str]]:
        """
        Dados do checkout público: a cobrança e os provedores ativos da empresa.

        Raises:
            ChargeNotFoundError: Se a referência externa não existir.
        """
        charge = await self._get_by_reference(external_reference)
        if not charge:
            raise ChargeNotFoundError(external_reference)
        configs = await GatewayConfigService(self.session).list_configs(charge.company_id)
        return charge, [config.provider for config in configs]

    async def process_checkout(
        self,
        external_reference: str,
        provider: str,
        payment_method: str,
        customer: CustomerInfo
    ) -> ChargeCreation:
        """
        Gera, a pedido do cliente, o pagamento de uma cobrança pendente no provedor
        e no método escolhidos.

        A referência externa da cobrança é reenviada como chave de idempotência, de
        modo que repetir o checkout não gera um segundo pagamento no mesmo provedor.
        Um pagamento anterior da mesma cobrança com outro ID no provedor é invalidado.

        Args:
            external_reference (str): Referência externa da cobrança.
            provider (str): Provedor escolhido pelo cliente.
            payment_method (str): Método escolhido (permitido pela cobrança).
            customer (CustomerInfo): Dados do pagador.

        Returns:
            ChargeCreation: Cobrança atualizada com os novos artefatos, ou falha do provedor.

        Raises:
            ChargeNotFoundError: Se a referência externa não existir.
            ReconciliationConflict: Se a cobrança não estiver pendente.
            ValidationError: Método não permitido ou dados do pagador incompletos.
            ConfigurationError: Provedor não disponível para a empresa.
        """
        charge = await self._get_by_reference(external_reference)
        if not charge:
            raise ChargeNotFoundError(external_reference)
        if charge.status != PENDING:
            raise ReconciliationConflict(
                f"Cobrança já está {charge.status}", current_status=charge.status, requested_status=PENDING
            )
        if charge.payment_method not in ("all", payment_method):
            raise ValidationError(["payment_method"], f"Método {payment_method} não permitido para esta cobrança")

        config = await GatewayConfigService(self.session).get_config(charge.company_id, provider)
        if not config:
            raise ConfigurationError(f"O provedor {provider} não está disponível para esta empresa")
        same_provider = config.provider == charge.provider
        adapter = PaymentAdapterRegistry.from_gateway_config(config, charge.is_sandbox if same_provider else None)

        request = ChargeRequest(
            amount=charge.amount,
            description=charge.description,
            external_reference=charge.external_reference,
            customer=customer,
            notification_url=build_notification_url(adapter.PROVIDER_NAME, charge.company_id),
            payment_method=payment_method,
        )
        self._validate(adapter, request)

        previous = (charge.provider, charge.gateway_id, charge.is_sandbox)
        result, attempts = await self._call_provider(adapter, request)
        if not result.success:
            logger.error(
                "Checkout da cobrança %s falhou no %s: %s", charge.id, adapter.PROVIDER_NAME, result.error
            )
            return ChargeCreation(success=False, result=result, attempts=attempts)

        try:
            charge.provider = adapter.PROVIDER_NAME
            charge.is_sandbox = adapter.is_sandbox
            charge.gateway_id = result.payment_id
            charge.payment_link = result.payment_link
            charge.qr_code = result.qr_code
            charge.qr_code_base64 = result.qr_code_base64
            charge.provider_status = result.provider_status
            await self.guard.apply_status(charge, result.status, result.provider_status)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        # O pagamento anterior (outro provedor ou outro método) deixa de valer
        if previous[1] and (previous[0], previous[1]) != (charge.provider, charge.gateway_id):
            await self._cancel_at_provider(charge.company_id, *previous)

        logger.info(
            "Checkout da cobrança %s gerado no %s (%s, %s)",
            charge.id, adapter.PROVIDER_NAME, payment_method, charge.status,
        )
        return ChargeCreation(success=True, charge=charge, result=result, attempts=attempts)
