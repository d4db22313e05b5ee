# D:\ChargeHub\chargehub\services\notification_service.py

"""
notification_service.py

Entrada das notificações (webhooks) dos provedores de pagamento.

As notificações chegam ao menos uma vez, fora de ordem e sem relação com a
requisição que criou a cobrança. O processamento depende apenas do estado
persistido e pode ser repetido com segurança.

Classes:
    NotificationOutcome: Resultado do processamento de uma notificação.
    NotificationService: Processa notificações e reconcilia as cobranças.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chargehub.models.charge_models import Charge, GatewayConfig
from chargehub.services.gateway_config_service import GatewayConfigService
from chargehub.services.payment.exceptions import (
    ConfigurationError, ProviderRequestError, ReconciliationConflict, UnsupportedNotificationError,
)
from chargehub.services.payment.gateway_factory import PaymentAdapterRegistry
from chargehub.services.payment.gateway_interface import PaymentAdapterInterface
from chargehub.services.reconciliation_service import ReconciliationGuard

logger = logging.getLogger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
IGNORED = "ignored"
UNKNOWN_CHARGE = "unknown_charge"
CONFLICT = "conflict"


@dataclass
class NotificationOutcome:
    action: str
    external_reference: Optional[str] = None
    status: Optional[str] = None
    charge_id: Optional[int] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NotificationService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.guard = ReconciliationGuard(session)

    @staticmethod
    def _adapters_for(config: GatewayConfig, payload: Dict[str, Any]) -> List[PaymentAdapterInterface]:
        """
        Adaptadores a tentar, na ordem: o ambiente indicado pela notificação (ou o
        padrão da configuração) e depois o outro ambiente, se houver credencial.

        Cobranças podem ter sido geradas em um ambiente diferente do padrão da
        configuração, e a notificação nem sempre informa qual.
        """
        adapter_class = PaymentAdapterRegistry.get_adapter_class(config.provider)
        preferred = adapter_class.notification_environment(payload)
        if preferred is None:
            preferred = bool(config.is_sandbox)

        adapters, errors = [], []
        for is_sandbox in (preferred, not preferred):
            try:
                adapters.append(PaymentAdapterRegistry.from_gateway_config(config, is_sandbox))
            except ConfigurationError as e:
                errors.append(e)
        if not adapters:
            raise errors[0]
        return adapters

    async def process_notification(
        self,
        provider: str,
        company_id: str,
        payload: Dict[str, Any]
    ) -> NotificationOutcome:
        """
        Processa a notificação de um provedor para a empresa indicada na rota.

        Args:
            provider (str): Provedor que enviou a notificação.
            company_id (str): Empresa dona da configuração do gateway.
            payload (Dict[str, Any]): Corpo da notificação.

        Returns:
            NotificationOutcome: Ação tomada (applied, duplicate, ignored,
                unknown_charge ou conflict).

        Raises:
            ConfigurationError: Gateway não configurado para a empresa.
            NotificationSignatureError: Assinatura inválida.
            ProviderRequestError: Falha ao consultar o provedor (o provedor reenviará).
        """
        provider = (provider or "").lower()
        config = await GatewayConfigService(self.session).get_config(company_id, provider)
        if not config:
            raise ConfigurationError(f"Gateway {provider} não configurado para a empresa {company_id}")

        adapters = self._adapters_for(config, payload)
        for index, adapter in enumerate(adapters):
            try:
                notification = await adapter.handle_notification(payload)
                break
            except UnsupportedNotificationError as e:
                logger.warning("Notificação ignorada (%s/%s): %s", provider, company_id, e)
                return NotificationOutcome(action=IGNORED, message=str(e))
            except ProviderRequestError as e:
                if e.transient or index == len(adapters) - 1:
                    raise
                logger.warning(
                    "Consulta da notificação falhou no ambiente %s (%s/%s): %s; tentando o outro ambiente",
                    "sandbox" if adapter.is_sandbox else "produção", provider, company_id, e,
                )

        result = await self.session.execute(
            select(Charge).where(
                Charge.external_reference == notification.external_reference,
                Charge.company_id == company_id,
            )
        )
        charge = result.scalars().first()
        if not charge:
            logger.info(
                "Notificação para cobrança desconhecida %s (%s/%s)",
                notification.external_reference, provider, company_id,
            )
            return NotificationOutcome(
                action=UNKNOWN_CHARGE,
                external_reference=notification.external_reference,
                status=notification.status,
            )

        previous = charge.status
        charge_id = charge.id
        try:
            changed = await self.guard.apply_status(charge, notification.status, notification.provider_status)
            await self.session.commit()
        except ReconciliationConflict as e:
            await self.session.rollback()
            logger.warning(
                "Anomalia de reconciliação na cobrança %s (%s): %s",
                charge_id, notification.external_reference, e,
            )
            return NotificationOutcome(
                action=CONFLICT,
                external_reference=notification.external_reference,
                status=previous,
                charge_id=charge_id,
                message=str(e),
            )

        if changed:
            action = APPLIED
        elif previous == notification.status:
            action = DUPLICATE
        else:
            # Notificação pendente atrasada para uma cobrança já finalizada
            action = IGNORED

        return NotificationOutcome(
            action=action,
            external_reference=notification.external_reference,
            status=charge.status,
            charge_id=charge_id,
        )
