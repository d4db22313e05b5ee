# D:\ChargeHub\chargehub\services\reconciliation_service.py

"""
reconciliation_service.py

Este módulo implementa a máquina de estados das cobranças e a garantia de
no máximo uma cobrança pendente por orçamento.

Estados: pending (inicial), approved, rejected e cancelled (terminais).
A reconciliação é uma fusão em direção ao estado terminal: notificações repetidas
ou fora de ordem são seguras, e somente um reset privilegiado tira uma cobrança
de um estado terminal.

Classes:
    ReconciliationGuard: Aplica transições de status e os efeitos em cascata
        (transação financeira e orçamento).
"""

import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chargehub.config.settings import get_current_time
from chargehub.models.business_models import Quote, Transaction
from chargehub.models.charge_models import Charge
from chargehub.services.payment.exceptions import ChargeNotFoundError, ReconciliationConflict
from chargehub.services.payment.gateway_interface import (
    APPROVED, CANCELLED, CANONICAL_STATUSES, PENDING, REJECTED,
)

logger = logging.getLogger(__name__)


class ReconciliationGuard:
    """
    Guarda de reconciliação das cobranças.

    Attributes:
        TERMINAL_STATUSES (frozenset): Status dos quais só se sai por reset.
        PRIVILEGED_ROLES (tuple): Papéis autorizados a executar o reset.
    """

    TERMINAL_STATUSES = frozenset({APPROVED, REJECTED, CANCELLED})
    PRIVILEGED_ROLES = ("admin",)

    def __init__(self, session: AsyncSession):
        self.session = session

    @classmethod
    def merge_status(cls, current: str, incoming: str) -> Tuple[str, bool]:
        """
        Funde o status atual com o status recebido.

        Regras:
            - pending -> qualquer status: aplica.
            - terminal -> mesmo status: no-op.
            - terminal -> pending: no-op (notificação atrasada).
            - terminal -> outro terminal: conflito.

        Args:
            current (str): Status atual da cobrança.
            incoming (str): Status canônico recebido.

        Returns:
            Tuple[str, bool]: Status resultante e se houve mudança.

        Raises:
            ReconciliationConflict: Se a transição não for permitida.
        """
        if incoming not in CANONICAL_STATUSES:
            raise ReconciliationConflict(
                f"Status desconhecido: {incoming}", current_status=current, requested_status=incoming
            )

        if current == incoming:
            return current, False
        if current not in cls.TERMINAL_STATUSES:
            return incoming, True
        if incoming == PENDING:
            return current, False

        raise ReconciliationConflict(
            f"Cobrança já está {current}; transição para {incoming} não permitida",
            current_status=current,
            requested_status=incoming,
        )

    async def find_pending_charge(self, quote_id: Optional[int], exclude_id: Optional[int] = None) -> Optional[Charge]:
        """
        Busca a cobrança pendente de um orçamento, se houver.

        Args:
            quote_id (Optional[int]): ID do orçamento.
            exclude_id (Optional[int]): Cobrança a desconsiderar na busca.

        Returns:
            Optional[Charge]: Cobrança pendente ou None.
        """
        if quote_id is None:
            return None

        query = select(Charge).where(Charge.quote_id == quote_id, Charge.status == PENDING)
        if exclude_id is not None:
            query = query.where(Charge.id != exclude_id)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def ensure_quote_payable(self, quote: Quote) -> None:
        """
        Recusa uma nova cobrança para um orçamento já quitado.

        Raises:
            ReconciliationConflict: Se o orçamento estiver pago ou tiver cobrança aprovada.
        """
        if quote.payment_status == "paid":
            raise ReconciliationConflict(
                f"O orçamento {quote.id} já está pago", current_status=APPROVED, requested_status=PENDING
            )

        result = await self.session.execute(
            select(Charge).where(Charge.quote_id == quote.id, Charge.status == APPROVED)
        )
        approved = result.scalars().first()
        if approved:
            raise ReconciliationConflict(
                f"O orçamento {quote.id} já foi pago pela cobrança {approved.id}",
                current_status=APPROVED,
                requested_status=PENDING,
            )

    async def _get_linked_transaction(self, charge: Charge) -> Optional[Transaction]:
        result = await self.session.execute(
            select(Transaction).where(Transaction.charge_id == charge.id)
        )
        return result.scalars().first()

    async def apply_status(self, charge: Charge, status: str, provider_status: Optional[str] = None) -> bool:
        """
        Aplica um status canônico à cobrança e os efeitos em cascata.

        Na aprovação: paid_at é preenchido, a transação vinculada passa a 'received'
        e o orçamento passa a 'paid'. Rejeição e cancelamento não alteram o orçamento.
        As alterações são apenas enviadas à sessão (flush); o commit cabe ao chamador.

        Args:
            charge (Charge): Cobrança a atualizar.
            status (str): Status canônico recebido.
            provider_status (Optional[str]): Status bruto do provedor.

        Returns:
            bool: True se o status mudou.

        Raises:
            ReconciliationConflict: Se a transição não for permitida.
        """
        new_status, changed = self.merge_status(charge.status, status)
        if not changed:
            if charge.status == PENDING and provider_status and provider_status != charge.provider_status:
                charge.provider_status = provider_status
                await self.session.flush()
            return False

        charge.status = new_status
        if provider_status:
            charge.provider_status = provider_status

        if new_status == APPROVED:
            now = get_current_time()
            charge.paid_at = now

            transaction = await self._get_linked_transaction(charge)
            if transaction:
                transaction.status = "received"
                transaction.payment_date = now.date()
                transaction.paid_amount = charge.amount
                transaction.payment_method = charge.payment_method

            if charge.quote_id is not None:
                quote = await self.session.get(Quote, charge.quote_id)
                if quote:
                    quote.payment_status = "paid"

        await self.session.flush()
        logger.info("Cobrança %s (%s) -> %s", charge.id, charge.external_reference, new_status)
        return True

    async def reset_charge(self, charge_id: int, actor: Dict[str, Any], company_id: Optional[str] = None) -> Charge:
        """
        Reset privilegiado: devolve uma cobrança terminal ao estado pendente.

        Também desfaz a cascata: transação vinculada volta a 'pending' (dados do
        recebimento limpos) e o orçamento volta a 'pending'.

        Args:
            charge_id (int): ID da cobrança.
            actor (Dict[str, Any]): Usuário autenticado ({"id": ..., "role": ...}).
            company_id (Optional[str]): Empresa do usuário; cobranças de outra
                empresa são tratadas como inexistentes.

        Returns:
            Charge: Cobrança atualizada.

        Raises:
            PermissionError: Se o usuário não tiver papel privilegiado.
            ChargeNotFoundError: Se a cobrança não existir ou for de outra empresa.
            ReconciliationConflict: Se outra cobrança do orçamento já estiver pendente.
        """
        if (actor or {}).get("role") not in self.PRIVILEGED_ROLES:
            raise PermissionError("Apenas administradores podem reabrir cobranças.")

        charge = await self.session.get(Charge, charge_id)
        if not charge or (company_id is not None and charge.company_id != company_id):
            raise ChargeNotFoundError(charge_id)
        if charge.status == PENDING:
            return charge

        other = await self.find_pending_charge(charge.quote_id, exclude_id=charge.id)
        if other:
            raise ReconciliationConflict(
                f"O orçamento já possui a cobrança pendente {other.id}",
                current_status=charge.status,
                requested_status=PENDING,
            )

        previous = charge.status
        charge.status = PENDING
        charge.provider_status = None
        charge.paid_at = None

        transaction = await self._get_linked_transaction(charge)
        if transaction:
            transaction.status = "pending"
            transaction.payment_date = None
            transaction.paid_amount = None
            transaction.payment_method = None

        if charge.quote_id is not None:
            quote = await self.session.get(Quote, charge.quote_id)
            if quote:
                quote.payment_status = "pending"

        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ReconciliationConflict(
                "O orçamento já possui uma cobrança pendente",
                current_status=previous,
                requested_status=PENDING,
            ) from e

        logger.warning(
            "Cobrança %s reaberta (%s -> pending) pelo usuário %s", charge.id, previous, actor.get("id")
        )
        return charge
