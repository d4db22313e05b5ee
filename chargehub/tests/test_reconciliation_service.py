# D:\ChargeHub\chargehub\tests\test_reconciliation_service.py

"""
test_reconciliation_service.py

Módulo de testes para a máquina de estados das cobranças (ReconciliationGuard).

Testes:
    - Fusão de status (terminal vence, duplicatas e pendências atrasadas são no-op)
    - Cascata da aprovação na transação e no orçamento
    - Reset privilegiado (restrito à empresa do usuário)
    - Recusa de cobrança para orçamento já pago
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from chargehub.models.business_models import Transaction
from chargehub.services.payment.exceptions import ChargeNotFoundError, ReconciliationConflict
from chargehub.services.reconciliation_service import ReconciliationGuard

ADMIN = {"id": "1", "role": "admin", "company_id": "company-1"}
MANAGER = {"id": "2", "role": "manager", "company_id": "company-1"}


@pytest.mark.parametrize("current, incoming, expected", [
    ("pending", "approved", ("approved", True)),
    ("pending", "rejected", ("rejected", True)),
    ("pending", "cancelled", ("cancelled", True)),
    ("pending", "pending", ("pending", False)),
    ("approved", "approved", ("approved", False)),
    ("rejected", "pending", ("rejected", False)),
    ("cancelled", "pending", ("cancelled", False)),
])
def test_merge_status(current, incoming, expected):
    assert ReconciliationGuard.merge_status(current, incoming) == expected


@pytest.mark.parametrize("current, incoming", [
    ("approved", "rejected"),
    ("approved", "cancelled"),
    ("rejected", "approved"),
    ("cancelled", "approved"),
])
def test_merge_status_terminal_conflict(current, incoming):
    with pytest.raises(ReconciliationConflict) as exc_info:
        ReconciliationGuard.merge_status(current, incoming)

    assert exc_info.value.current_status == current
    assert exc_info.value.requested_status == incoming


def test_merge_status_unknown():
    with pytest.raises(ReconciliationConflict):
        ReconciliationGuard.merge_status("pending", "paid")


async def _add_transaction(session, charge):
    transaction = Transaction(
        company_id=charge.company_id,
        quote_id=charge.quote_id,
        charge_id=charge.id,
        description=charge.description,
        amount=charge.amount,
        status="pending",
    )
    session.add(transaction)
    await session.commit()
    return transaction


@pytest.mark.asyncio
async def test_apply_approved_cascades(async_db_session, make_quote, make_charge):
    """
    Testa que a aprovação marca a cobrança como paga, baixa a transação e quita o orçamento.
    """
    quote = await make_quote()
    charge = await make_charge(quote_id=quote.id)
    transaction = await _add_transaction(async_db_session, charge)
    guard = ReconciliationGuard(async_db_session)

    changed = await guard.apply_status(charge, "approved", "RECEIVED")
    await async_db_session.commit()

    assert changed is True
    assert charge.status == "approved"
    assert charge.provider_status == "RECEIVED"
    assert charge.paid_at is not None
    assert transaction.status == "received"
    assert transaction.paid_amount == Decimal("150.00")
    assert transaction.payment_method == "pix"
    assert transaction.payment_date is not None
    assert quote.payment_status == "paid"


@pytest.mark.asyncio
async def test_apply_same_status_twice_is_noop(async_db_session, make_quote, make_charge):
    quote = await make_quote()
    charge = await make_charge(quote_id=quote.id)
    guard = ReconciliationGuard(async_db_session)

    assert await guard.apply_status(charge, "approved") is True
    paid_at = charge.paid_at

    assert await guard.apply_status(charge, "approved") is False
    assert charge.paid_at == paid_at


@pytest.mark.asyncio
async def test_late_pending_does_not_reopen(async_db_session, make_charge):
    charge = await make_charge(status="approved")
    guard = ReconciliationGuard(async_db_session)

    assert await guard.apply_status(charge, "pending", "in_process") is False
    assert charge.status == "approved"
    assert charge.provider_status is None


@pytest.mark.asyncio
async def test_pending_updates_raw_status(async_db_session, make_charge):
    charge = await make_charge()
    guard = ReconciliationGuard(async_db_session)

    assert await guard.apply_status(charge, "pending", "in_process") is False
    assert charge.provider_status == "in_process"


@pytest.mark.asyncio
async def test_rejection_keeps_quote(async_db_session, make_quote, make_charge):
    quote = await make_quote()
    quote.payment_status = "pending"
    await async_db_session.commit()
    charge = await make_charge(quote_id=quote.id)
    guard = ReconciliationGuard(async_db_session)

    await guard.apply_status(charge, "rejected", "rejected")

    assert charge.status == "rejected"
    assert charge.paid_at is None
    assert quote.payment_status == "pending"


@pytest.mark.asyncio
async def test_apply_conflict(async_db_session, make_charge):
    charge = await make_charge(status="approved")
    guard = ReconciliationGuard(async_db_session)

    with pytest.raises(ReconciliationConflict):
        await guard.apply_status(charge, "cancelled")

    assert charge.status == "approved"


@pytest.mark.asyncio
async def test_find_pending_charge(async_db_session, make_quote, make_charge):
    quote = await make_quote()
    await make_charge(quote_id=quote.id, status="rejected")
    pending = await make_charge(quote_id=quote.id)
    guard = ReconciliationGuard(async_db_session)

    assert (await guard.find_pending_charge(quote.id)).id == pending.id
    assert await guard.find_pending_charge(quote.id, exclude_id=pending.id) is None
    assert await guard.find_pending_charge(None) is None


@pytest.mark.asyncio
async def test_reset_charge(async_db_session, make_quote, make_charge):
    """
    Testa que o reset reabre a cobrança e desfaz a baixa da transação e do orçamento.
    """
    quote = await make_quote()
    charge = await make_charge(quote_id=quote.id)
    transaction = await _add_transaction(async_db_session, charge)
    guard = ReconciliationGuard(async_db_session)
    await guard.apply_status(charge, "approved", "approved")
    await async_db_session.commit()

    reset = await guard.reset_charge(charge.id, ADMIN)

    assert reset.id == charge.id
    assert reset.status == "pending"
    assert reset.paid_at is None
    assert reset.provider_status is None
    assert transaction.status == "pending"
    assert transaction.paid_amount is None
    assert transaction.payment_date is None
    assert quote.payment_status == "pending"


@pytest.mark.asyncio
async def test_reset_requires_admin(async_db_session, make_charge):
    charge = await make_charge(status="approved")
    guard = ReconciliationGuard(async_db_session)

    with pytest.raises(PermissionError):
        await guard.reset_charge(charge.id, MANAGER)

    with pytest.raises(PermissionError):
        await guard.reset_charge(charge.id, None)

    assert charge.status == "approved"


@pytest.mark.asyncio
async def test_reset_missing_charge(async_db_session):
    with pytest.raises(ChargeNotFoundError):
        await ReconciliationGuard(async_db_session).reset_charge(999, ADMIN)


@pytest.mark.asyncio
async def test_reset_pending_charge_is_noop(async_db_session, make_charge):
    charge = await make_charge()

    reset = await ReconciliationGuard(async_db_session).reset_charge(charge.id, ADMIN)

    assert reset.status == "pending"


@pytest.mark.asyncio
async def test_reset_conflicts_with_other_pending(async_db_session, make_quote, make_charge):
    """
    Testa que o reset não cria uma segunda cobrança pendente para o mesmo orçamento.
    """
    quote = await make_quote()
    cancelled = await make_charge(quote_id=quote.id, status="cancelled")
    await make_charge(quote_id=quote.id)

    with pytest.raises(ReconciliationConflict):
        await ReconciliationGuard(async_db_session).reset_charge(cancelled.id, ADMIN)

    result = await async_db_session.execute(select(Transaction))
    assert result.scalars().all() == []
    assert cancelled.status == "cancelled"


@pytest.mark.asyncio
async def test_reset_charge_of_other_company(async_db_session, make_charge):
    charge = await make_charge(status="approved", company_id="company-2")
    guard = ReconciliationGuard(async_db_session)

    with pytest.raises(ChargeNotFoundError):
        await guard.reset_charge(charge.id, ADMIN, "company-1")

    assert charge.status == "approved"
    assert (await guard.reset_charge(charge.id, ADMIN, "company-2")).status == "pending"


@pytest.mark.asyncio
async def test_ensure_quote_payable(async_db_session, make_quote, make_charge):
    """
    Testa que um orçamento pago (ou com cobrança aprovada) não aceita nova cobrança.
    """
    guard = ReconciliationGuard(async_db_session)
    quote = await make_quote()
    await make_charge(quote_id=quote.id, status="rejected")

    await guard.ensure_quote_payable(quote)

    await make_charge(quote_id=quote.id, status="approved")
    with pytest.raises(ReconciliationConflict):
        await guard.ensure_quote_payable(quote)

    paid = await make_quote()
    paid.payment_status = "paid"
    await async_db_session.commit()
    with pytest.raises(ReconciliationConflict) as exc_info:
        await guard.ensure_quote_payable(paid)
    assert exc_info.value.requested_status == "pending"
