"""
business_models.py

Modelos dos stores colaboradores que o núcleo de cobranças lê e atualiza:
orçamentos (quotes) e transações financeiras (transactions).

Apenas os campos necessários ao ciclo de vida de uma cobrança estão mapeados aqui.
O restante do schema pertence aos módulos de orçamentos e financeiro.

Classes:
    Quote: Orçamento que pode ser cobrado (referência de negócio).
    Transaction: Lançamento financeiro vinculado a um orçamento e/ou cobrança.
"""

from sqlalchemy import Column, Integer, String, Numeric, Enum, Date, DateTime, ForeignKey

from chargehub.config.settings import get_current_time
from chargehub.models.database import Base


class Quote(Base):
    """
    Representa um orçamento, a referência de negócio de uma cobrança.

    Attributes:
        id (int): ID único do orçamento.
        company_id (str): Empresa (tenant) dona do orçamento.
        title (str): Título do orçamento.
        total_amount (Decimal): Valor total.
        payment_status (enum): Situação de pagamento ('none', 'pending', 'paid').
    """
    __tablename__ = 'quotes'

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    payment_status = Column(
        Enum('none', 'pending', 'paid', name='quote_payment_status'),
        nullable=False,
        default='none'
    )
    created_at = Column(DateTime(timezone=True), default=get_current_time)
    updated_at = Column(DateTime(timezone=True), default=get_current_time, onupdate=get_current_time)


class Transaction(Base):
    """
    Representa um lançamento financeiro (conta a receber) derivado de uma cobrança.

    Attributes:
        id (int): ID único da transação.
        company_id (str): Empresa (tenant).
        quote_id (int): Orçamento vinculado, se houver.
        charge_id (int): Cobrança que originou a transação, se houver.
        description (str): Descrição do lançamento.
        amount (Decimal): Valor previsto.
        status (enum): 'pending' ou 'received'.
        payment_date (date): Data do recebimento.
        paid_amount (Decimal): Valor efetivamente recebido.
        payment_method (str): Método de pagamento do recebimento.
    """
    __tablename__ = 'transactions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    quote_id = Column(Integer, ForeignKey('quotes.id'), nullable=True, index=True)
    charge_id = Column(Integer, ForeignKey('company_charges.id'), nullable=True, index=True)
    description = Column(String(255), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    type = Column(String(20), nullable=False, default='income')
    status = Column(
        Enum('pending', 'received', name='transaction_status'),
        nullable=False,
        default='pending'
    )
    payment_date = Column(Date, nullable=True)
    paid_amount = Column(Numeric(12, 2), nullable=True)
    payment_method = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=get_current_time)
    updated_at = Column(DateTime(timezone=True), default=get_current_time, onupdate=get_current_time)
