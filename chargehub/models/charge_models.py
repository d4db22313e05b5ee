# D:\ChargeHub\chargehub\models\charge_models.py
"""
charge_models.py

Módulo que define os modelos de dados (ORM) do núcleo de cobranças, usando SQLAlchemy.

Funcionalidades principais:
    - Armazenamento das configurações de gateway por empresa (credenciais sandbox/produção)
    - Registro das cobranças geradas nos provedores e dos seus artefatos (link, QR Code)

Regras de Negócio:
    - Cada empresa possui no máximo uma configuração por provedor
    - A referência externa de uma cobrança é única e serve como chave de idempotência
    - Existe no máximo uma cobrança pendente por orçamento (índice único parcial)
    - Cobranças nunca são removidas por este núcleo

Dependências:
    - SQLAlchemy para ORM
    - Modelos colaboradores (Quote, Transaction) em business_models.py
"""

import json

from sqlalchemy import (
    Column, Integer, String, Numeric, Enum, DateTime, ForeignKey, Boolean, Text,
    Index, UniqueConstraint, text
)

from chargehub.config.settings import get_current_time
from chargehub.models.database import Base

CHARGE_STATUSES = ('pending', 'approved', 'rejected', 'cancelled')


class GatewayConfig(Base):
    """
    Representa a configuração de um gateway de pagamento de uma empresa.

    Attributes:
        id (int): ID único da configuração.
        company_id (str): Empresa (tenant) dona da configuração.
        provider (str): Identificador do provedor (mercado_pago, asaas, stripe).
        config (str): Credenciais em JSON (ex.: sandbox_access_token, prod_access_token,
            webhook_secret).
        is_sandbox (bool): Ambiente selecionado para a empresa.
        is_active (bool): Se o gateway está ativo.
        last_verified_at (datetime): Última verificação de conexão bem-sucedida.
    """
    __tablename__ = 'company_payment_gateways'
    __table_args__ = (
        UniqueConstraint('company_id', 'provider', name='uq_gateway_company_provider'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    provider = Column(String(50), nullable=False)
    config = Column(Text, nullable=False, default='{}')
    is_sandbox = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=get_current_time)
    updated_at = Column(DateTime(timezone=True), default=get_current_time, onupdate=get_current_time)

    @property
    def credentials(self) -> dict:
        """
        Desserializa as credenciais do formato JSON.

        Returns:
            dict: Mapa de credenciais (vazio se não houver).
        """
        if not self.config:
            return {}
        if isinstance(self.config, dict):
            return dict(self.config)
        return json.loads(self.config)


class Charge(Base):
    """
    Representa uma cobrança solicitada a um provedor de pagamento.

    Attributes:
        id (int): ID único da cobrança.
        company_id (str): Empresa (tenant) que emitiu a cobrança.
        customer_id (str): Contato cobrado, se houver.
        quote_id (int): Orçamento vinculado (referência de negócio), se houver.
        provider (str): Provedor utilizado.
        amount (Decimal): Valor cobrado.
        description (str): Descrição exibida ao cliente.
        external_reference (str): Referência externa única (chave de idempotência).
        payment_method (str): Método solicitado (pix, boleto, credit_card, debit_card, all).
        status (enum): Status canônico ('pending', 'approved', 'rejected', 'cancelled').
        provider_status (str): Status bruto informado pelo provedor.
        gateway_id (str): ID do pagamento/sessão/preferência no provedor.
        payment_link (str): Link de pagamento.
        qr_code (str): Payload Pix copia-e-cola.
        qr_code_base64 (str): Imagem do QR Code em base64.
        is_sandbox (bool): Se foi gerada em ambiente de testes.
        paid_at (datetime): Momento da confirmação do pagamento.
    """
    __tablename__ = 'company_charges'
    __table_args__ = (
        # Uma única cobrança pendente por orçamento
        Index(
            'uq_charges_pending_quote',
            'quote_id',
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(64), nullable=True)
    quote_id = Column(Integer, ForeignKey('quotes.id'), nullable=True)
    provider = Column(String(50), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(255), nullable=False)
    external_reference = Column(String(100), nullable=False, unique=True)
    payment_method = Column(String(20), nullable=False, default='pix')
    status = Column(
        Enum(*CHARGE_STATUSES, name='charge_status'),
        nullable=False,
        default='pending'
    )
    provider_status = Column(String(50), nullable=True)
    gateway_id = Column(String(255), nullable=True)
    payment_link = Column(Text, nullable=True)
    qr_code = Column(Text, nullable=True)
    qr_code_base64 = Column(Text, nullable=True)
    is_sandbox = Column(Boolean, nullable=False, default=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=get_current_time)
    updated_at = Column(DateTime(timezone=True), default=get_current_time, onupdate=get_current_time)

    def to_dict(self) -> dict:
        """
        Serializa a cobrança para respostas JSON.

        Returns:
            dict: Representação da cobrança.
        """
        return {
            "id": self.id,
            "company_id": self.company_id,
            "customer_id": self.customer_id,
            "quote_id": self.quote_id,
            "provider": self.provider,
            "amount": float(self.amount) if self.amount is not None else None,
            "description": self.description,
            "external_reference": self.external_reference,
            "payment_method": self.payment_method,
            "status": self.status,
            "provider_status": self.provider_status,
            "gateway_id": self.gateway_id,
            "payment_link": self.payment_link,
            "qr_code": self.qr_code,
            "qr_code_base64": self.qr_code_base64,
            "is_sandbox": self.is_sandbox,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_checkout_dict(self) -> dict:
        """
        Serializa apenas os dados exibidos ao cliente no checkout público.
        """
        return {
            "external_reference": self.external_reference,
            "provider": self.provider,
            "amount": float(self.amount) if self.amount is not None else None,
            "description": self.description,
            "payment_method": self.payment_method,
            "status": self.status,
            "payment_link": self.payment_link,
            "qr_code": self.qr_code,
            "qr_code_base64": self.qr_code_base64,
        }
