# D:\ChargeHub\chargehub\services\payment\gateway_interface.py

"""
gateway_interface.py

Módulo que define a interface base para todos os adaptadores de provedores de pagamento
e os tipos de valor trocados entre o núcleo de cobranças e os adaptadores.
Esta interface funciona como um contrato que todas as implementações específicas
de provedor devem seguir, garantindo um único ciclo de vida de cobrança
(pending, approved, rejected, cancelled) independentemente do provedor.

Classes:
    ProviderCredentials: Credenciais resolvidas para um provedor/ambiente.
    CustomerInfo: Identificação do cliente cobrado.
    ChargeRequest: Requisição de criação de cobrança.
    ChargeResult: Resultado normalizado de criação ou consulta.
    NotificationResult: Projeção canônica de uma notificação.
    ConnectionTestResult: Resultado do teste de conectividade.
    PaymentAdapterInterface: Interface abstrata base para adaptadores de pagamento.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from chargehub.config.settings import PROVIDER_TIMEOUT_SECONDS
from .exceptions import ProviderRequestError, ValidationError

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
CANCELLED = "cancelled"

CANONICAL_STATUSES = (PENDING, APPROVED, REJECTED, CANCELLED)

PAYMENT_METHODS = ("pix", "boleto", "credit_card", "debit_card", "all")


def only_digits(value: Optional[str]) -> str:
    """Remove tudo que não for dígito (CPF/CNPJ, CEP, telefone)."""
    return re.sub(r"\D", "", value or "")


@dataclass(frozen=True)
class ProviderCredentials:
    """
    Credenciais já resolvidas para um único tenant/provedor/ambiente.

    Attributes:
        secret (str): Token/chave de API do ambiente selecionado.
        is_sandbox (bool): Se o ambiente é de testes.
        webhook_secret (Optional[str]): Segredo para validar notificações assinadas.
        timeout (float): Tempo máximo de cada chamada HTTP ao provedor.
    """
    secret: str
    is_sandbox: bool = True
    webhook_secret: Optional[str] = None
    timeout: float = PROVIDER_TIMEOUT_SECONDS


@dataclass
class CustomerInfo:
    name: str
    email: str
    tax_id: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomerInfo":
        return cls(
            name=(data.get("name") or "").strip(),
            email=(data.get("email") or "").strip(),
            tax_id=data.get("tax_id") or None,
            phone=data.get("phone") or None,
            address=data.get("address") or None,
        )

    @property
    def first_name(self) -> str:
        return (self.name or "").split(" ")[0]

    @property
    def last_name(self) -> str:
        parts = (self.name or "").split(" ", 1)
        return parts[1] if len(parts) > 1 and parts[1] else "Customer"

    @property
    def tax_id_type(self) -> str:
        return "CNPJ" if len(only_digits(self.tax_id)) > 11 else "CPF"


@dataclass
class ChargeRequest:
    """
    Requisição de criação de cobrança.

    Attributes:
        amount (Decimal): Valor positivo a ser cobrado.
        description (str): Descrição exibida ao cliente.
        external_reference (str): Referência única, enviada como chave de idempotência.
        customer (CustomerInfo): Cliente cobrado.
        notification_url (Optional[str]): URL de callback do provedor.
        payment_method (str): pix, boleto, credit_card, debit_card ou all.
    """
    amount: Decimal
    description: str
    external_reference: str
    customer: CustomerInfo
    notification_url: Optional[str] = None
    payment_method: str = "pix"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChargeRequest":
        """
        Monta a requisição a partir de um payload JSON.

        Args:
            data (Dict[str, Any]): Payload com amount, description, external_reference,
                customer e payment_method.

        Returns:
            ChargeRequest: Requisição normalizada.

        Raises:
            ValidationError: Se o valor não for numérico ou o cliente estiver ausente.
        """
        invalid = []
        try:
            amount = Decimal(str(data.get("amount")))
        except (InvalidOperation, ValueError, TypeError):
            amount = None
            invalid.append("amount")

        customer_data = data.get("customer")
        if not isinstance(customer_data, dict):
            invalid.append("customer")
            customer_data = {}

        if invalid:
            raise ValidationError(invalid)

        return cls(
            amount=amount,
            description=(data.get("description") or "").strip(),
            external_reference=(data.get("external_reference") or "").strip(),
            customer=CustomerInfo.from_dict(customer_data),
            notification_url=data.get("notification_url"),
            payment_method=(data.get("payment_method") or "pix").lower(),
        )


@dataclass
class ChargeResult:
    """
    Resultado normalizado de criação ou consulta de cobrança.

    Attributes:
        success (bool): Se a operação foi concluída no provedor.
        status (str): Status canônico.
        payment_id (Optional[str]): ID do pagamento/sessão/preferência no provedor.
        qr_code (Optional[str]): Payload Pix copia-e-cola.
        qr_code_base64 (Optional[str]): Imagem do QR Code em base64.
        payment_link (Optional[str]): Link de pagamento/checkout.
        error (Optional[str]): Mensagem legível em caso de falha.
        provider_status (Optional[str]): Status bruto do provedor.
        transient (bool): Falha por timeout/conexão, elegível para nova tentativa.
    """
    success: bool
    status: str = PENDING
    payment_id: Optional[str] = None
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    payment_link: Optional[str] = None
    error: Optional[str] = None
    provider_status: Optional[str] = None
    transient: bool = False

    @classmethod
    def failure(cls, message: str, transient: bool = False) -> "ChargeResult":
        return cls(success=False, status=REJECTED, error=message, transient=transient)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("transient", None)
        return data


@dataclass(frozen=True)
class NotificationResult:
    external_reference: str
    status: str
    provider_status: Optional[str] = None


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    message: str


class PaymentAdapterInterface(ABC):
    """
    Interface abstrata base para adaptadores de provedores de pagamento.

    Cada provedor (Mercado Pago, Asaas, Stripe, etc.) deve implementar esta interface.
    Regras do contrato:
        - create_charge e test_connection nunca propagam exceções; toda falha vira um
          resultado estruturado (success=False, status 'rejected', mensagem legível).
        - get_payment_status e handle_notification podem levantar exceções, pois rodam
          em contextos (consulta manual, webhook) onde o chamador registra e alerta.
        - map_status é total: qualquer status do provedor, conhecido ou não, vira um dos
          quatro status canônicos (desconhecido -> 'pending') e nunca levanta exceção.

    Attributes:
        PROVIDER_NAME (str): Identificador do provedor no registro.
        CREDENTIAL_KEY (str): Sufixo da credencial (sandbox_<key> / prod_<key>).
        REQUIRED_FIELDS (Dict[str, Tuple[str, ...]]): Campos obrigatórios por método
            de pagamento; '*' vale para todos os métodos.
    """

    PROVIDER_NAME: str = ""
    CREDENTIAL_KEY: str = ""
    REQUIRED_FIELDS: Dict[str, Tuple[str, ...]] = {
        "*": ("customer.name", "customer.email"),
    }

    def __init__(self, credentials: ProviderCredentials):
        self.credentials = credentials

    @property
    def is_sandbox(self) -> bool:
        return self.credentials.is_sandbox

    def missing_fields(self, request: ChargeRequest) -> List[str]:
        """
        Verifica os campos obrigatórios para o método de pagamento solicitado.

        Args:
            request (ChargeRequest): Requisição a validar.

        Returns:
            List[str]: Campos ausentes (vazia se a requisição estiver completa).
        """
        required = list(self.REQUIRED_FIELDS.get("*", ()))
        required += [
            name for name in self.REQUIRED_FIELDS.get(request.payment_method, ())
            if name not in required
        ]

        missing = []
        for dotted in required:
            value: Any = request
            for attr in dotted.split("."):
                value = getattr(value, attr, None)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(dotted)
        return missing

    @staticmethod
    @abstractmethod
    def map_status(provider_status: Optional[str]) -> str:
        """
        Converte o status do provedor para o status canônico.

        Args:
            provider_status (Optional[str]): Status bruto do provedor.

        Returns:
            str: 'pending', 'approved', 'rejected' ou 'cancelled'.
        """

    @abstractmethod
    async def create_charge(self, request: ChargeRequest) -> ChargeResult:
        """
        Cria a cobrança no provedor.

        Args:
            request (ChargeRequest): Dados da cobrança.

        Returns:
            ChargeResult: Resultado normalizado (nunca levanta exceção).
        """

    @abstractmethod
    async def get_payment_status(self, payment_id: str) -> ChargeResult:
        """
        Consulta o status atual de um pagamento no provedor.

        Args:
            payment_id (str): ID retornado na criação.

        Returns:
            ChargeResult: Resultado normalizado.

        Raises:
            ProviderRequestError: Em falhas de rede ou do provedor.
        """

    @abstractmethod
    async def handle_notification(self, payload: Dict[str, Any]) -> NotificationResult:
        """
        Converte o payload de um webhook na projeção canônica.

        Args:
            payload (Dict[str, Any]): Corpo da notificação recebida.

        Returns:
            NotificationResult: Referência externa e status canônico.

        Raises:
            UnsupportedNotificationError: Se o formato não for reconhecido.
        """

    @abstractmethod
    async def test_connection(self) -> ConnectionTestResult:
        """
        Valida as credenciais com uma chamada autenticada de baixo custo.

        Returns:
            ConnectionTestResult: Sucesso e mensagem legível (nunca levanta exceção).
        """

    @classmethod
    def notification_environment(cls, payload: Dict[str, Any]) -> Optional[bool]:
        """
        Ambiente informado pela própria notificação (True para sandbox), quando o
        provedor o envia. None quando a notificação não indica o ambiente.
        """
        return None

    async def cancel_charge(self, payment_id: str) -> None:
        """
        Invalida no provedor o pagamento/sessão/fatura de uma cobrança retirada,
        para que o link antigo deixe de aceitar pagamento.

        Args:
            payment_id (str): ID retornado na criação.

        Raises:
            ProviderRequestError: Se o provedor recusar ou não permitir o cancelamento.
        """
        raise ProviderRequestError(
            f"O provedor {self.PROVIDER_NAME} não permite cancelar cobranças", provider=self.PROVIDER_NAME
        )
