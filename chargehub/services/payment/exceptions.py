"""
exceptions.py

Hierarquia de exceções do núcleo de cobranças.

Classes:
    PaymentError: Base de todas as exceções de pagamento.
    ConfigurationError: Credencial ausente ou provedor desconhecido.
    ValidationError: Campos obrigatórios ausentes antes de qualquer chamada ao provedor.
    ProviderRequestError: Falha de rede, autenticação ou recusa do provedor.
    UnsupportedNotificationError: Notificação em formato não reconhecido.
    NotificationSignatureError: Assinatura de notificação inválida.
    ReconciliationConflict: Transição de status não permitida.
    DuplicatePendingChargeError: Já existe cobrança pendente para a referência de negócio.
    ChargeNotFoundError: Cobrança inexistente.
"""

from typing import List, Optional


class PaymentError(Exception):
    """Erro base do núcleo de cobranças."""


class ConfigurationError(PaymentError):
    """
    Configuração do gateway inválida: provedor não suportado ou credencial do
    ambiente selecionado ausente. Nunca é resolvida com valores padrão.
    """


class ValidationError(PaymentError):
    """
    Dados da cobrança incompletos para o método de pagamento escolhido.

    Attributes:
        fields (List[str]): Campos ausentes ou inválidos.
    """

    def __init__(self, fields: List[str], message: Optional[str] = None):
        self.fields = list(fields)
        super().__init__(message or f"Campos obrigatórios ausentes ou inválidos: {', '.join(self.fields)}")


class ProviderRequestError(PaymentError):
    """
    Falha na comunicação com o provedor (rede, autenticação ou recusa).

    Attributes:
        provider (str): Provedor que originou o erro.
        transient (bool): True para timeouts e falhas de conexão.
    """

    def __init__(self, message: str, provider: Optional[str] = None, transient: bool = False):
        self.provider = provider
        self.transient = transient
        super().__init__(message)


class UnsupportedNotificationError(PaymentError):
    """Payload de notificação que o adaptador não reconhece."""


class NotificationSignatureError(PaymentError):
    """Assinatura da notificação não confere com o segredo configurado."""


class ReconciliationConflict(PaymentError):
    """
    Tentativa de transição de status não permitida pela máquina de estados.

    Attributes:
        current_status (str): Status atual da cobrança.
        requested_status (str): Status solicitado.
    """

    def __init__(self, message: str, current_status: Optional[str] = None,
                 requested_status: Optional[str] = None):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(message)


class DuplicatePendingChargeError(ReconciliationConflict):
    """
    Já existe uma cobrança pendente para a referência de negócio.

    O chamador decide entre reutilizar a cobrança existente ou cancelá-la
    explicitamente antes de gerar outra.

    Attributes:
        existing_charge (Charge): Cobrança pendente já registrada.
    """

    def __init__(self, existing_charge):
        self.existing_charge = existing_charge
        super().__init__(
            "Já existe uma cobrança pendente para este orçamento. "
            "Reutilize o link existente ou cancele-o antes de gerar outro.",
            current_status="pending",
            requested_status="pending",
        )


class ChargeNotFoundError(PaymentError):
    """Cobrança não encontrada para o ID informado."""

    def __init__(self, charge_id):
        self.charge_id = charge_id
        super().__init__(f"Cobrança {charge_id} não encontrada")
