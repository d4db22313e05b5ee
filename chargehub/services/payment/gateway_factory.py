# D:\ChargeHub\chargehub\services\payment\gateway_factory.py

"""
gateway_factory.py

Este módulo fornece o registro de adaptadores de pagamento. A partir da configuração
de gateway de uma empresa (provedor, credenciais por ambiente e flag de sandbox),
seleciona a credencial correta e constrói o adaptador correspondente.

Classes:
    PaymentAdapterRegistry: Registro e construção de adaptadores de pagamento.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Type

from chargehub.config.settings import PROVIDER_TIMEOUT_SECONDS

from .asaas_gateway import AsaasAdapter
from .exceptions import ConfigurationError
from .gateway_interface import PaymentAdapterInterface, ProviderCredentials
from .mercadopago_gateway import MercadoPagoAdapter
from .stripe_gateway import StripeAdapter

logger = logging.getLogger(__name__)


class PaymentAdapterRegistry:
    """
    Registro de adaptadores de pagamento indexado pelo identificador do provedor.

    Adicionar um provedor não exige alterar os existentes: basta registrar a
    nova implementação de PaymentAdapterInterface.
    """

    # Registra os provedores suportados
    _ADAPTERS: Dict[str, Type[PaymentAdapterInterface]] = {
        "mercado_pago": MercadoPagoAdapter,
        "asaas": AsaasAdapter,
        "stripe": StripeAdapter,
    }

    @classmethod
    def get_adapter_class(cls, provider: str) -> Type[PaymentAdapterInterface]:
        """
        Retorna a classe do adaptador registrada para o provedor.

        Raises:
            ConfigurationError: Se o provedor não for suportado.
        """
        adapter_class = cls._ADAPTERS.get((provider or "").lower())
        if not adapter_class:
            raise ConfigurationError(f"Provedor não suportado: {provider}")
        return adapter_class

    @classmethod
    def get_adapter(
        cls,
        provider: str,
        credentials: Mapping[str, Any],
        is_sandbox: bool = True
    ) -> PaymentAdapterInterface:
        """
        Constrói o adaptador do provedor com a credencial do ambiente selecionado.

        Args:
            provider (str): Identificador do provedor ('mercado_pago', 'asaas', 'stripe').
            credentials (Mapping[str, Any]): Credenciais armazenadas
                (ex.: sandbox_access_token, prod_access_token, webhook_secret).
            is_sandbox (bool): Ambiente selecionado.

        Returns:
            PaymentAdapterInterface: Adaptador pronto para uso.

        Raises:
            ConfigurationError: Se o provedor não for suportado ou se a credencial
                do ambiente selecionado estiver ausente.
        """
        adapter_class = cls.get_adapter_class(provider)
        environment = "sandbox" if is_sandbox else "prod"
        key = f"{environment}_{adapter_class.CREDENTIAL_KEY}"
        secret = (credentials or {}).get(key)

        if not secret or not str(secret).strip():
            label = "Sandbox" if is_sandbox else "Produção"
            raise ConfigurationError(
                f"Credencial {key} ({label}) do provedor {provider} não configurada."
            )

        resolved = ProviderCredentials(
            secret=str(secret).strip(),
            is_sandbox=is_sandbox,
            webhook_secret=(credentials or {}).get("webhook_secret") or None,
            timeout=PROVIDER_TIMEOUT_SECONDS,
        )
        return adapter_class(resolved)

    @classmethod
    def from_gateway_config(cls, gateway_config, is_sandbox: Optional[bool] = None) -> PaymentAdapterInterface:
        """
        Constrói o adaptador a partir de uma configuração de gateway armazenada.

        Args:
            gateway_config (GatewayConfig): Configuração da empresa.
            is_sandbox (Optional[bool]): Sobrescreve o ambiente da configuração, se informado.

        Returns:
            PaymentAdapterInterface: Adaptador pronto para uso.
        """
        sandbox = gateway_config.is_sandbox if is_sandbox is None else is_sandbox
        return cls.get_adapter(gateway_config.provider, gateway_config.credentials, sandbox)

    @classmethod
    def register_adapter(cls, provider: str, adapter_class: type) -> None:
        """
        Registra um novo tipo de adaptador.

        Args:
            provider (str): Identificador do provedor.
            adapter_class (type): Classe que implementa PaymentAdapterInterface.

        Raises:
            TypeError: Se a classe não implementar PaymentAdapterInterface.
        """
        if not isinstance(adapter_class, type) or not issubclass(adapter_class, PaymentAdapterInterface):
            raise TypeError(
                f"A classe {getattr(adapter_class, '__name__', adapter_class)} "
                "deve implementar PaymentAdapterInterface"
            )

        cls._ADAPTERS[provider.lower()] = adapter_class
        logger.info("Adaptador de pagamento registrado: %s", provider.lower())

    @classmethod
    def get_supported_providers(cls) -> Dict[str, type]:
        """
        Retorna um dicionário com todos os provedores suportados.

        Returns:
            Dict[str, type]: Nome do provedor -> classe do adaptador.
        """
        return dict(cls._ADAPTERS)
