# D:\ChargeHub\chargehub\services\gateway_config_service.py

"""
gateway_config_service.py

Leitura das configurações de gateway de pagamento das empresas.
As configurações pertencem ao módulo de configurações da empresa; este núcleo
apenas as consulta.

Classes:
    GatewayConfigService: Consulta de configurações ativas por empresa e provedor.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chargehub.config.settings import get_current_time
from chargehub.models.charge_models import GatewayConfig


class GatewayConfigService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_config(self, company_id: str, provider: str) -> Optional[GatewayConfig]:
        """
        Obtém a configuração ativa de um provedor para a empresa.

        Args:
            company_id (str): Empresa (tenant).
            provider (str): Identificador do provedor.

        Returns:
            Optional[GatewayConfig]: Configuração ou None se ausente/inativa.
        """
        result = await self.session.execute(
            select(GatewayConfig).where(
                GatewayConfig.company_id == company_id,
                GatewayConfig.provider == (provider or "").lower(),
                GatewayConfig.is_active.is_(True),
            )
        )
        return result.scalars().first()

    async def list_configs(self, company_id: str) -> List[GatewayConfig]:
        result = await self.session.execute(
            select(GatewayConfig)
            .where(GatewayConfig.company_id == company_id, GatewayConfig.is_active.is_(True))
            .order_by(GatewayConfig.provider)
        )
        return list(result.scalars().all())

    async def mark_verified(self, config: GatewayConfig) -> None:
        """Registra o momento da última verificação de conexão bem-sucedida."""
        config.last_verified_at = get_current_time()
        await self.session.commit()
