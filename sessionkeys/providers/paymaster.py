"""
ERC-4337 Paymaster Provider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .base import JsonRpcMixin, SponsorshipService
from ..config import settings
from ..core.execution.userop import SponsorshipData, UserOperation
from ..core.recovery.errors import (
    ConfigurationError,
    NetworkError,
    NetworkTimeout,
    ProviderError,
    SponsorshipUnavailable,
)


logger = logging.getLogger(__name__)


@dataclass
class PaymasterConfig:
    rpc_url: str
    rpc_method: str = "pm_sponsorUserOperation"


class PaymasterProvider(JsonRpcMixin, SponsorshipService):
    name = "paymaster"
    timeout_s = 20

    def __init__(
        self,
        config: Optional[PaymasterConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or PaymasterConfig(rpc_url=settings.zerodev_rpc)
        self.rpc_url = self._config.rpc_url
        self.timeout_s = settings.request_timeout_seconds
        self._client = None
        self._transport = transport

    async def ready(self) -> bool:
        return bool(self._config.rpc_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": "Paymaster not configured"}

        try:
            result = await self._rpc_call("eth_chainId", [])
            return {"status": "healthy", "chainId": result}
        except Exception as exc:
            return {"status": "error", "reason": str(exc)}

    async def sponsor(
        self,
        user_op: UserOperation,
        entry_point: str,
    ) -> SponsorshipData:
        """
        Ask the paymaster to sponsor ``user_op``.

        Any refusal or transport failure is reported as SponsorshipUnavailable
        so callers can retry with backoff.
        """
        if not await self.ready():
            raise ConfigurationError("Paymaster provider is not configured", details={"missing": ["ZERODEV_RPC"]})

        params = [user_op.to_rpc_dict(), entry_point]
        try:
            result = await self._rpc_call(self._config.rpc_method, params)
        except (ProviderError, NetworkError, NetworkTimeout) as exc:
            logger.warning(f"Sponsorship refused for {user_op.sender}: {exc}")
            raise SponsorshipUnavailable(f"Paymaster refused sponsorship: {exc}") from exc

        if not isinstance(result, dict) or not result.get("paymaster"):
            raise SponsorshipUnavailable("Invalid paymaster response")
        try:
            return SponsorshipData.from_rpc(result)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Unparseable sponsorship for {user_op.sender}: {exc}")
            raise SponsorshipUnavailable(f"Invalid paymaster response: {exc}") from exc


_paymaster_provider: Optional[PaymasterProvider] = None


def get_paymaster_provider() -> PaymasterProvider:
    global _paymaster_provider
    if _paymaster_provider is None:
        _paymaster_provider = PaymasterProvider()
    return _paymaster_provider
