"""
ERC-4337 Bundler Provider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .base import Broadcaster, JsonRpcMixin
from ..config import settings
from ..core.execution.userop import GasPrice, UserOperation, UserOpReceipt
from ..core.recovery.errors import ConfigurationError, ProviderError


logger = logging.getLogger(__name__)


@dataclass
class BundlerConfig:
    rpc_url: str


class BundlerProvider(JsonRpcMixin, Broadcaster):
    name = "bundler"
    timeout_s = 20

    def __init__(
        self,
        config: Optional[BundlerConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or BundlerConfig(rpc_url=settings.zerodev_rpc)
        self.rpc_url = self._config.rpc_url
        self.timeout_s = settings.request_timeout_seconds
        self._client = None
        self._transport = transport

    async def ready(self) -> bool:
        return bool(self._config.rpc_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": "Bundler not configured"}

        try:
            result = await self._rpc_call("eth_chainId", [])
            return {"status": "healthy", "chainId": result}
        except Exception as exc:
            return {"status": "error", "reason": str(exc)}

    async def _require_ready(self) -> None:
        if not await self.ready():
            raise ConfigurationError("Bundler provider is not configured", details={"missing": ["ZERODEV_RPC"]})

    async def send_user_operation(
        self,
        user_op: UserOperation,
        entry_point: str,
    ) -> str:
        await self._require_ready()

        result = await self._rpc_call(
            "eth_sendUserOperation",
            [user_op.to_rpc_dict(), entry_point],
        )
        if not isinstance(result, str):
            raise ProviderError("Invalid bundler response for eth_sendUserOperation", provider=self.name, error=result)
        return result

    async def get_user_operation_receipt(self, user_op_hash: str) -> Optional[UserOpReceipt]:
        await self._require_ready()

        result = await self._rpc_call(
            "eth_getUserOperationReceipt",
            [user_op_hash],
        )
        if not result:
            return None
        return UserOpReceipt.from_rpc(user_op_hash, result)

    async def get_user_operation_gas_price(self) -> GasPrice:
        """
        Current fee prices for an operation.

        Prefers the bundler's ``zd_getUserOperationGasPrice`` (standard tier)
        and falls back to the node's fee methods.
        """
        await self._require_ready()

        try:
            result = await self._rpc_call("zd_getUserOperationGasPrice", [])
        except ProviderError as exc:
            logger.debug(f"zd_getUserOperationGasPrice unavailable, falling back: {exc}")
            result = None

        if isinstance(result, dict):
            tier = result.get("standard") or result.get("fast") or {}
            if tier.get("maxFeePerGas") and tier.get("maxPriorityFeePerGas"):
                return GasPrice(
                    max_fee_per_gas=int(tier["maxFeePerGas"], 16),
                    max_priority_fee_per_gas=int(tier["maxPriorityFeePerGas"], 16),
                )

        priority = int(await self._rpc_call("eth_maxPriorityFeePerGas", []), 16)
        gas_price = int(await self._rpc_call("eth_gasPrice", []), 16)
        return GasPrice(
            max_fee_per_gas=max(gas_price, priority),
            max_priority_fee_per_gas=priority,
        )


_bundler_provider: Optional[BundlerProvider] = None


def get_bundler_provider() -> BundlerProvider:
    global _bundler_provider
    if _bundler_provider is None:
        _bundler_provider = BundlerProvider()
    return _bundler_provider
