"""
Ledger Client Provider.

Read-only chain access over JSON-RPC ``eth_call``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from eth_utils import to_checksum_address

from .base import JsonRpcMixin, LedgerClient, LedgerQuery
from ..config import settings
from ..core.execution.userop_builder import GET_NONCE_SIGNATURE, VALIDATION_CONFIG_SIGNATURE
from ..core.policy.abi import AbiDecodingError, decode, encode_function_call, hex_to_bytes
from ..core.policy.models import ZERO_ADDRESS
from ..core.recovery.errors import ProviderError


@dataclass
class LedgerConfig:
    rpc_url: str


class JsonRpcLedgerClient(JsonRpcMixin, LedgerClient):
    name = "ledger"
    timeout_s = 20

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or LedgerConfig(rpc_url=settings.ledger_rpc_url)
        self.rpc_url = self._config.rpc_url
        self.timeout_s = settings.request_timeout_seconds
        self._client = None
        self._transport = transport

    async def ready(self) -> bool:
        return bool(self._config.rpc_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": "Ledger RPC not configured"}

        try:
            chain_id = await self.get_chain_id()
            return {"status": "healthy", "chainId": chain_id}
        except Exception as exc:
            return {"status": "error", "reason": str(exc)}

    async def read(self, address: str, query: LedgerQuery) -> Any:
        call_data = encode_function_call(query.signature, list(query.args))
        result = await self._rpc_call(
            "eth_call",
            [{"to": to_checksum_address(address), "data": call_data}, "latest"],
        )
        if not isinstance(result, str):
            raise ProviderError("Invalid ledger response for eth_call", provider=self.name, error=result)

        try:
            values = decode(list(query.output_types), hex_to_bytes(result))
        except AbiDecodingError as exc:
            raise ProviderError(
                f"Cannot decode {query.signature} result: {exc}",
                provider=self.name,
                error=result,
            ) from exc
        return values[0] if len(values) == 1 else values

    async def get_chain_id(self) -> int:
        result = await self._rpc_call("eth_chainId", [])
        return int(result, 16)

    async def get_nonce(self, entry_point: str, sender: str, key: int) -> int:
        return await self.read(
            entry_point,
            LedgerQuery(GET_NONCE_SIGNATURE, (sender, key), ("uint256",)),
        )

    async def is_permission_installed(self, account_address: str, validation_id: bytes) -> bool:
        try:
            _, hook = await self.read(
                account_address,
                LedgerQuery(VALIDATION_CONFIG_SIGNATURE, (validation_id,), ("uint32", "address")),
            )
        except ProviderError as exc:
            # Undeployed accounts have no code and return empty data
            if exc.error == "0x":
                return False
            raise
        return hook.lower() != ZERO_ADDRESS


_ledger_client: Optional[JsonRpcLedgerClient] = None


def get_ledger_client() -> JsonRpcLedgerClient:
    global _ledger_client
    if _ledger_client is None:
        _ledger_client = JsonRpcLedgerClient()
    return _ledger_client
