import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..core.execution.userop import GasPrice, SponsorshipData, UserOperation, UserOpReceipt
from ..core.recovery.errors import NetworkError, NetworkTimeout, ProviderError


logger = logging.getLogger(__name__)


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: int = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass

    async def close(self) -> None:
        """Release network resources"""
        pass


@dataclass(frozen=True)
class LedgerQuery:
    """A read-only contract call: function signature, arguments and output types."""
    signature: str
    args: Sequence[Any] = ()
    output_types: Sequence[str] = field(default_factory=list)


class LedgerClient(Provider):
    """Read-only view of chain state"""

    @abstractmethod
    async def read(self, address: str, query: LedgerQuery) -> Any:
        """Execute ``query`` against the contract at ``address``"""
        pass

    @abstractmethod
    async def get_chain_id(self) -> int:
        pass

    @abstractmethod
    async def get_nonce(self, entry_point: str, sender: str, key: int) -> int:
        """EntryPoint nonce for ``sender`` under ``key``"""
        pass

    @abstractmethod
    async def is_permission_installed(self, account_address: str, validation_id: bytes) -> bool:
        """True while the validation is configured on the account"""
        pass


class SponsorshipService(Provider):
    """Paymaster that pays for operations"""

    @abstractmethod
    async def sponsor(self, user_op: UserOperation, entry_point: str) -> SponsorshipData:
        pass


class Broadcaster(Provider):
    """Bundler that submits operations and reports receipts"""

    @abstractmethod
    async def send_user_operation(self, user_op: UserOperation, entry_point: str) -> str:
        pass

    @abstractmethod
    async def get_user_operation_receipt(self, user_op_hash: str) -> Optional[UserOpReceipt]:
        pass

    @abstractmethod
    async def get_user_operation_gas_price(self) -> GasPrice:
        pass


class JsonRpcMixin:
    """
    Shared JSON-RPC transport over a lazily created ``httpx.AsyncClient``.

    Transport failures are raised as recoverable NetworkTimeout/NetworkError;
    JSON-RPC error objects as ProviderError.
    """

    name: str
    timeout_s: int
    rpc_url: str
    _client: Optional[httpx.AsyncClient] = None
    _transport: Optional[httpx.AsyncBaseTransport] = None

    def _get_client(self) -> httpx.AsyncClient:
        if not self._client or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)
        return self._client

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        client = self._get_client()
        try:
            response = await client.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise NetworkTimeout(f"{self.name} {method} timed out", operation=method) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 429 or status >= 500:
                raise NetworkError(f"{self.name} {method} returned HTTP {status}", provider=self.name) from exc
            raise ProviderError(f"{self.name} {method} returned HTTP {status}", provider=self.name) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{self.name} {method} failed: {exc}", provider=self.name) from exc

        payload = response.json()
        if "error" in payload:
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.debug(f"{self.name} {method} error: {error}")
            raise ProviderError(f"{self.name} {method}: {message}", provider=self.name, error=error)
        return payload.get("result")

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
