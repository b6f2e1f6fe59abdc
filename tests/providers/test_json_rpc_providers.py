"""
Tests for the JSON-RPC ledger, bundler and paymaster providers.

Requests are served by ``httpx.MockTransport`` handlers keyed on the
JSON-RPC method.
"""

import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from sessionkeys.core.execution.userop import UserOperation
from sessionkeys.core.execution.userop_builder import HOOK_INSTALLED, validation_id
from sessionkeys.core.policy import Permission, to_call_policy
from sessionkeys.core.policy.abi import encode, function_selector
from sessionkeys.core.recovery.errors import (
    ConfigurationError,
    NetworkError,
    NetworkTimeout,
    ProviderError,
    SponsorshipUnavailable,
)
from sessionkeys.core.wallet import AddressOnlySigner, SessionValidator
from sessionkeys.providers.base import LedgerQuery
from sessionkeys.providers.bundler import BundlerConfig, BundlerProvider
from sessionkeys.providers.ledger import JsonRpcLedgerClient, LedgerConfig
from sessionkeys.providers.paymaster import PaymasterConfig, PaymasterProvider


RPC_URL = "https://rpc.example/api"
ACCOUNT = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"
ENTRY_POINT = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"
PAYMASTER = "0x777777777777AeC03fd955926DbF81597e66834C"
TOKEN = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
ZERO = "0x0000000000000000000000000000000000000000"


def rpc_transport(handlers: Dict[str, Any], seen: Optional[List[Dict[str, Any]]] = None) -> httpx.MockTransport:
    """Route JSON-RPC calls by method; values are results or callables returning a response body."""

    def handle(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if seen is not None:
            seen.append(body)
        if body["method"] not in handlers:
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "method not found"}},
            )
        handler = handlers[body["method"]]
        if callable(handler):
            return handler(request, body)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": handler})

    return httpx.MockTransport(handle)


def _user_op() -> UserOperation:
    return UserOperation(sender=ACCOUNT, nonce=0, call_data="0x", signature="0x")


@pytest.fixture
def session() -> SessionValidator:
    policy = to_call_policy([Permission.from_signature(TOKEN, "transfer(address,uint256)")])
    return SessionValidator(
        signer=AddressOnlySigner("0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"),
        policies=(policy,),
    )


# =============================================================================
# Ledger
# =============================================================================

class TestLedgerClient:
    @pytest.mark.asyncio
    async def test_read_decodes_single_value(self):
        seen = []
        result = "0x" + encode(["uint32"], [7]).hex()
        client = JsonRpcLedgerClient(LedgerConfig(rpc_url=RPC_URL), transport=rpc_transport({"eth_call": result}, seen))

        value = await client.read(ACCOUNT.lower(), LedgerQuery("currentNonce()", (), ("uint32",)))

        assert value == 7
        params = seen[0]["params"]
        assert params[0]["to"] == ACCOUNT
        assert params[0]["data"] == "0x" + function_selector("currentNonce()").hex()
        assert params[1] == "latest"
        await client.close()

    @pytest.mark.asyncio
    async def test_get_nonce(self):
        result = "0x" + encode(["uint256"], [(5 << 64) | 3]).hex()
        client = JsonRpcLedgerClient(LedgerConfig(rpc_url=RPC_URL), transport=rpc_transport({"eth_call": result}))

        assert await client.get_nonce(ENTRY_POINT, ACCOUNT, 5) == (5 << 64) | 3

    @pytest.mark.asyncio
    async def test_permission_installed(self, session):
        installed = "0x" + encode(["uint32", "address"], [1, HOOK_INSTALLED]).hex()
        client = JsonRpcLedgerClient(LedgerConfig(rpc_url=RPC_URL), transport=rpc_transport({"eth_call": installed}))

        assert await client.is_permission_installed(ACCOUNT, validation_id(session)) is True

    @pytest.mark.asyncio
    async def test_permission_not_installed(self, session):
        removed = "0x" + encode(["uint32", "address"], [1, ZERO]).hex()
        client = JsonRpcLedgerClient(LedgerConfig(rpc_url=RPC_URL), transport=rpc_transport({"eth_call": removed}))

        assert await client.is_permission_installed(ACCOUNT, validation_id(session)) is False

    @pytest.mark.asyncio
    async def test_undeployed_account(self, session):
        client = JsonRpcLedgerClient(LedgerConfig(rpc_url=RPC_URL), transport=rpc_transport({"eth_call": "0x"}))

        assert await client.is_permission_installed(ACCOUNT, validation_id(session)) is False

    @pytest.mark.asyncio
    async def test_undecodable_result(self):
        client = JsonRpcLedgerClient(LedgerConfig(rpc_url=RPC_URL), transport=rpc_transport({"eth_call": "0x1234"}))

        with pytest.raises(ProviderError):
            await client.read(ACCOUNT, LedgerQuery("currentNonce()", (), ("uint32",)))

    @pytest.mark.asyncio
    async def test_chain_id_and_health(self):
        client = JsonRpcLedgerClient(LedgerConfig(rpc_url=RPC_URL), transport=rpc_transport({"eth_chainId": "0xaa36a7"}))

        assert await client.get_chain_id() == 11155111
        assert await client.health_check() == {"status": "healthy", "chainId": 11155111}

    @pytest.mark.asyncio
    async def test_unconfigured_health(self):
        client = JsonRpcLedgerClient(LedgerConfig(rpc_url=""))

        assert (await client.health_check())["status"] == "disabled"


# =============================================================================
# Transport errors
# =============================================================================

class TestTransportErrors:
    @pytest.mark.asyncio
    async def test_timeout(self):
        def handle(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = JsonRpcLedgerClient(LedgerConfig(rpc_url=RPC_URL), transport=httpx.MockTransport(handle))

        with pytest.raises(NetworkTimeout):
            await client.get_chain_id()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handle(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = JsonRpcLedgerClient(LedgerConfig(rpc_url=RPC_URL), transport=httpx.MockTransport(handle))

        with pytest.raises(NetworkError):
            await client.get_chain_id()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,expected", [(429, NetworkError), (503, NetworkError), (401, ProviderError)])
    async def test_http_status(self, status, expected):
        transport = httpx.MockTransport(lambda request: httpx.Response(status, json={}))
        client = JsonRpcLedgerClient(LedgerConfig(rpc_url=RPC_URL), transport=transport)

        with pytest.raises(expected):
            await client.get_chain_id()

    @pytest.mark.asyncio
    async def test_rpc_error_object(self):
        def fail(request, body):
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": "execution reverted"}},
            )

        client = JsonRpcLedgerClient(LedgerConfig(rpc_url=RPC_URL), transport=rpc_transport({"eth_chainId": fail}))

        with pytest.raises(ProviderError) as exc_info:
            await client.get_chain_id()

        assert exc_info.value.error == {"code": -32000, "message": "execution reverted"}


# =============================================================================
# Bundler
# =============================================================================

class TestBundler:
    @pytest.mark.asyncio
    async def test_send_user_operation(self):
        seen = []
        bundler = BundlerProvider(
            BundlerConfig(rpc_url=RPC_URL),
            transport=rpc_transport({"eth_sendUserOperation": "0xhash"}, seen),
        )

        user_op_hash = await bundler.send_user_operation(_user_op(), ENTRY_POINT)

        assert user_op_hash == "0xhash"
        assert seen[0]["params"] == [_user_op().to_rpc_dict(), ENTRY_POINT]

    @pytest.mark.asyncio
    async def test_gas_price_from_bundler_tier(self):
        bundler = BundlerProvider(
            BundlerConfig(rpc_url=RPC_URL),
            transport=rpc_transport(
                {
                    "zd_getUserOperationGasPrice": {
                        "slow": {"maxFeePerGas": "0x1", "maxPriorityFeePerGas": "0x1"},
                        "standard": {"maxFeePerGas": "0x64", "maxPriorityFeePerGas": "0xa"},
                        "fast": {"maxFeePerGas": "0xc8", "maxPriorityFeePerGas": "0x14"},
                    }
                }
            ),
        )

        price = await bundler.get_user_operation_gas_price()

        assert price.max_fee_per_gas == 100
        assert price.max_priority_fee_per_gas == 10

    @pytest.mark.asyncio
    async def test_gas_price_falls_back_to_node(self):
        bundler = BundlerProvider(
            BundlerConfig(rpc_url=RPC_URL),
            transport=rpc_transport({"eth_maxPriorityFeePerGas": "0x5", "eth_gasPrice": "0x32"}),
        )

        price = await bundler.get_user_operation_gas_price()

        assert price.max_fee_per_gas == 50
        assert price.max_priority_fee_per_gas == 5

    @pytest.mark.asyncio
    async def test_receipt(self):
        bundler = BundlerProvider(
            BundlerConfig(rpc_url=RPC_URL),
            transport=rpc_transport(
                {
                    "eth_getUserOperationReceipt": {
                        "userOpHash": "0xhash",
                        "success": False,
                        "reason": "0x08c379a0",
                        "actualGasUsed": "0x100",
                        "receipt": {"transactionHash": "0xtx", "blockNumber": "0x2", "status": "0x1"},
                    }
                }
            ),
        )

        receipt = await bundler.get_user_operation_receipt("0xhash")

        assert receipt.success is False
        assert receipt.reason == "0x08c379a0"
        assert receipt.transaction_hash == "0xtx"
        assert receipt.gas_used == 256

    @pytest.mark.asyncio
    async def test_pending_receipt(self):
        bundler = BundlerProvider(
            BundlerConfig(rpc_url=RPC_URL),
            transport=rpc_transport({"eth_getUserOperationReceipt": None}),
        )

        assert await bundler.get_user_operation_receipt("0xhash") is None

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        bundler = BundlerProvider(BundlerConfig(rpc_url=""))

        with pytest.raises(ConfigurationError):
            await bundler.send_user_operation(_user_op(), ENTRY_POINT)


# =============================================================================
# Paymaster
# =============================================================================

class TestPaymaster:
    @pytest.mark.asyncio
    async def test_sponsor(self):
        paymaster = PaymasterProvider(
            PaymasterConfig(rpc_url=RPC_URL),
            transport=rpc_transport(
                {
                    "pm_sponsorUserOperation": {
                        "paymaster": PAYMASTER,
                        "paymasterData": "0xbeef",
                        "callGasLimit": "0x1",
                        "verificationGasLimit": "0x2",
                        "preVerificationGas": "0x3",
                        "paymasterVerificationGasLimit": "0x4",
                        "paymasterPostOpGasLimit": "0x5",
                    }
                }
            ),
        )

        sponsorship = await paymaster.sponsor(_user_op(), ENTRY_POINT)

        assert sponsorship.paymaster == PAYMASTER
        assert sponsorship.paymaster_data == "0xbeef"
        assert sponsorship.gas.paymaster_post_op_gas_limit == 5

    @pytest.mark.asyncio
    async def test_refusal_is_sponsorship_unavailable(self):
        def refuse(request, body):
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32500, "message": "policy rejected"}},
            )

        paymaster = PaymasterProvider(
            PaymasterConfig(rpc_url=RPC_URL),
            transport=rpc_transport({"pm_sponsorUserOperation": refuse}),
        )

        with pytest.raises(SponsorshipUnavailable):
            await paymaster.sponsor(_user_op(), ENTRY_POINT)

    @pytest.mark.asyncio
    async def test_rate_limit_is_sponsorship_unavailable(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(429, json={}))
        paymaster = PaymasterProvider(PaymasterConfig(rpc_url=RPC_URL), transport=transport)

        with pytest.raises(SponsorshipUnavailable):
            await paymaster.sponsor(_user_op(), ENTRY_POINT)

    @pytest.mark.asyncio
    async def test_invalid_response(self):
        paymaster = PaymasterProvider(
            PaymasterConfig(rpc_url=RPC_URL),
            transport=rpc_transport({"pm_sponsorUserOperation": {"paymasterData": "0x"}}),
        )

        with pytest.raises(SponsorshipUnavailable):
            await paymaster.sponsor(_user_op(), ENTRY_POINT)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("gas_field", ["0xnothex", 1.5])
    async def test_unparseable_gas_is_sponsorship_unavailable(self, gas_field):
        paymaster = PaymasterProvider(
            PaymasterConfig(rpc_url=RPC_URL),
            transport=rpc_transport(
                {"pm_sponsorUserOperation": {"paymaster": PAYMASTER, "callGasLimit": gas_field}}
            ),
        )

        with pytest.raises(SponsorshipUnavailable):
            await paymaster.sponsor(_user_op(), ENTRY_POINT)

    @pytest.mark.asyncio
    async def test_custom_rpc_method(self):
        seen = []
        paymaster = PaymasterProvider(
            PaymasterConfig(rpc_url=RPC_URL, rpc_method="pm_getPaymasterData"),
            transport=rpc_transport({"pm_getPaymasterData": {"paymaster": PAYMASTER}}, seen),
        )

        await paymaster.sponsor(_user_op(), ENTRY_POINT)

        assert seen[0]["method"] == "pm_getPaymasterData"
