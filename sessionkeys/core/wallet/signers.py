"""
Signing capabilities.

A signer exposes a public identity (``address``) and, optionally, the
ability to sign a 32-byte hash. Signature algorithms are pluggable; the
bundled implementations use eth-account.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from eth_account import Account as EthAccount
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_utils import is_address, to_checksum_address

from ..recovery.errors import ConfigurationError, SignerUnavailable


@runtime_checkable
class Signer(Protocol):
    """Public identity plus an async hash-signing capability."""

    @property
    def address(self) -> str:
        ...

    async def sign_hash(self, message_hash: bytes) -> str:
        ...


class LocalAccountSigner:
    """
    Signer backed by an in-process secp256k1 key.

    Signs the EIP-191 personal message of the hash, which is what the
    Kernel ECDSA validator and ECDSA signer modules verify.
    """

    def __init__(self, account: LocalAccount):
        self._account = account

    @classmethod
    def from_key(cls, private_key: str) -> "LocalAccountSigner":
        try:
            return cls(EthAccount.from_key(private_key))
        except (ValueError, TypeError) as exc:
            raise ConfigurationError("Invalid private key") from exc

    @classmethod
    def generate(cls) -> "LocalAccountSigner":
        """Generate a fresh session key."""
        return cls(EthAccount.create())

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_hash(self, message_hash: bytes) -> str:
        signed = self._account.sign_message(encode_defunct(primitive=message_hash))
        return "0x" + bytes(signed.signature).hex()

    def __repr__(self) -> str:
        return f"LocalAccountSigner({self.address})"


class AddressOnlySigner:
    """
    Public identity without signing capability.

    The owner side uses this when it only knows the session key address
    (approval and revocation never need the session key to sign).
    """

    def __init__(self, address: str):
        if not is_address(address):
            raise ConfigurationError(f"Invalid signer address: {address!r}")
        self._address = to_checksum_address(address)

    @property
    def address(self) -> str:
        return self._address

    async def sign_hash(self, message_hash: bytes) -> str:
        raise SignerUnavailable(self._address)

    def __repr__(self) -> str:
        return f"AddressOnlySigner({self.address})"


def same_identity(a: Signer, b: Signer) -> bool:
    return a.address.lower() == b.address.lower()


def owner_signer_from_settings(private_key: Optional[str]) -> LocalAccountSigner:
    if not private_key:
        raise ConfigurationError("PRIVATE_KEY is not set", details={"missing": ["PRIVATE_KEY"]})
    return LocalAccountSigner.from_key(private_key)
