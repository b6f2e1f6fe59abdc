"""
Credential models.

Validators are the authorities installed on a Kernel account: exactly one
sudo ``MasterValidator`` (the owner's ECDSA key, unconditional authority)
and at most one regular ``SessionValidator`` (a session key scoped by
policies). Accounts are immutable; installs and uninstalls produce a new
Account.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from eth_utils import keccak, to_checksum_address

from ..policy.engine import PolicyEngine
from ..policy.models import Call, Policy, PolicyDecision, SudoPolicy, policies_to_dict
from ..recovery.errors import ConfigurationError, ValidatorNotInstalled
from .signers import Signer


class ValidatorRole(str, Enum):
    """Role a validator plays on an account."""
    SUDO = "sudo"          # Full authority
    REGULAR = "regular"    # Scoped by policies


class ValidationType(int, Enum):
    """Kernel v3 validation types (first byte of a ValidationId)."""
    ROOT = 0x00
    VALIDATOR = 0x01
    PERMISSION = 0x02


# Permission validator signatures carry this marker before the signer's signature
PERMISSION_SIGNATURE_PREFIX = "0xff"


@dataclass(frozen=True, eq=False)
class MasterValidator:
    """Owner signing capability with unconditional approval authority."""
    signer: Signer
    module_address: str = ""

    role: ValidatorRole = field(default=ValidatorRole.SUDO, init=False)

    @property
    def ref(self) -> str:
        return f"sudo:{self.signer.address.lower()}"

    @property
    def policies(self) -> Tuple[Policy, ...]:
        return (SudoPolicy(),)

    @property
    def validation_type(self) -> ValidationType:
        return ValidationType.ROOT

    def evaluate(self, call: Call, now: Optional[float] = None) -> PolicyDecision:
        return PolicyDecision.allow()

    async def sign_user_op_hash(self, user_op_hash: bytes) -> str:
        return await self.signer.sign_hash(user_op_hash)

    def __repr__(self) -> str:
        return f"MasterValidator(signer={self.signer.address})"


@dataclass(frozen=True, eq=False)
class SessionValidator:
    """
    Session signing capability scoped by an ordered set of policies.

    Approves a call iff at least one attached policy allows it and the call
    falls inside the optional ``valid_after`` / ``valid_until`` window.
    """
    signer: Signer
    policies: Tuple[Policy, ...]
    valid_after: Optional[int] = None
    valid_until: Optional[int] = None
    allow_sudo: bool = False

    role: ValidatorRole = field(default=ValidatorRole.REGULAR, init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "policies", tuple(self.policies))
        for policy in self.policies:
            if not isinstance(policy, Policy):
                raise ConfigurationError(f"Expected Policy, got {type(policy).__name__}")
            if isinstance(policy, SudoPolicy) and not self.allow_sudo:
                raise ConfigurationError(
                    "Sudo policy on a session validator requires allow_sudo=True"
                )
        if self.valid_after and self.valid_until and self.valid_until <= self.valid_after:
            raise ConfigurationError("valid_until must be after valid_after")

    def config_dict(self) -> Dict[str, Any]:
        """Canonical, secret-free configuration (signer identity + policies)."""
        return {
            "signerAddress": to_checksum_address(self.signer.address),
            "policies": policies_to_dict(self.policies),
            "validAfter": self.valid_after,
            "validUntil": self.valid_until,
        }

    @property
    def permission_id(self) -> str:
        """4-byte identifier derived from the signer and policy configuration."""
        config = self.config_dict()
        # Argument names are descriptive; they do not change what is enforced
        for policy in config["policies"]:
            for permission in policy.get("permissions", []):
                permission.pop("inputNames", None)
        body = json.dumps(config, sort_keys=True, separators=(",", ":"))
        return "0x" + keccak(text=body)[:4].hex()

    @property
    def ref(self) -> str:
        return self.permission_id

    @property
    def validation_type(self) -> ValidationType:
        return ValidationType.PERMISSION

    @property
    def engine(self) -> PolicyEngine:
        return PolicyEngine(
            self.policies,
            valid_after=self.valid_after,
            valid_until=self.valid_until,
        )

    def evaluate(self, call: Call, now: Optional[float] = None) -> PolicyDecision:
        return self.engine.evaluate(call, now=now)

    def is_expired(self, now: float) -> bool:
        return bool(self.valid_until) and now > self.valid_until

    async def sign_user_op_hash(self, user_op_hash: bytes) -> str:
        signature = await self.signer.sign_hash(user_op_hash)
        return PERMISSION_SIGNATURE_PREFIX + signature[2:]

    def with_signer(self, signer: Signer) -> "SessionValidator":
        return SessionValidator(
            signer=signer,
            policies=self.policies,
            valid_after=self.valid_after,
            valid_until=self.valid_until,
            allow_sudo=self.allow_sudo,
        )

    def __repr__(self) -> str:
        return f"SessionValidator(id={self.permission_id}, signer={self.signer.address})"


Validator = Union[MasterValidator, SessionValidator]


@dataclass(frozen=True)
class Account:
    """
    Kernel smart account identity with its installed validators.

    Reflects confirmed on-chain state only.
    """
    address: str
    sudo_validator: MasterValidator
    regular_validator: Optional[SessionValidator] = None
    entry_point_version: str = "0.7"
    kernel_version: str = "0.3.1"
    chain_id: int = 11155111

    @property
    def validators(self) -> Tuple[Validator, ...]:
        if self.regular_validator is None:
            return (self.sudo_validator,)
        return (self.sudo_validator, self.regular_validator)

    def validator_for(self, role: ValidatorRole) -> Validator:
        if role == ValidatorRole.SUDO:
            return self.sudo_validator
        if self.regular_validator is None:
            raise ValidatorNotInstalled(
                "No regular validator installed",
                account_address=self.address,
            )
        return self.regular_validator

    def has_validator(self, validator_ref: str) -> bool:
        return any(v.ref.lower() == validator_ref.lower() for v in self.validators)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "entryPointVersion": self.entry_point_version,
            "kernelVersion": self.kernel_version,
            "chainId": self.chain_id,
            "sudoValidator": self.sudo_validator.signer.address,
            "regularValidator": self.regular_validator.ref if self.regular_validator else None,
        }
