"""
Approval Codec

Serializes a configured session account into a portable artifact and
reconstructs it on the agent side with the agent's own signer.

Artifact format: ``skap<formatVersion>:<base64url(JSON)>``.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, Iterable, Optional

from eth_utils import keccak, to_checksum_address
from pydantic import ValidationError

from ...config import settings
from ..policy.abi_registry import FunctionAbiRegistry
from ..policy.models import policy_from_dict
from ..recovery.errors import (
    ArtifactCorrupted,
    ConfigurationError,
    SignerMismatch,
    ValidatorNotInstalled,
    VersionMismatch,
)
from ..wallet.models import Account, MasterValidator, SessionValidator
from ..wallet.signers import AddressOnlySigner, Signer
from .models import (
    ARTIFACT_FORMAT_VERSION,
    ARTIFACT_PREFIX,
    ApprovalArtifact,
    ArtifactSessionValidator,
)


logger = logging.getLogger(__name__)

_ARTIFACT_RE = re.compile(rf"^{ARTIFACT_PREFIX}(\d+):([A-Za-z0-9_\-=]+)$")


def _canonical_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def _digest(body: Dict[str, Any]) -> str:
    return "0x" + keccak(text=_canonical_json(body)).hex()


class ApprovalCodec:
    """
    Approval artifact encoder/decoder.

    Supported versions default to the running configuration; artifacts
    outside them are rejected with VersionMismatch rather than misparsed.
    """

    def __init__(
        self,
        supported_format_versions: Optional[Iterable[int]] = None,
        supported_entry_point_versions: Optional[Iterable[str]] = None,
        supported_kernel_versions: Optional[Iterable[str]] = None,
        registry: Optional[FunctionAbiRegistry] = None,
    ):
        self.supported_format_versions = set(supported_format_versions or [ARTIFACT_FORMAT_VERSION])
        self.supported_entry_point_versions = set(
            supported_entry_point_versions or settings.supported_entry_point_versions
        )
        self.supported_kernel_versions = set(
            supported_kernel_versions or settings.supported_kernel_versions
        )
        self.registry = registry

    def serialize(self, account: Account, session_validator: SessionValidator) -> str:
        """Encode ``session_validator`` on ``account`` as an approval artifact."""
        installed = account.regular_validator
        if installed is None or installed.ref != session_validator.ref:
            raise ValidatorNotInstalled(
                "Session validator must be installed before it can be approved",
                account_address=account.address,
                validator_ref=session_validator.ref,
            )

        self._check_versions(
            ARTIFACT_FORMAT_VERSION,
            account.entry_point_version,
            account.kernel_version,
        )

        config = session_validator.config_dict()
        artifact = ApprovalArtifact(
            format_version=ARTIFACT_FORMAT_VERSION,
            entry_point_version=account.entry_point_version,
            kernel_version=account.kernel_version,
            chain_id=account.chain_id,
            account_address=to_checksum_address(account.address),
            sudo_validator=to_checksum_address(account.sudo_validator.signer.address),
            session_validator=ArtifactSessionValidator(
                permission_id=session_validator.permission_id,
                signer_address=config["signerAddress"],
                valid_after=config["validAfter"],
                valid_until=config["validUntil"],
                allow_sudo=session_validator.allow_sudo,
                policies=config["policies"],
            ),
        )
        artifact.digest = _digest(artifact.body())

        payload = _canonical_json(artifact.model_dump(by_alias=True))
        encoded = base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")

        logger.info(
            f"Serialized approval for session {session_validator.permission_id} "
            f"on {account.address}"
        )
        return f"{ARTIFACT_PREFIX}{ARTIFACT_FORMAT_VERSION}:{encoded}"

    def decode(self, artifact: str) -> ApprovalArtifact:
        """Parse and verify an artifact without binding a signer."""
        match = _ARTIFACT_RE.match(artifact.strip()) if isinstance(artifact, str) else None
        if not match:
            raise ArtifactCorrupted("Not an approval artifact")

        prefix_version = int(match.group(1))
        if prefix_version not in self.supported_format_versions:
            raise VersionMismatch(
                "formatVersion",
                prefix_version,
                sorted(self.supported_format_versions),
            )

        try:
            raw = json.loads(base64.urlsafe_b64decode(match.group(2).encode("ascii")))
        except (binascii.Error, ValueError) as exc:
            raise ArtifactCorrupted(f"Artifact payload cannot be decoded: {exc}") from exc
        if not isinstance(raw, dict):
            raise ArtifactCorrupted("Artifact payload must be an object")

        # Versions are checked before schema validation so newer layouts are
        # reported as unsupported rather than malformed.
        self._check_versions(
            raw.get("formatVersion"),
            raw.get("entryPointVersion"),
            raw.get("kernelVersion"),
        )
        if raw.get("formatVersion") != prefix_version:
            raise ArtifactCorrupted("Artifact prefix and body disagree on format version")

        try:
            parsed = ApprovalArtifact.model_validate(raw)
        except ValidationError as exc:
            raise ArtifactCorrupted(f"Artifact schema invalid: {exc}") from exc

        if parsed.digest.lower() != _digest(parsed.body()).lower():
            raise ArtifactCorrupted("Artifact digest mismatch")

        return parsed

    def deserialize(self, artifact: str, runtime_signer: Signer) -> Account:
        """
        Reconstruct the session account with the agent's signer.

        Raises:
            VersionMismatch: unsupported format, entry point or kernel version
            ArtifactCorrupted: undecodable payload or digest mismatch
            SignerMismatch: signer is not the session identity in the artifact
        """
        parsed = self.decode(artifact)
        session = parsed.session_validator

        if runtime_signer.address.lower() != session.signer_address.lower():
            raise SignerMismatch(expected=session.signer_address, actual=runtime_signer.address)

        try:
            policies = tuple(policy_from_dict(p, self.registry) for p in session.policies)
            validator = SessionValidator(
                signer=runtime_signer,
                policies=policies,
                valid_after=session.valid_after,
                valid_until=session.valid_until,
                allow_sudo=session.allow_sudo,
            )
            owner = AddressOnlySigner(parsed.sudo_validator)
            account_address = to_checksum_address(parsed.account_address)
        except (ConfigurationError, AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ArtifactCorrupted(f"Artifact configuration invalid: {exc}") from exc

        if validator.permission_id.lower() != session.permission_id.lower():
            raise ArtifactCorrupted("Permission ID does not match the embedded configuration")

        logger.info(f"Reconstructed session {validator.permission_id} for {account_address}")

        return Account(
            address=account_address,
            sudo_validator=MasterValidator(signer=owner),
            regular_validator=validator,
            entry_point_version=parsed.entry_point_version,
            kernel_version=parsed.kernel_version,
            chain_id=parsed.chain_id,
        )

    def _check_versions(self, format_version: Any, entry_point: Any, kernel: Any) -> None:
        if format_version not in self.supported_format_versions:
            raise VersionMismatch("formatVersion", format_version, sorted(self.supported_format_versions))
        if entry_point not in self.supported_entry_point_versions:
            raise VersionMismatch(
                "entryPointVersion",
                entry_point,
                sorted(self.supported_entry_point_versions),
            )
        if kernel not in self.supported_kernel_versions:
            raise VersionMismatch("kernelVersion", kernel, sorted(self.supported_kernel_versions))


_default_codec: Optional[ApprovalCodec] = None


def get_approval_codec() -> ApprovalCodec:
    global _default_codec
    if _default_codec is None:
        _default_codec = ApprovalCodec()
    return _default_codec


def serialize(account: Account, session_validator: SessionValidator) -> str:
    return get_approval_codec().serialize(account, session_validator)


def deserialize(artifact: str, runtime_signer: Signer) -> Account:
    return get_approval_codec().deserialize(artifact, runtime_signer)
