"""
Approval artifact schema.

The artifact is the only thing that crosses from the owner to the agent. It
describes what is permitted (account, versions, session identity and
policies) and never carries key material.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


ARTIFACT_PREFIX = "skap"
ARTIFACT_FORMAT_VERSION = 1


class ArtifactSessionValidator(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    permission_id: str = Field(alias="permissionId", pattern=r"^0x[0-9a-fA-F]{8}$")
    signer_address: str = Field(alias="signerAddress")
    valid_after: Optional[int] = Field(default=None, alias="validAfter")
    valid_until: Optional[int] = Field(default=None, alias="validUntil")
    allow_sudo: bool = Field(default=False, alias="allowSudo")
    policies: List[Dict[str, Any]] = Field(default_factory=list)


class ApprovalArtifact(BaseModel):
    """Versioned, self-describing approval payload."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    format_version: int = Field(alias="formatVersion")
    entry_point_version: str = Field(alias="entryPointVersion")
    kernel_version: str = Field(alias="kernelVersion")
    chain_id: int = Field(alias="chainId")
    account_address: str = Field(alias="accountAddress")
    sudo_validator: str = Field(alias="sudoValidator", description="Owner address")
    session_validator: ArtifactSessionValidator = Field(alias="sessionValidator")
    digest: str = Field(default="", description="keccak256 over the canonical body")

    def body(self) -> Dict[str, Any]:
        """Canonical body covered by the digest."""
        return self.model_dump(by_alias=True, exclude={"digest"})
