from pathlib import Path
from typing import Any, List, Optional

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.recovery.errors import ConfigurationError


BASE_DIR = Path(__file__).resolve().parents[1]

# ERC-4337 v0.7 EntryPoint, same address on every chain
ENTRY_POINT_V07_ADDRESS = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Default the ledger endpoint to the bundler endpoint."""

        super().model_post_init(__context)

        if not self.ledger_rpc_url and self.zerodev_rpc:
            object.__setattr__(self, "ledger_rpc_url", self.zerodev_rpc)

    log_level: str = Field(default="INFO", description="Logging level")

    # Required runtime inputs
    zerodev_rpc: str = Field(
        default="",
        description="Bundler + paymaster JSON-RPC endpoint",
        validation_alias=AliasChoices("zerodev_rpc", "ZERODEV_RPC", "bundler_rpc_url"),
    )
    private_key: SecretStr = Field(
        default=SecretStr(""),
        description="Owner private key (hex)",
        validation_alias=AliasChoices("private_key", "PRIVATE_KEY", "owner_private_key"),
    )
    target_contract_address: str = Field(
        default="",
        description="Contract the session key is allowed to call",
    )

    ledger_rpc_url: str = Field(
        default="",
        description="Read-only chain RPC endpoint (defaults to the bundler endpoint)",
    )
    chain_id: int = Field(default=11155111, description="Chain ID (default: Sepolia)")

    # Account / EntryPoint
    entry_point_address: str = Field(
        default=ENTRY_POINT_V07_ADDRESS,
        description="ERC-4337 EntryPoint address",
    )
    entry_point_version: str = Field(default="0.7", description="EntryPoint version")
    kernel_version: str = Field(default="0.3.1", description="Kernel account implementation version")

    # On-chain module deployments used when installing a session validator
    ecdsa_validator_address: str = Field(
        default="0x845ADb2C711129d4f3966735eD98a9F09fC4cE57",
        description="ECDSA validator module used as the sudo validator",
    )
    ecdsa_signer_address: str = Field(
        default="0x6A6F069E2a08c2468e7724Ab3250CdBFBA14D4FF",
        description="ECDSA signer module for permission validators",
    )
    call_policy_address: str = Field(
        default="0x9a52283276A0ec8740DF50bF01B28A80D880eaf2",
        description="Call policy module",
    )
    sudo_policy_address: str = Field(
        default="0x67b436caD8a6D025DF6C82C5BB43fbF11fC5B9B7",
        description="Sudo policy module",
    )
    timestamp_policy_address: str = Field(
        default="0xB9f8f524bE6EcD8C945b1b87f9ae5C192FdCE20F",
        description="Timestamp policy module",
    )

    # Execution
    request_timeout_seconds: int = Field(default=20, ge=1, description="Per-request RPC timeout")
    receipt_timeout_seconds: float = Field(default=120.0, gt=0, description="Default wait for a userOp receipt")
    receipt_poll_interval_seconds: float = Field(default=2.0, gt=0, description="Receipt polling interval")
    sponsorship_max_attempts: int = Field(default=3, ge=1, description="Paymaster sponsorship attempts")
    sponsorship_retry_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Initial backoff between sponsorship attempts",
    )

    @property
    def has_private_key(self) -> bool:
        return bool(self.private_key.get_secret_value())

    @property
    def supported_entry_point_versions(self) -> List[str]:
        return ["0.7"]

    @property
    def supported_kernel_versions(self) -> List[str]:
        return ["0.3.0", "0.3.1", "0.3.2", "0.3.3"]

    def missing_runtime_inputs(self) -> List[str]:
        missing = []
        if not self.zerodev_rpc:
            missing.append("ZERODEV_RPC")
        if not self.has_private_key:
            missing.append("PRIVATE_KEY")
        if not self.target_contract_address:
            missing.append("TARGET_CONTRACT_ADDRESS")
        return missing

    def require_runtime_inputs(self) -> None:
        """Fail fast before any network call when a required input is absent."""
        missing = self.missing_runtime_inputs()
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                details={"missing": missing},
            )

    def owner_key(self) -> Optional[str]:
        value = self.private_key.get_secret_value()
        return value or None


# Global settings instance
settings = Settings()
