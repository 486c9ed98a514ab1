"""
Configuration management for the coffee batch minter.

Supports configuration via environment variables and .env files.
Secrets (wallet seed, provider key) are call-scoped and are not part of this model.
"""

from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NetworkType(str, Enum):
    """Cardano network types."""
    MAINNET = "mainnet"
    PREPROD = "preprod"
    PREVIEW = "preview"


class PlutusVersion(str, Enum):
    """Plutus language version of the minting script template."""
    V2 = "v2"
    V3 = "v3"


class MinterConfig(BaseSettings):
    """
    Configuration settings for the minter.

    All settings can be configured via environment variables with the MINTER_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="MINTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Network settings
    network: NetworkType = Field(
        default=NetworkType.PREPROD,
        description="Cardano network to connect to"
    )

    # Blockfrost settings
    blockfrost_base_url: Optional[str] = Field(
        default=None,
        description="Custom Blockfrost base URL (optional)"
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for every call to the ledger provider"
    )
    confirmation_poll_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Polling interval while waiting for confirmation"
    )

    # Minting script template
    mint_script_cbor: Optional[str] = Field(
        default=None,
        description="CBOR hex of the parameterized minting script"
    )
    mint_script_path: Optional[str] = Field(
        default=None,
        description="Path to an Aiken blueprint (plutus.json) holding the minting script"
    )
    mint_validator_title: Optional[str] = Field(
        default=None,
        description="Validator title inside the blueprint (first minting validator if unset)"
    )
    plutus_version: PlutusVersion = Field(
        default=PlutusVersion.V3,
        description="Plutus version of the minting script"
    )

    # UTXO selection
    min_pure_lovelace: int = Field(
        default=5_000_000,
        ge=0,
        description="Minimum lovelace for a pure-ADA input to be preferred"
    )

    # Transaction construction
    fee_margin_percent: int = Field(
        default=10,
        ge=0,
        description="Safety margin added to the estimated fee"
    )
    mint_ex_units_mem: int = Field(
        default=1_000_000,
        ge=0,
        description="Execution memory budget for the minting redeemer"
    )
    mint_ex_units_steps: int = Field(
        default=400_000_000,
        ge=0,
        description="Execution step budget for the minting redeemer"
    )

    # Metadata
    mint_metadata_label: int = Field(
        default=721,
        ge=0,
        description="Metadata label for the minting provenance record (CIP-25)"
    )
    status_metadata_label: int = Field(
        default=674,
        ge=0,
        description="Metadata label for status update records"
    )
    max_metadata_bytes: int = Field(
        default=16_000,
        ge=1,
        description="Ceiling for the serialized metadata of one transaction"
    )

    # Submission settings
    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Maximum submission attempts for transient failures"
    )
    retry_delay_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Delay between submission attempts"
    )
    indexer_lag_wait_ms: int = Field(
        default=20_000,
        ge=0,
        description="Suggested wait before re-requesting after an input conflict"
    )
    await_confirmation: bool = Field(
        default=False,
        description="Wait for on-chain confirmation before reporting success"
    )
    confirmation_timeout_seconds: int = Field(
        default=180,
        ge=1,
        description="Maximum time to wait for confirmation"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format"
    )

    @property
    def blockfrost_url(self) -> str:
        """Get the appropriate Blockfrost URL based on network."""
        if self.blockfrost_base_url:
            return self.blockfrost_base_url

        network_urls = {
            NetworkType.MAINNET: "https://cardano-mainnet.blockfrost.io/api/v0",
            NetworkType.PREPROD: "https://cardano-preprod.blockfrost.io/api/v0",
            NetworkType.PREVIEW: "https://cardano-preview.blockfrost.io/api/v0",
        }
        return network_urls.get(self.network, "https://cardano-preprod.blockfrost.io/api/v0")

    @property
    def is_mainnet(self) -> bool:
        return self.network == NetworkType.MAINNET


# Global config instance
_config: Optional[MinterConfig] = None


def get_config() -> MinterConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = MinterConfig()
    return _config


def set_config(config: MinterConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
