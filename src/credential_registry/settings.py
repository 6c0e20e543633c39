"""Environment-backed settings primitives for :mod:`credential_registry`."""

from __future__ import annotations

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["RegistrySettings", "get_settings"]

SEPOLIA_CHAIN_ID = 11155111
DEFAULT_REGISTRY_ADDRESS = "0x0C6Fe5983595528E2B27294bc6b9a5C7736989EB"


class RegistrySettings(BaseSettings):
    """Expose environment-derived configuration knobs for the registry client.

    All environment access goes through this class. Every attribute maps to a
    ``CREDREG_*`` variable and falls back to the public Sepolia deployment.

    Attributes:
        rpc_url: JSON-RPC endpoint used for reads and raw transaction submission.
        registry_address: Address of the single registry instance targeted.
        protocol_version: Registry generation (``1`` or ``2``).
        chain_id: Chain the registry is deployed on.
        rpc_timeout: Per-request timeout in seconds.
        confirmations: Blocks required before a receipt counts as confirmed.
        poll_interval: Delay between receipt polls in seconds.
        confirmation_timeout: Default caller deadline when awaiting receipts.
        event_lookback_blocks: Block range scanned for audit events.
        audit_window: Maximum number of audit events returned.
        clock_skew_seconds: Accepted distance between issue date and now.
        max_document_bytes: Upper bound on fingerprinted document size.
        config_path: Explicit path to a YAML/JSON configuration file.
        private_key: Issuer key used by the command-line interface.
    """

    rpc_url: str = Field(
        default="https://gateway.tenderly.co/public/sepolia", alias="CREDREG_RPC_URL"
    )
    registry_address: str = Field(
        default=DEFAULT_REGISTRY_ADDRESS, alias="CREDREG_REGISTRY_ADDRESS"
    )
    protocol_version: str = Field(default="1", alias="CREDREG_PROTOCOL_VERSION")
    chain_id: int = Field(default=SEPOLIA_CHAIN_ID, alias="CREDREG_CHAIN_ID")
    rpc_timeout: float = Field(default=10.0, alias="CREDREG_RPC_TIMEOUT")
    confirmations: int = Field(default=1, alias="CREDREG_CONFIRMATIONS")
    poll_interval: float = Field(default=2.0, alias="CREDREG_POLL_INTERVAL")
    confirmation_timeout: float | None = Field(
        default=120.0, alias="CREDREG_CONFIRMATION_TIMEOUT"
    )
    event_lookback_blocks: int = Field(
        default=5000, alias="CREDREG_EVENT_LOOKBACK_BLOCKS"
    )
    audit_window: int = Field(default=20, alias="CREDREG_AUDIT_WINDOW")
    clock_skew_seconds: int = Field(default=300, alias="CREDREG_CLOCK_SKEW_SECONDS")
    max_document_bytes: int = Field(
        default=25 * 1024 * 1024, alias="CREDREG_MAX_DOCUMENT_BYTES"
    )
    config_path: str | None = Field(default=None, alias="CREDREG_CONFIG_PATH")
    private_key: SecretStr | None = Field(default=None, alias="CREDREG_PRIVATE_KEY")

    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    @field_validator("confirmation_timeout", mode="before")
    @classmethod
    def _parse_optional_timeout(cls, value: object) -> float | None:
        """Treat empty or non-positive timeouts as "wait indefinitely".

        Args:
            value: Raw environment value.

        Returns:
            Parsed timeout, or ``None`` when waiting is unbounded.
        """

        if value is None:
            return None
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        try:
            parsed = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None
        return parsed if parsed > 0 else None

    @field_validator("protocol_version", mode="before")
    @classmethod
    def _normalise_protocol_version(cls, value: object) -> str:
        """Accept ``1``, ``"v1"`` and similar spellings."""

        return str(value).strip().lower().removeprefix("v")


def get_settings() -> RegistrySettings:
    """Return a :class:`RegistrySettings` instance.

    Returns:
        Settings parsed from environment variables.
    """

    return RegistrySettings()
