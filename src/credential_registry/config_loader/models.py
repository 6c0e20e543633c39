"""Typed configuration dataclasses for :mod:`credential_registry.config_loader`."""

from __future__ import annotations

from dataclasses import dataclass, field

from credential_registry.encoder import DEFAULT_DOMAIN_NAME, DEFAULT_DOMAIN_VERSION
from credential_registry.protocol import RegistryProtocol, protocol_for
from credential_registry.settings import DEFAULT_REGISTRY_ADDRESS, SEPOLIA_CHAIN_ID


@dataclass(slots=True)
class NetworkSettings:
    """Settings describing the ledger endpoint.

    Attributes:
        rpc_url: JSON-RPC endpoint.
        chain_id: Chain the registry lives on.
        rpc_timeout: Per-request timeout in seconds.
    """

    rpc_url: str = "https://gateway.tenderly.co/public/sepolia"
    chain_id: int = SEPOLIA_CHAIN_ID
    rpc_timeout: float = 10.0


@dataclass(slots=True)
class RegistrySection:
    """The single registry deployment targeted by the client."""

    address: str = DEFAULT_REGISTRY_ADDRESS
    protocol_version: str = "1"


@dataclass(slots=True)
class ConfirmationSettings:
    """Receipt polling policy."""

    confirmations: int = 1
    poll_interval: float = 2.0
    timeout: float | None = 120.0


@dataclass(slots=True)
class AuditSettings:
    """Event window parameters for the audit view."""

    lookback_blocks: int = 5000
    window: int = 20


@dataclass(slots=True)
class SigningSettings:
    """EIP-712 domain identity and issue-date tolerance."""

    domain_name: str = DEFAULT_DOMAIN_NAME
    domain_version: str = DEFAULT_DOMAIN_VERSION
    clock_skew_seconds: int = 300


@dataclass(slots=True)
class DocumentSettings:
    """Limits applied when fingerprinting documents."""

    max_bytes: int = 25 * 1024 * 1024


@dataclass(slots=True)
class RegistryConfig:
    """Strongly typed configuration container for the registry client."""

    network: NetworkSettings = field(default_factory=NetworkSettings)
    registry: RegistrySection = field(default_factory=RegistrySection)
    confirmation: ConfirmationSettings = field(default_factory=ConfirmationSettings)
    audit: AuditSettings = field(default_factory=AuditSettings)
    signing: SigningSettings = field(default_factory=SigningSettings)
    documents: DocumentSettings = field(default_factory=DocumentSettings)

    @property
    def protocol(self) -> RegistryProtocol:
        """Return the protocol variant named by ``registry.protocol_version``."""

        return protocol_for(self.registry.protocol_version)
