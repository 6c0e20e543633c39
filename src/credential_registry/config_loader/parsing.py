"""Parsing and transformation helpers for :mod:`credential_registry.config_loader`."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace

from eth_utils import is_address

from credential_registry.config_loader.models import (
    AuditSettings,
    ConfirmationSettings,
    DocumentSettings,
    NetworkSettings,
    RegistryConfig,
    RegistrySection,
    SigningSettings,
)
from credential_registry.settings import RegistrySettings


def apply_environment_overrides(
    config: RegistryConfig, settings: RegistrySettings
) -> RegistryConfig:
    """Apply environment-derived settings to the configuration.

    Args:
        config: Base configuration instance.
        settings: Environment-derived settings.

    Returns:
        Configuration carrying the environment values.
    """

    return replace(
        config,
        network=NetworkSettings(
            rpc_url=settings.rpc_url,
            chain_id=settings.chain_id,
            rpc_timeout=settings.rpc_timeout,
        ),
        registry=RegistrySection(
            address=settings.registry_address,
            protocol_version=settings.protocol_version,
        ),
        confirmation=ConfirmationSettings(
            confirmations=settings.confirmations,
            poll_interval=settings.poll_interval,
            timeout=settings.confirmation_timeout,
        ),
        audit=AuditSettings(
            lookback_blocks=settings.event_lookback_blocks,
            window=settings.audit_window,
        ),
        signing=replace(config.signing, clock_skew_seconds=settings.clock_skew_seconds),
        documents=DocumentSettings(max_bytes=settings.max_document_bytes),
    )


def apply_structured_overrides(
    config: RegistryConfig, data: Mapping[str, object]
) -> RegistryConfig:
    """Apply overrides sourced from structured configuration data.

    Unknown keys and values of the wrong type are ignored.

    Args:
        config: Base configuration instance.
        data: Mapping parsed from a configuration file.

    Returns:
        Configuration updated according to the provided mapping.
    """

    updated = config

    network_section = _expect_mapping(data.get("network"))
    if network_section is not None:
        updated = replace(updated, network=_apply_network(updated.network, network_section))

    registry_section = _expect_mapping(data.get("registry"))
    if registry_section is not None:
        updated = replace(
            updated, registry=_apply_registry(updated.registry, registry_section)
        )

    confirmation_section = _expect_mapping(data.get("confirmation"))
    if confirmation_section is not None:
        updated = replace(
            updated,
            confirmation=_apply_confirmation(updated.confirmation, confirmation_section),
        )

    audit_section = _expect_mapping(data.get("audit"))
    if audit_section is not None:
        updated = replace(updated, audit=_apply_audit(updated.audit, audit_section))

    signing_section = _expect_mapping(data.get("signing"))
    if signing_section is not None:
        updated = replace(updated, signing=_apply_signing(updated.signing, signing_section))

    documents_section = _expect_mapping(data.get("documents"))
    if documents_section is not None:
        max_bytes = _coerce_positive_int(documents_section.get("max_bytes"))
        if max_bytes is not None:
            updated = replace(updated, documents=DocumentSettings(max_bytes=max_bytes))

    return updated


def _apply_network(
    network: NetworkSettings, section: Mapping[str, object]
) -> NetworkSettings:
    rpc_url = _coerce_str(section.get("rpc_url"))
    chain_id = _coerce_positive_int(section.get("chain_id"))
    rpc_timeout = _coerce_float(section.get("rpc_timeout"))

    if rpc_url is not None:
        network = replace(network, rpc_url=rpc_url)
    if chain_id is not None:
        network = replace(network, chain_id=chain_id)
    if rpc_timeout is not None and rpc_timeout > 0:
        network = replace(network, rpc_timeout=rpc_timeout)
    return network


def _apply_registry(
    registry: RegistrySection, section: Mapping[str, object]
) -> RegistrySection:
    """Apply registry deployment overrides.

    Args:
        registry: Current registry section.
        section: Mapping describing the registry section from the file.

    Returns:
        Updated registry section.
    """

    address = _coerce_str(section.get("address"))
    version_raw = section.get("protocol_version")
    version = _coerce_str(str(version_raw)) if version_raw is not None else None

    if address is not None and is_address(address):
        registry = replace(registry, address=address)
    if version is not None:
        normalized = version.lower().removeprefix("v")
        if normalized in {"1", "2"}:
            registry = replace(registry, protocol_version=normalized)
    return registry


def _apply_confirmation(
    confirmation: ConfirmationSettings, section: Mapping[str, object]
) -> ConfirmationSettings:
    confirmations = _coerce_positive_int(section.get("confirmations"))
    poll_interval = _coerce_float(section.get("poll_interval"))

    if confirmations is not None:
        confirmation = replace(confirmation, confirmations=confirmations)
    if poll_interval is not None and poll_interval > 0:
        confirmation = replace(confirmation, poll_interval=poll_interval)
    if "timeout" in section:
        timeout = _coerce_float(section.get("timeout"))
        confirmation = replace(
            confirmation,
            timeout=timeout if timeout is not None and timeout > 0 else None,
        )
    return confirmation


def _apply_audit(audit: AuditSettings, section: Mapping[str, object]) -> AuditSettings:
    lookback = _coerce_positive_int(section.get("lookback_blocks"))
    window = _coerce_positive_int(section.get("window"))

    if lookback is not None:
        audit = replace(audit, lookback_blocks=lookback)
    if window is not None:
        audit = replace(audit, window=window)
    return audit


def _apply_signing(
    signing: SigningSettings, section: Mapping[str, object]
) -> SigningSettings:
    domain_name = _coerce_str(section.get("domain_name"))
    domain_version = _coerce_str(section.get("domain_version"))
    clock_skew = _coerce_positive_int(section.get("clock_skew_seconds"))

    if domain_name is not None:
        signing = replace(signing, domain_name=domain_name)
    if domain_version is not None:
        signing = replace(signing, domain_version=domain_version)
    if clock_skew is not None:
        signing = replace(signing, clock_skew_seconds=clock_skew)
    return signing


def _coerce_float(value: object) -> float | None:
    """Parse a float from arbitrary input.

    Args:
        value: Raw value.

    Returns:
        Parsed float when conversion succeeds, otherwise ``None``.
    """

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _coerce_positive_int(value: object) -> int | None:
    """Parse a strictly positive integer from arbitrary input."""

    parsed: int | None = None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float) and value.is_integer():
        parsed = int(value)
    elif isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return None
    if parsed is None or parsed <= 0:
        return None
    return parsed


def _coerce_str(value: object) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def _expect_mapping(value: object) -> Mapping[str, object] | None:
    """Return the value when it is a mapping with string keys.

    Args:
        value: Raw configuration value.

    Returns:
        Mapping with string keys suitable for further parsing, or ``None``.
    """

    if not isinstance(value, Mapping):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return value
