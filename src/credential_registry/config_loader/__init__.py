"""Public entry points for the :mod:`credential_registry` configuration loader."""

from __future__ import annotations

from credential_registry.config_loader.models import (
    AuditSettings,
    ConfirmationSettings,
    DocumentSettings,
    NetworkSettings,
    RegistryConfig,
    RegistrySection,
    SigningSettings,
)
from credential_registry.config_loader.parsing import (
    apply_environment_overrides,
    apply_structured_overrides,
)
from credential_registry.config_loader.sources import load_structured_config
from credential_registry.settings import RegistrySettings, get_settings

__all__ = [
    "AuditSettings",
    "ConfirmationSettings",
    "DocumentSettings",
    "NetworkSettings",
    "RegistryConfig",
    "RegistrySection",
    "SigningSettings",
    "load_config",
]


def load_config(
    path: str | None = None, *, settings: RegistrySettings | None = None
) -> RegistryConfig:
    """Load configuration from environment and optional file sources.

    File values take precedence over environment values, which take
    precedence over built-in defaults.

    Args:
        path: Optional explicit path to a configuration file. When omitted the
            loader inspects ``CREDREG_CONFIG_PATH`` and default locations.
        settings: Optional pre-instantiated environment settings. When omitted
            :func:`credential_registry.settings.get_settings` is used.

    Returns:
        Fully populated :class:`RegistryConfig` instance.
    """

    env_settings = settings or get_settings()
    base = apply_environment_overrides(RegistryConfig(), env_settings)
    structured = load_structured_config(path, env_settings)
    if structured is None:
        return base
    return apply_structured_overrides(base, structured)
