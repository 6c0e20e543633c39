"""Locate and read the registry configuration file.

A file named explicitly (argument or ``CREDREG_CONFIG_PATH``) must exist.
Without one, the first of the well-known locations that exists is used, and
having none is fine. A chosen file that cannot be read as a JSON or YAML mapping
raises :class:`~credential_registry.errors.InputError`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Final, cast

import yaml

from credential_registry.errors import InputError
from credential_registry.settings import RegistrySettings

DEFAULT_LOCATIONS: Final[tuple[Path, ...]] = (
    Path("config/credential-registry.yml"),
    Path("config/credential-registry.yaml"),
    Path("config/credential-registry.json"),
)

_YAML_SUFFIXES: Final[frozenset[str]] = frozenset({".yml", ".yaml"})


def load_structured_config(
    path: str | None, settings: RegistrySettings
) -> dict[str, object] | None:
    """Return the parsed configuration file, or ``None`` when there is none.

    Args:
        path: Path given by the caller, taking precedence over
            ``settings.config_path``.
        settings: Environment settings consulted for ``CREDREG_CONFIG_PATH``.

    Raises:
        InputError: If a named file is missing, or any chosen file is
            unreadable, malformed or not a mapping.
    """

    named = path or settings.config_path
    if named:
        config_path = Path(named)
        if not config_path.is_file():
            raise InputError(f"Configuration file not found: {config_path}")
        return read_config_file(config_path)

    for candidate in DEFAULT_LOCATIONS:
        if candidate.is_file():
            return read_config_file(candidate)
    return None


def read_config_file(path: Path) -> dict[str, object]:
    """Parse ``path`` as JSON or YAML according to its suffix."""

    suffix = path.suffix.lower()
    if suffix != ".json" and suffix not in _YAML_SUFFIXES:
        raise InputError(f"Unsupported configuration format {suffix!r}: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise InputError(f"Cannot read configuration file {path}: {exc}") from exc

    try:
        data = json.loads(text) if suffix == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise InputError(f"Malformed configuration file {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InputError(
            f"Configuration file {path} must hold a mapping, got {type(data).__name__}"
        )
    sections = cast(dict[object, object], data)
    return {str(key): value for key, value in sections.items()}
