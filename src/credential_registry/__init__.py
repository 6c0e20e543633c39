"""Credential Registry - anchor and verify document credentials on a ledger."""

from __future__ import annotations

from importlib import import_module
from typing import Any, TYPE_CHECKING

__all__ = [
    "AuditEvent",
    "CredentialRecord",
    "DocumentDigest",
    "JsonRpcTransport",
    "RegistryClient",
    "SigningSession",
    "TransactionTracker",
    "VerificationResult",
    "digest",
    "load_config",
]

if TYPE_CHECKING:
    from .client import RegistryClient
    from .config_loader import load_config
    from .fingerprint import DocumentDigest, digest
    from .schemas import AuditEvent, CredentialRecord, VerificationResult
    from .signing import SigningSession
    from .tracker import TransactionTracker
    from .transport import JsonRpcTransport


def __getattr__(name: str) -> Any:
    """Lazily import submodules so the ledger stack loads only when used."""

    module_map = {
        "AuditEvent": "schemas",
        "CredentialRecord": "schemas",
        "DocumentDigest": "fingerprint",
        "JsonRpcTransport": "transport",
        "RegistryClient": "client",
        "SigningSession": "signing",
        "TransactionTracker": "tracker",
        "VerificationResult": "schemas",
        "digest": "fingerprint",
        "load_config": "config_loader",
    }

    if name not in module_map:
        raise AttributeError(name)

    module = import_module(f".{module_map[name]}", __name__)
    return getattr(module, name)
