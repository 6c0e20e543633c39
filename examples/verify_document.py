#!/usr/bin/env python3
"""
Document Verification Example

This example demonstrates:
- Fingerprinting a document
- Looking up its registry record without a wallet
- Printing the recent issuance/revocation audit trail
"""

import asyncio
import sys
from datetime import datetime, timezone

from credential_registry.client import RegistryClient
from credential_registry.config_loader import load_config
from credential_registry.fingerprint import digest, digest_file


def describe(result):
    """Render a verification result as a one-line status."""
    if not result.issued:
        return "not issued"
    issued_at = datetime.fromtimestamp(result.issued_at, tz=timezone.utc)
    status = "REVOKED" if result.revoked else "valid"
    return f"{status}, issued {issued_at:%Y-%m-%d %H:%M} UTC by {result.issuer}"


async def run(path):
    config = load_config()
    doc = digest_file(path) if path else digest(b"example credential document")
    print("Credential Verification Example")
    print("=" * 40)
    print(f"Registry:  {config.registry.address} (protocol v{config.registry.protocol_version})")
    print(f"Document:  {path or '<built-in sample>'}")
    print(f"Digest:    {doc.hex}")

    client = RegistryClient.from_config(config)
    try:
        result = await client.verify(doc)
        print(f"Status:    {describe(result)}")

        print("\nRecent registry activity")
        print("-" * 40)
        events = await client.fetch_audit_window()
        if not events:
            print("No events in the scanned block range.")
        for event in events:
            print(f"#{event.block_number:<10} {event.kind:<8} {event.doc_hash.hex[:18]}...  {event.issuer}")
    finally:
        await client.transport.aclose()


if __name__ == "__main__":
    asyncio.run(run(sys.argv[1] if len(sys.argv) > 1 else None))
