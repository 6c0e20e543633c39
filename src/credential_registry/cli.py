"""Command-line interface for the credential registry client."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from credential_registry.client import RegistryClient
from credential_registry.config_loader import RegistryConfig, load_config
from credential_registry.errors import CredentialRegistryError, TransactionUnresolved
from credential_registry.fingerprint import DocumentDigest, digest_file
from credential_registry.logging_pipeline import (
    configure_structured_logging,
    shutdown_listeners,
)
from credential_registry.schemas import CredentialRecord
from credential_registry.settings import RegistrySettings, get_settings
from credential_registry.signing import LocalAccountSigner
from credential_registry.tracker import TransactionHandle
from credential_registry.transport import JsonRpcTransport

LOGGER = logging.getLogger(__name__)


def _emit(payload: object, *, quiet: bool) -> None:
    if not quiet:
        print(json.dumps(payload, separators=(",", ":"), default=str))


def _resolve_digest(args: argparse.Namespace, config: RegistryConfig) -> DocumentDigest:
    """Return the digest named by ``--hash`` or computed from ``document``."""

    if args.hash:
        return DocumentDigest.from_hex(args.hash)
    if args.document:
        return digest_file(Path(args.document), max_bytes=config.documents.max_bytes)
    raise ValueError("Provide a document path or --hash.")


def _add_target_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("document", nargs="?", help="Path to the document file.")
    parser.add_argument("--hash", help="0x-prefixed SHA-256 digest instead of a file.")


def _add_wait_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Return after submission instead of awaiting confirmation.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds to await confirmation (defaults to configuration).",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="credential-registry",
        description="Anchor, revoke and verify document credentials on a registry contract.",
    )
    parser.add_argument("--config", "-c", help="Path to a YAML or JSON configuration file.")
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Quiet mode: suppress output, just return exit code.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Structured log verbosity written to stderr.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    digest_parser = commands.add_parser("digest", help="Print a document's SHA-256 digest.")
    digest_parser.add_argument("document", help="Path to the document file.")

    verify_parser = commands.add_parser("verify", help="Look up a document's record.")
    _add_target_arguments(verify_parser)

    events_parser = commands.add_parser("events", help="Show the recent audit trail.")
    events_parser.add_argument(
        "--lookback", type=int, help="Number of recent blocks to scan."
    )

    issue_parser = commands.add_parser("issue", help="Issue a credential directly.")
    _add_target_arguments(issue_parser)
    _add_wait_arguments(issue_parser)

    revoke_parser = commands.add_parser("revoke", help="Revoke a credential.")
    _add_target_arguments(revoke_parser)
    _add_wait_arguments(revoke_parser)

    sign_parser = commands.add_parser(
        "sign-issue", help="Sign a credential and submit it as a delegated issuance."
    )
    _add_target_arguments(sign_parser)
    sign_parser.add_argument("--student-name", required=True)
    sign_parser.add_argument("--course", required=True)
    sign_parser.add_argument(
        "--issue-date",
        type=int,
        help="Unix seconds; defaults to the current time.",
    )
    sign_parser.add_argument("--ipfs-cid", help="Content identifier (protocol v2).")
    _add_wait_arguments(sign_parser)
    return parser


async def _finish(
    handle: TransactionHandle,
    args: argparse.Namespace,
    config: RegistryConfig,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    result: dict[str, Any] = {"operation": handle.operation, "tx_hash": handle.tx_hash}
    if extra:
        result.update(extra)
    if args.no_wait:
        result["status"] = handle.status.value
        return result
    timeout = args.timeout if args.timeout is not None else config.confirmation.timeout
    try:
        outcome = await handle.wait(timeout)
    except TransactionUnresolved:
        result["status"] = "unresolved"
        return result
    result.update(
        status=handle.status.value,
        block_number=outcome.block_number,
        confirmations=outcome.confirmations,
    )
    return result


async def _run(
    args: argparse.Namespace, config: RegistryConfig, settings: RegistrySettings
) -> tuple[object, int]:
    """Execute a ledger-facing subcommand and return ``(payload, exit_code)``."""

    async with JsonRpcTransport(
        config.network.rpc_url, timeout_seconds=config.network.rpc_timeout
    ) as transport:
        signer = None
        if settings.private_key is not None:
            signer = LocalAccountSigner(
                settings.private_key.get_secret_value(), transport=transport
            )
        client = RegistryClient.from_config(config, transport=transport, signer=signer)

        if args.command == "verify":
            doc = _resolve_digest(args, config)
            result = await client.verify(doc)
            payload = {"doc_hash": doc.hex, **result.model_dump()}
            return payload, 0 if result.issued and not result.revoked else 1

        if args.command == "events":
            events = await client.fetch_audit_window(lookback_blocks=args.lookback)
            return [event.model_dump() for event in events], 0

        if args.command == "issue":
            doc = _resolve_digest(args, config)
            handle = await client.issue_direct(doc)
            return await _finish(handle, args, config, {"doc_hash": doc.hex}), 0

        if args.command == "revoke":
            doc = _resolve_digest(args, config)
            handle = await client.revoke(doc)
            return await _finish(handle, args, config, {"doc_hash": doc.hex}), 0

        record = CredentialRecord(
            doc_hash=_resolve_digest(args, config),
            student_name=args.student_name,
            course=args.course,
            issue_date=args.issue_date if args.issue_date is not None else int(time.time()),
            ipfs_cid=args.ipfs_cid,
        )
        handle = await client.sign_and_issue(record)
        return await _finish(handle, args, config, {"doc_hash": record.doc_hash.hex}), 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line and return the process exit code."""

    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:  # pragma: no cover - controlled via tests
        exit_code = int(exc.code) if isinstance(exc.code, int) else 1
        return 0 if exit_code == 0 else 1

    listener = configure_structured_logging(level=getattr(logging, args.log_level))
    try:
        settings = get_settings()
        config = load_config(args.config, settings=settings)

        if args.command == "digest":
            doc = digest_file(Path(args.document), max_bytes=config.documents.max_bytes)
            _emit({"doc_hash": doc.hex}, quiet=args.quiet)
            return 0

        payload, exit_code = asyncio.run(_run(args, config, settings))
        _emit(payload, quiet=args.quiet)
        return exit_code
    except (CredentialRegistryError, OSError, ValueError) as exc:
        LOGGER.warning(
            "Command failed",
            extra={"command": args.command, "error_type": type(exc).__name__},
        )
        if not args.quiet:
            reason = getattr(exc, "reason", None)
            print(reason or str(exc), file=sys.stderr)
        return 1
    finally:
        shutdown_listeners([listener])


if __name__ == "__main__":
    raise SystemExit(main())
