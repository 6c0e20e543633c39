"""Merge issuance and revocation logs into one bounded audit timeline."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Final

from credential_registry.schemas import AuditEvent

__all__ = ["DEFAULT_AUDIT_WINDOW", "merge"]

DEFAULT_AUDIT_WINDOW: Final[int] = 20


def merge(
    issued: Iterable[AuditEvent],
    revoked: Iterable[AuditEvent],
    *,
    limit: int = DEFAULT_AUDIT_WINDOW,
) -> list[AuditEvent]:
    """Return the most recent ``limit`` events ordered by block number.

    Both streams are concatenated (issued first) and stable-sorted by block
    number, so events sharing a block keep the order they were fetched in.
    Events are never deduplicated: an issuance and a revocation of the same
    digest are distinct facts.

    Args:
        issued: ``Issued`` events in emission order.
        revoked: ``Revoked`` events in emission order.
        limit: Maximum number of events kept from the end of the timeline.

    Returns:
        At most ``limit`` events, oldest first.
    """

    if limit < 0:
        raise ValueError("limit must not be negative")
    timeline = sorted([*issued, *revoked], key=lambda event: event.block_number)
    if limit == 0:
        return []
    return timeline[-limit:]
