"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import inspect
import os
import sys
from typing import Any

import pytest

# Ensure src/ is on sys.path for tests so the src layout is used during test runs
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from credential_registry.protocol import ProtocolV1, ProtocolV2  # noqa: E402

from ledger_stub import (  # noqa: E402
    ISSUER_KEY,
    OUTSIDER_KEY,
    REGISTRY_ADDRESS,
    RELAYER_KEY,
    FakeLedger,
    FakeWallet,
)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "asyncio: mark test as requiring an event loop")


def pytest_pyfunc_call(pyfuncitem: Any) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames  # type: ignore[attr-defined]
        }

        event_loop = asyncio.new_event_loop()
        try:
            event_loop.run_until_complete(pyfuncitem.obj(**call_kwargs))
        finally:
            event_loop.close()
        return True
    return None


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host ``CREDREG_*`` variables out of the tests."""

    for key in list(os.environ):
        if key.startswith("CREDREG_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger(protocol=ProtocolV1(), issuers={ISSUER_KEY})


@pytest.fixture
def ledger_v2() -> FakeLedger:
    return FakeLedger(protocol=ProtocolV2(), issuers={ISSUER_KEY})


@pytest.fixture
def issuer_wallet(ledger: FakeLedger) -> FakeWallet:
    return FakeWallet(ISSUER_KEY, ledger)


@pytest.fixture
def relayer_wallet(ledger: FakeLedger) -> FakeWallet:
    return FakeWallet(RELAYER_KEY, ledger)


@pytest.fixture
def outsider_wallet(ledger: FakeLedger) -> FakeWallet:
    return FakeWallet(OUTSIDER_KEY, ledger)


@pytest.fixture
def registry_address() -> str:
    return REGISTRY_ADDRESS
