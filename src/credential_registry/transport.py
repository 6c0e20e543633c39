"""Ledger transport capability and its JSON-RPC implementation."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Final, Protocol

import httpx

from credential_registry.errors import ChainError

__all__ = [
    "DEFAULT_RPC_URL",
    "JsonRpcTransport",
    "LedgerTransport",
    "RpcError",
    "parse_quantity",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_RPC_URL: Final[str] = "https://gateway.tenderly.co/public/sepolia"


class RpcError(ChainError):
    """JSON-RPC error object returned by a node.

    Attributes:
        code: JSON-RPC error code (``3`` for execution reverted).
        data: Optional ``data`` member, usually ABI-encoded revert data.
    """

    def __init__(self, code: int, message: str, data: object | None = None) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.rpc_message = message
        self.data = data


class LedgerTransport(Protocol):
    """Subset of the Ethereum JSON-RPC surface the registry client needs."""

    async def chain_id(self) -> int:
        """Return the connected network's chain id."""

    async def block_number(self) -> int:
        """Return the latest block number."""

    async def call(
        self,
        to: str,
        data: bytes,
        *,
        sender: str | None = None,
        block: int | None = None,
    ) -> bytes:
        """Execute a read-only call at ``block`` (latest by default)."""

    async def get_logs(
        self,
        address: str,
        topics: Sequence[str | None],
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        """Return raw log records matching ``topics``."""

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """Return the receipt, or ``None`` while the transaction is unmined."""

    async def get_transaction_count(self, address: str) -> int:
        """Return the pending nonce of ``address``."""

    async def gas_price(self) -> int:
        """Return the node's suggested gas price in wei."""

    async def estimate_gas(self, tx: Mapping[str, Any]) -> int:
        """Return the gas estimate for ``tx``."""

    async def send_raw_transaction(self, raw: bytes) -> str:
        """Broadcast a signed transaction and return its hash."""


def _to_quantity(value: int) -> str:
    return hex(value)


def parse_quantity(value: object) -> int | None:
    """Parse an optional JSON-RPC quantity such as a receipt's ``blockNumber``.

    Raises:
        ChainError: If ``value`` is present but is not a hex or integer quantity.
    """

    if value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16)
        except ValueError as exc:
            raise ChainError(f"Malformed quantity in RPC response: {value!r}") from exc
    raise ChainError(f"Unexpected quantity in RPC response: {value!r}")


def _from_quantity(value: object) -> int:
    quantity = parse_quantity(value)
    if quantity is None:
        raise ChainError("Missing quantity in RPC response")
    return quantity


def _to_data(value: bytes) -> str:
    return "0x" + value.hex()


def _from_data(value: object) -> bytes:
    if not isinstance(value, str):
        raise ChainError(f"Unexpected data in RPC response: {value!r}")
    text = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise ChainError(f"Malformed hex data in RPC response: {value!r}") from exc


class JsonRpcTransport:
    """Ledger transport speaking JSON-RPC over HTTP.

    Args:
        url: Endpoint of an Ethereum JSON-RPC node.
        timeout_seconds: Per-request timeout.
        client: Optional pre-configured :class:`httpx.AsyncClient`; when
            omitted the transport owns one and closes it in :meth:`aclose`.
    """

    def __init__(
        self,
        url: str = DEFAULT_RPC_URL,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._ids = itertools.count(1)

    async def __aenter__(self) -> JsonRpcTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request(self, method: str, params: Sequence[object]) -> Any:
        """Perform one JSON-RPC request and return its ``result``.

        Raises:
            RpcError: If the node answers with a JSON-RPC error object.
            ChainError: On HTTP, transport or payload failures.
        """

        body = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": list(params),
        }
        try:
            response = await self._client.post(self._url, json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            LOGGER.warning(
                "JSON-RPC HTTP error",
                extra={
                    "rpc_method": method,
                    "status_code": exc.response.status_code,
                    "url": self._url,
                },
                exc_info=exc,
            )
            raise ChainError(
                f"{method} failed with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            LOGGER.warning(
                "JSON-RPC transport error",
                extra={"rpc_method": method, "url": self._url},
                exc_info=exc,
            )
            raise ChainError(f"{method} transport failure: {exc}") from exc
        except ValueError as exc:
            LOGGER.warning(
                "JSON-RPC response parsing error",
                extra={"rpc_method": method, "url": self._url},
                exc_info=exc,
            )
            raise ChainError(f"{method} returned a non-JSON response") from exc

        if not isinstance(payload, dict):
            raise ChainError(f"{method} returned an unexpected payload")
        error = payload.get("error")
        if error is not None:
            if not isinstance(error, dict):
                raise ChainError(f"{method} failed: {error!r}")
            raise RpcError(
                int(error.get("code", 0)),
                str(error.get("message", "")),
                error.get("data"),
            )
        return payload.get("result")

    async def chain_id(self) -> int:
        return _from_quantity(await self.request("eth_chainId", []))

    async def block_number(self) -> int:
        return _from_quantity(await self.request("eth_blockNumber", []))

    async def call(
        self,
        to: str,
        data: bytes,
        *,
        sender: str | None = None,
        block: int | None = None,
    ) -> bytes:
        tx: dict[str, str] = {"to": to, "data": _to_data(data)}
        if sender is not None:
            tx["from"] = sender
        tag = "latest" if block is None else _to_quantity(block)
        return _from_data(await self.request("eth_call", [tx, tag]))

    async def get_logs(
        self,
        address: str,
        topics: Sequence[str | None],
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        result = await self.request(
            "eth_getLogs",
            [
                {
                    "address": address,
                    "topics": list(topics),
                    "fromBlock": _to_quantity(from_block),
                    "toBlock": _to_quantity(to_block),
                }
            ],
        )
        if not isinstance(result, list):
            raise ChainError("eth_getLogs returned a non-list result")
        return [entry for entry in result if isinstance(entry, dict)]

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        result = await self.request("eth_getTransactionReceipt", [tx_hash])
        if result is None:
            return None
        if not isinstance(result, dict):
            raise ChainError("eth_getTransactionReceipt returned a non-object result")
        return result

    async def get_transaction_count(self, address: str) -> int:
        return _from_quantity(
            await self.request("eth_getTransactionCount", [address, "pending"])
        )

    async def gas_price(self) -> int:
        return _from_quantity(await self.request("eth_gasPrice", []))

    async def estimate_gas(self, tx: Mapping[str, Any]) -> int:
        params: dict[str, Any] = {}
        for key, value in tx.items():
            if isinstance(value, bytes):
                params[key] = _to_data(value)
            elif isinstance(value, int):
                params[key] = _to_quantity(value)
            else:
                params[key] = value
        return _from_quantity(await self.request("eth_estimateGas", [params]))

    async def send_raw_transaction(self, raw: bytes) -> str:
        result = await self.request("eth_sendRawTransaction", [_to_data(raw)])
        if not isinstance(result, str):
            raise ChainError("eth_sendRawTransaction returned a non-string hash")
        return result
