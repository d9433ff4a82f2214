# app/paygate/ledger.py
"""
Ethereum JSON-RPC ledger client.

Reads the facts the verifier needs from an external chain node:
- eth_getTransactionByHash: sender, recipient, value of a transaction
- eth_getTransactionReceipt: inclusion block and execution status
- eth_blockNumber: chain head (health probe)

All calls are blocking ``requests`` calls; async callers move them off
the event loop with ``asyncio.to_thread``.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import requests

logger = logging.getLogger(__name__)

# JSON-RPC 2.0 error codes for requests that can never succeed as sent
INVALID_REQUEST_CODES = (-32600, -32602)


class LedgerError(Exception):
    """The RPC endpoint could not answer."""


class LedgerRequestRejected(LedgerError):
    """The node rejected the request itself (malformed parameters)."""


@dataclass(frozen=True)
class LedgerTransaction:
    """A transaction as reported by the ledger."""
    tx_hash: str
    sender: str
    recipient: Optional[str]  # None for contract creation
    value_wei: int
    block_number: Optional[int] = None


@dataclass(frozen=True)
class LedgerReceipt:
    """Execution result of an included transaction."""
    tx_hash: str
    status: int
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


def hex_to_int(value: Optional[str]) -> Optional[int]:
    """Decode a JSON-RPC hex quantity ("0x1a") to int."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


class LedgerClient:
    """Minimal JSON-RPC client for an EVM chain."""

    def __init__(self, rpc_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._session = session or requests.Session()

    def _call(self, method: str, params: Sequence[Any]) -> Any:
        """
        Perform one JSON-RPC call.

        Returns:
            The ``result`` field (may be None)

        Raises:
            LedgerRequestRejected: If the node rejects the parameters
            LedgerError: On transport failure, invalid JSON or any other RPC error
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": list(params)}
        try:
            response = self._session.post(self._rpc_url, json=payload, timeout=self._timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"Ledger RPC {method} failed: {e}")
            raise LedgerError(f"RPC call {method} failed: {e}") from e
        except ValueError as e:
            logger.error(f"Ledger RPC {method} returned invalid JSON: {e}")
            raise LedgerError(f"RPC call {method} returned invalid JSON") from e

        if "error" in data:
            error = data["error"]
            if isinstance(error, dict):
                message = error.get("message", "unknown error")
                if error.get("code") in INVALID_REQUEST_CODES:
                    raise LedgerRequestRejected(f"RPC rejected {method}: {message}")
            else:
                message = str(error)
            raise LedgerError(f"RPC error on {method}: {message}")

        if "result" not in data:
            raise LedgerError(f"Invalid RPC response for {method}: missing 'result' field")

        return data["result"]

    def get_transaction(self, tx_hash: str) -> Optional[LedgerTransaction]:
        """Resolve a transaction by hash; None if the node doesn't know it (yet)."""
        result = self._call("eth_getTransactionByHash", [tx_hash])
        if not result:
            return None

        return LedgerTransaction(
            tx_hash=result.get("hash", tx_hash).lower(),
            sender=(result.get("from") or "").lower(),
            recipient=result["to"].lower() if result.get("to") else None,
            value_wei=hex_to_int(result.get("value")) or 0,
            block_number=hex_to_int(result.get("blockNumber")),
        )

    def get_receipt(self, tx_hash: str) -> Optional[LedgerReceipt]:
        """Fetch the receipt; None while the transaction is still pending."""
        result = self._call("eth_getTransactionReceipt", [tx_hash])
        if not result:
            return None

        status = hex_to_int(result.get("status"))
        return LedgerReceipt(
            tx_hash=result.get("transactionHash", tx_hash).lower(),
            status=status if status is not None else 0,
            block_number=hex_to_int(result.get("blockNumber")),
        )

    def get_block_number(self) -> int:
        return hex_to_int(self._call("eth_blockNumber", []))
