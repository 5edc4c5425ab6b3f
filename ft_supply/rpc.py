from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

import requests

from ft_supply.utils import abi_encode_address, ascii_to_hex, decode_uint256, keccak_selector


USER_AGENT = "ft-supply-indexer/1.0"

SELECTOR_DECIMALS = keccak_selector("decimals()")
SELECTOR_TOTAL_SUPPLY = keccak_selector("totalSupply()")
SELECTOR_BALANCE_OF = keccak_selector("balanceOf(address)")


class RpcError(RuntimeError):
    def __init__(self, message: str, *, endpoint: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


class RpcUnavailable(RpcError):
    """Every endpoint of a chain failed for one call."""

    def __init__(self, method: str, endpoints: Sequence[str], last_error: Exception | None) -> None:
        super().__init__(f"{method}: all {len(endpoints)} endpoint(s) failed; last error: {last_error}")
        self.method = method
        self.endpoints = tuple(endpoints)
        self.last_error = last_error


class RpcClient:
    def __init__(self, rpc_url: str, timeout_s: int = 45):
        self.rpc_url = rpc_url
        self.timeout_s = timeout_s
        self._id = 0

    def call(self, method: str, params: list) -> Any:
        self._id += 1
        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params}
        try:
            resp = requests.post(
                self.rpc_url,
                json=payload,
                timeout=self.timeout_s,
                headers={"content-type": "application/json", "user-agent": USER_AGENT},
            )
        except requests.RequestException as e:
            raise RpcError(f"RPC transport error: {e}", endpoint=self.rpc_url) from e

        if not 200 <= resp.status_code < 300:
            raise RpcError(
                f"HTTP {resp.status_code}: {resp.reason}",
                endpoint=self.rpc_url,
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise RpcError(f"invalid JSON-RPC response: {resp.text[:200]!r}", endpoint=self.rpc_url) from e

        if not isinstance(data, dict):
            raise RpcError(f"unexpected JSON-RPC payload: {type(data).__name__}", endpoint=self.rpc_url)
        if data.get("error"):
            err = data["error"]
            msg = err.get("message") if isinstance(err, dict) else None
            raise RpcError(str(msg or err), endpoint=self.rpc_url)
        return data.get("result")


class FallbackRpc:
    """Ordered endpoint list for one chain; each call goes to the first endpoint that answers.

    There is no retry on a single endpoint: a failure moves straight to the next one, and
    only when all of them fail does the call raise `RpcUnavailable`.
    """

    def __init__(self, endpoints: Iterable[str], timeout_s: int = 45):
        self.endpoints: List[str] = [str(e) for e in endpoints]
        if not self.endpoints:
            raise ValueError("at least one RPC endpoint is required")
        self._clients = [RpcClient(e, timeout_s=timeout_s) for e in self.endpoints]

    def call(self, method: str, params: list) -> Any:
        last_error: Exception | None = None
        for client in self._clients:
            try:
                return client.call(method, params)
            except RpcError as e:
                last_error = e
        raise RpcUnavailable(method, self.endpoints, last_error) from last_error

    def block_number(self) -> int:
        return _strict_uint("eth_blockNumber", self.call("eth_blockNumber", []))

    def eth_call(self, to: str, data: str) -> str:
        return self.call("eth_call", [{"to": to, "data": data}, "latest"])

    def call_uint(self, to: str, data: str) -> int:
        """Read a uint256 return value; empty return data is an error, not zero."""
        return _strict_uint(f"eth_call {to} {data[:10]}", self.eth_call(to, data))

    def get_logs(self, log_filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        res = self.call("eth_getLogs", [log_filter])
        if res is None:
            return []
        if not isinstance(res, list):
            raise RpcError(f"unexpected eth_getLogs result: {type(res).__name__}")
        return res

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        rcpt = self.call("eth_getTransactionReceipt", [tx_hash])
        if rcpt is not None and not isinstance(rcpt, dict):
            raise RpcError(f"unexpected eth_getTransactionReceipt result: {type(rcpt).__name__}")
        return rcpt

    def web3_sha3(self, text: str) -> str:
        return str(self.call("web3_sha3", [ascii_to_hex(text)])).lower()


def erc20_total_supply(rpc: FallbackRpc, token: str) -> int:
    return rpc.call_uint(token, SELECTOR_TOTAL_SUPPLY)


def erc20_balance_of(rpc: FallbackRpc, token: str, wallet: str) -> int:
    return rpc.call_uint(token, SELECTOR_BALANCE_OF + abi_encode_address(wallet))


def erc20_decimals(rpc: FallbackRpc, token: str) -> int:
    return rpc.call_uint(token, SELECTOR_DECIMALS)


def _strict_uint(what: str, result: Any) -> int:
    if result is None or result == "0x":
        raise RpcError(f"{what}: empty result {result!r}")
    try:
        return decode_uint256(result)
    except ValueError as e:
        raise RpcError(f"{what}: {e}") from e
