"""Shared test fixtures: a scripted JSON-RPC node standing in for one chain."""

from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from ft_supply.burns import TRANSFER_TOPIC
from ft_supply.config import FT_TOKEN, PUT_MANAGER, ChainDescriptor
from ft_supply.rpc import SELECTOR_BALANCE_OF, SELECTOR_DECIMALS, SELECTOR_TOTAL_SUPPLY, FallbackRpc, RpcError
from ft_supply.utils import ZERO_ADDRESS, address_to_topic, keccak_hex

E18 = 10**18


def word(value: int) -> str:
    return "0x" + hex(value)[2:].rjust(64, "0")


def transfer_log(block: int, tx: str, frm: str, to: str, amount: int, *, address: str = FT_TOKEN) -> Dict[str, Any]:
    return {
        "address": address,
        "blockNumber": hex(block),
        "transactionHash": tx,
        "topics": [TRANSFER_TOPIC, address_to_topic(frm), address_to_topic(to)],
        "data": word(amount),
    }


def burn_log(block: int, tx: str, amount: int, *, frm: str = "0x" + "ab" * 20) -> Dict[str, Any]:
    return transfer_log(block, tx, frm, ZERO_ADDRESS, amount)


def event_log(block: int, tx: str, signature: str, amount: int, *, address: str = PUT_MANAGER) -> Dict[str, Any]:
    return {
        "address": address,
        "blockNumber": hex(block),
        "transactionHash": tx,
        "topics": [keccak_hex(signature)],
        "data": word(amount),
    }


def _topics_match(log_topics: List[str], wanted: List[Optional[str]]) -> bool:
    for i, t in enumerate(wanted):
        if t is None:
            continue
        if i >= len(log_topics) or str(log_topics[i]).lower() != str(t).lower():
            return False
    return True


class FakeRpc(FallbackRpc):
    """In-memory node: serves logs, receipts, balances and scripted eth_call results."""

    def __init__(
        self,
        *,
        head: Optional[int] = 1_000,
        logs: Optional[List[Dict[str, Any]]] = None,
        receipts: Optional[Dict[str, Dict[str, Any]]] = None,
        balances: Optional[Dict[str, int]] = None,
        total_supply: int = 0,
        decimals: int = 18,
        uint_calls: Optional[Dict[Tuple[str, str], Any]] = None,
    ):
        super().__init__(["http://fake.invalid"])
        self.head = head
        self.logs = list(logs or [])
        self.receipts = dict(receipts or {})
        self.balances = {k.lower(): v for k, v in (balances or {}).items()}
        self.total_supply = total_supply
        self.decimals = decimals
        self.uint_calls = {(to.lower(), sel.lower()): v for (to, sel), v in (uint_calls or {}).items()}
        self.sha3_error: Optional[Exception] = None
        self.balance_error: Optional[Exception] = None
        self.fail_logs: Optional[Callable[[Dict[str, Any], int, int], Optional[Exception]]] = None
        self.requests: List[Tuple[str, list]] = []
        self.log_ranges: List[Tuple[int, int]] = []

    def auto_receipts(self) -> "FakeRpc":
        """Build a receipt for every tx from its logs, unless one is scripted already."""
        for log in self.logs:
            rcpt = self.receipts.setdefault(log["transactionHash"], {"transactionHash": log["transactionHash"], "logs": []})
            if log not in rcpt["logs"]:
                rcpt["logs"].append(log)
        return self

    def methods(self, name: str) -> List[list]:
        return [p for m, p in self.requests if m == name]

    def call(self, method: str, params: list) -> Any:
        self.requests.append((method, params))
        if method == "eth_blockNumber":
            return None if self.head is None else hex(self.head)
        if method == "eth_getLogs":
            return self._get_logs(params[0])
        if method == "eth_getTransactionReceipt":
            return self.receipts.get(params[0])
        if method == "web3_sha3":
            if self.sha3_error is not None:
                raise self.sha3_error
            return keccak_hex(bytes.fromhex(params[0][2:]).decode("utf-8"))
        if method == "eth_call":
            return self._eth_call(params[0]["to"].lower(), params[0]["data"].lower())
        raise RpcError(f"unsupported method {method}")

    def _get_logs(self, flt: Dict[str, Any]) -> List[Dict[str, Any]]:
        start = int(flt["fromBlock"], 16)
        end = int(flt["toBlock"], 16)
        if self.fail_logs is not None:
            err = self.fail_logs(flt, start, end)
            if err is not None:
                raise err
        self.log_ranges.append((start, end))
        return [
            log
            for log in self.logs
            if log["address"].lower() == flt["address"].lower()
            and start <= int(log["blockNumber"], 16) <= end
            and _topics_match(log["topics"], flt.get("topics") or [])
        ]

    def _eth_call(self, to: str, data: str) -> str:
        if (to, data) in self.uint_calls:
            v = self.uint_calls[(to, data)]
            if isinstance(v, Exception):
                raise v
            return v if v is None or isinstance(v, str) else word(v)
        if to == FT_TOKEN:
            if data.startswith(SELECTOR_BALANCE_OF):
                if self.balance_error is not None:
                    raise self.balance_error
                return word(self.balances.get("0x" + data[-40:], 0))
            if data == SELECTOR_TOTAL_SUPPLY:
                return word(self.total_supply)
            if data == SELECTOR_DECIMALS:
                return word(self.decimals)
        raise RpcError("execution reverted")


@pytest.fixture
def chain() -> ChainDescriptor:
    return ChainDescriptor(key="ethereum", label="Ethereum", rpcs=("http://fake.invalid",), lookback=500, chunk_size=100)


@pytest.fixture
def messages() -> List[str]:
    return []


@pytest.fixture
def progress(messages: List[str]) -> Callable[[str], None]:
    return messages.append
