"""
FT allocated into PUTs, resolved through an ordered list of strategies.

1. Event ledger: Invested - Divested - Withdraw amounts replayed from PutManager logs.
2. Direct probe: PutManager.ftAllocated() via the known selector, then the node-derived one.
3. Balance fallback: FT balance of the ftPUT contract.

The first strategy returning a strictly positive amount wins and its name becomes the
published `allocatedSource`. Any strategy error only moves on to the next one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from ft_supply.config import ChainDescriptor
from ft_supply.rpc import FallbackRpc, RpcError, erc20_balance_of
from ft_supply.scan import scan_logs
from ft_supply.state import AllocationLedgerState, advance, start_block
from ft_supply.utils import decode_uint256, floor_zero


SOURCE_EVENTS = "events-invested-divested-withdraw"
SOURCE_PROBE = "putmanager-ftAllocated-fallback"
SOURCE_BALANCE = "ftput-balance-fallback"
SOURCE_UNAVAILABLE = "unavailable"

INVESTED_EVENT = "Invested(uint256)"
DIVESTED_EVENT = "Divested(uint256)"
WITHDRAW_EVENT = "Withdraw(uint256)"

FT_ALLOCATED_SIGNATURE = "ftAllocated()"
FT_ALLOCATED_SELECTOR = "0x70d8da31"


class AllocationStrategy:
    name = ""

    def resolve(self) -> Optional[int]:
        raise NotImplementedError


class EventLedgerStrategy(AllocationStrategy):
    name = SOURCE_EVENTS

    def __init__(
        self,
        rpc: FallbackRpc,
        chain: ChainDescriptor,
        put_manager: str,
        latest_block: int,
        prev: AllocationLedgerState,
        *,
        progress: Callable[[str], None] = print,
    ):
        self.rpc = rpc
        self.chain = chain
        self.put_manager = put_manager
        self.latest_block = latest_block
        self.prev = prev
        self.progress = progress
        # Replaced only once every event scan has succeeded.
        self.ledger = prev

    def _sum_event(self, topic0: str, from_block: int) -> int:
        total = 0
        for batch in scan_logs(
            self.rpc,
            address=self.put_manager,
            topics=[topic0],
            from_block=from_block,
            to_block=self.latest_block,
            chunk_size=self.chain.chunk_size,
        ):
            for log in batch.logs:
                if not log.get("removed"):
                    total += decode_uint256(log.get("data"))
        return total

    def resolve(self) -> Optional[int]:
        from_block = start_block(self.prev.cursor, self.latest_block, self.chain.lookback)
        ledger = self.prev
        if from_block <= self.latest_block:
            topics = [self.rpc.web3_sha3(sig) for sig in (INVESTED_EVENT, DIVESTED_EVENT, WITHDRAW_EVENT)]
            invested, divested, withdrawn = (self._sum_event(t, from_block) for t in topics)
            self.progress(
                f"[{self.chain.key}] PUT ledger {from_block:,}..{self.latest_block:,}: "
                f"+{invested} invested, +{divested} divested, +{withdrawn} withdrawn"
            )
            ledger = AllocationLedgerState(
                cursor=advance(self.prev.cursor, self.latest_block),
                invested_wei=self.prev.invested_wei + invested,
                divested_wei=self.prev.divested_wei + divested,
                withdrawn_wei=self.prev.withdrawn_wei + withdrawn,
            )
        self.ledger = ledger
        return floor_zero(ledger.invested_wei - ledger.divested_wei - ledger.withdrawn_wei)


class SelectorProbeStrategy(AllocationStrategy):
    name = SOURCE_PROBE

    def __init__(
        self,
        rpc: FallbackRpc,
        contract: str,
        *,
        signature: str = FT_ALLOCATED_SIGNATURE,
        known_selectors: Sequence[str] = (FT_ALLOCATED_SELECTOR,),
    ):
        self.rpc = rpc
        self.contract = contract
        self.signature = signature
        self.known_selectors = tuple(known_selectors)

    def selectors(self) -> List[str]:
        out = [s.lower() for s in self.known_selectors]
        try:
            derived = self.rpc.web3_sha3(self.signature)[:10]
        except RpcError:
            derived = ""
        if derived.startswith("0x") and len(derived) == 10 and derived not in out:
            out.append(derived)
        return out

    def resolve(self) -> Optional[int]:
        for selector in self.selectors():
            try:
                # Empty return data means the selector is absent; try the next one.
                value = decode_uint256(self.rpc.eth_call(self.contract, selector))
            except (RpcError, ValueError):
                continue
            if value > 0:
                return value
        return None


class BalanceFallbackStrategy(AllocationStrategy):
    name = SOURCE_BALANCE

    def __init__(self, rpc: FallbackRpc, token: str, holder: str):
        self.rpc = rpc
        self.token = token
        self.holder = holder

    def resolve(self) -> Optional[int]:
        return erc20_balance_of(self.rpc, self.token, self.holder)


@dataclass(frozen=True)
class AllocationResult:
    value: int
    source: str
    # (strategy name, outcome) for every strategy that ran, in order.
    attempts: Tuple[Tuple[str, str], ...] = ()


def resolve_allocation(
    strategies: Sequence[AllocationStrategy],
    *,
    progress: Callable[[str], None] = print,
) -> AllocationResult:
    attempts: List[Tuple[str, str]] = []
    for strategy in strategies:
        try:
            value = strategy.resolve()
        except Exception as e:
            progress(f"allocation strategy {strategy.name} failed: {e}")
            attempts.append((strategy.name, f"error: {e}"))
            continue
        if value is not None and value > 0:
            attempts.append((strategy.name, "ok"))
            return AllocationResult(value=value, source=strategy.name, attempts=tuple(attempts))
        attempts.append((strategy.name, "empty"))
    return AllocationResult(value=0, source=SOURCE_UNAVAILABLE, attempts=tuple(attempts))
