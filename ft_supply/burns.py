"""
Incremental burn accounting for one chain.

A burn is an FT `Transfer` to the zero address. OFT bridge transfers also burn on the
source chain, but those transactions always emit other FT events next to the Transfer
(the bridge send event), so any transaction whose receipt carries an FT log with a
topic0 other than Transfer is dropped as a whole.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ft_supply.config import ChainDescriptor
from ft_supply.rpc import FallbackRpc, RpcError
from ft_supply.scan import is_pruned_error, scan_logs
from ft_supply.state import ChainCursorState, Uninitialized, advance, start_block
from ft_supply.utils import ZERO_ADDRESS, address_to_topic, decode_uint256, keccak_hex


TRANSFER_TOPIC = keccak_hex("Transfer(address,address,uint256)")


@dataclass(frozen=True)
class BurnResult:
    state: ChainCursorState
    delta_wei: int = 0
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    logs_matched: int = 0
    txs_included: int = 0
    txs_excluded: int = 0
    pruned_range: Optional[Tuple[int, int]] = None


def is_bridge_transaction(receipt: Dict[str, Any], token: str) -> bool:
    token = token.lower()
    for log in receipt.get("logs") or []:
        if str(log.get("address") or "").lower() != token:
            continue
        topics = log.get("topics") or []
        topic0 = str(topics[0]).lower() if topics else ""
        if topic0 and topic0 != TRANSFER_TOPIC:
            return True
    return False


def _group_by_tx(logs: List[Dict[str, Any]]) -> "OrderedDict[str, List[Dict[str, Any]]]":
    by_tx: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
    for log in logs:
        if log.get("removed"):
            continue
        tx_hash = str(log.get("transactionHash") or "").lower()
        if not tx_hash:
            continue
        by_tx.setdefault(tx_hash, []).append(log)
    return by_tx


def classify_burn_logs(rpc: FallbackRpc, token: str, logs: List[Dict[str, Any]]) -> Tuple[int, int, int]:
    """Sum burn amounts of non-bridge transactions. Returns (amount, included txs, excluded txs)."""
    amount = 0
    included = 0
    excluded = 0
    for tx_hash, tx_logs in _group_by_tx(logs).items():
        receipt = rpc.get_transaction_receipt(tx_hash)
        if receipt is None:
            raise RpcError(f"missing receipt for {tx_hash}")
        if is_bridge_transaction(receipt, token):
            excluded += 1
            continue
        included += 1
        for log in tx_logs:
            amount += decode_uint256(log.get("data"))
    return amount, included, excluded


def update_burned(
    rpc: FallbackRpc,
    chain: ChainDescriptor,
    token: str,
    latest_block: int,
    prev: ChainCursorState,
    *,
    progress: Callable[[str], None] = print,
) -> BurnResult:
    from_block = start_block(prev.cursor, latest_block, chain.lookback)
    if from_block > latest_block:
        return BurnResult(state=prev)

    topics = [TRANSFER_TOPIC, None, address_to_topic(ZERO_ADDRESS)]
    delta = 0
    matched = 0
    included = 0
    excluded = 0
    pruned_range: Optional[Tuple[int, int]] = None

    # Start of the first sub-range that has not been fully classified yet.
    next_block = from_block
    while True:
        try:
            for batch in scan_logs(
                rpc,
                address=token,
                topics=topics,
                from_block=next_block,
                to_block=latest_block,
                chunk_size=chain.chunk_size,
            ):
                amount, inc, exc = classify_burn_logs(rpc, token, batch.logs)
                delta += amount
                matched += len(batch.logs)
                included += inc
                excluded += exc
                next_block = batch.to_block + 1
                progress(
                    f"[{chain.key}] burns {batch.from_block:,}..{batch.to_block:,}: "
                    f"{len(batch.logs)} logs, {inc} burn txs, {exc} bridge txs"
                )
            break
        except RpcError as e:
            if not (isinstance(prev.cursor, Uninitialized) and is_pruned_error(e)):
                raise
            restart = max(0, latest_block - chain.chunk_size)
            if restart <= next_block:
                raise
            progress(f"[{chain.key}] history pruned at {next_block:,}; skipping to {restart:,}")
            pruned_range = (next_block, restart - 1)
            next_block = restart

    state = ChainCursorState(cursor=advance(prev.cursor, latest_block), burned_wei=prev.burned_wei + delta)
    return BurnResult(
        state=state,
        delta_wei=delta,
        from_block=from_block,
        to_block=latest_block,
        logs_matched=matched,
        txs_included=included,
        txs_excluded=excluded,
        pruned_range=pruned_range,
    )
