from __future__ import annotations

from typing import Callable, Iterable

from ft_supply.burns import TRANSFER_TOPIC
from ft_supply.config import ChainDescriptor
from ft_supply.rpc import FallbackRpc, erc20_balance_of
from ft_supply.scan import scan_logs
from ft_supply.state import AddressRegistryState, advance, start_block
from ft_supply.utils import ZERO_ADDRESS, address_to_topic, normalize_address, topic_to_address


def update_registry(
    rpc: FallbackRpc,
    chain: ChainDescriptor,
    token: str,
    source_wallet: str,
    excluded: Iterable[str],
    latest_block: int,
    prev: AddressRegistryState,
    *,
    progress: Callable[[str], None] = print,
) -> AddressRegistryState:
    """Add every wallet the source wallet sent FT to since the registry checkpoint."""
    from_block = start_block(prev.cursor, latest_block, chain.lookback)
    if from_block > latest_block:
        return prev

    source = normalize_address(source_wallet)
    skip = {ZERO_ADDRESS, source} | {normalize_address(a) for a in excluded}
    found = set(prev.addresses)

    for batch in scan_logs(
        rpc,
        address=token,
        topics=[TRANSFER_TOPIC, address_to_topic(source)],
        from_block=from_block,
        to_block=latest_block,
        chunk_size=chain.chunk_size,
    ):
        before = len(found)
        for log in batch.logs:
            topics = log.get("topics") or []
            if len(topics) < 3 or log.get("removed"):
                continue
            to = topic_to_address(topics[2])
            if to not in skip:
                found.add(to)
        progress(
            f"[{chain.key}] msig transfers {batch.from_block:,}..{batch.to_block:,}: "
            f"{len(batch.logs)} logs, {len(found) - before} new addresses"
        )

    return AddressRegistryState(cursor=advance(prev.cursor, latest_block), addresses=frozenset(found))


def institutional_total(rpc: FallbackRpc, token: str, addresses: Iterable[str]) -> int:
    # Balances are read fresh every run; any failing read fails the run.
    return sum(erc20_balance_of(rpc, token, a) for a in sorted(addresses))
