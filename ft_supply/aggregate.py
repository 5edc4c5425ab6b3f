"""
Supply accounting snapshot.

    tradable(chain)  = supply - msig                       (clamped at 0)
    tradable(primary)= supply - msig - PUT holdings - institutional
    unallocated      = PUT holdings - in PUTs              (clamped at 0)
    circulating      = in PUTs + sum(tradable)
    non-circulating  = unallocated + sum(msig) + institutional
    final sum        = burned + circulating + non-circulating

Chain heads are read independently, so intermediate differences can go negative by a
few blocks' worth of transfers; they are clamped rather than reported.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from ft_supply.config import DEFAULT_CHAINS
from ft_supply.utils import floor_zero


BURNED_SOURCE = "event-indexed"


@dataclass(frozen=True)
class ChainReading:
    key: str
    label: str
    latest_block: int
    total_supply: int
    msig_balance: int
    burned_wei: int


@dataclass(frozen=True)
class PrimaryReading:
    decimals: int
    in_puts: int
    allocated_source: str
    put_manager_balance: int
    institutional: int


@dataclass(frozen=True)
class MetricsSnapshot:
    updated_at: str
    decimals: int
    allocated_source: str
    invariant_target_wei: int
    burned_source: str
    latest_blocks: Dict[str, int]
    burned: int
    circulating: int
    non_circulating: int
    in_puts: int
    tradable: int
    unallocated: int
    vc_msig: int
    institutional: int
    tradable_by_chain: Dict[str, int]
    final_sum: int


def _utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat().replace("+00:00", "Z")


def chain_tradable(reading: ChainReading, primary: Optional[PrimaryReading] = None) -> int:
    raw = reading.total_supply - reading.msig_balance
    if primary is not None:
        raw -= primary.put_manager_balance + primary.institutional
    return floor_zero(raw)


def build_snapshot(
    chains: Sequence[ChainReading],
    primary_key: str,
    primary: PrimaryReading,
    *,
    invariant_target_wei: int,
    updated_at: Optional[str] = None,
) -> MetricsSnapshot:
    if not any(c.key == primary_key for c in chains):
        raise ValueError(f"primary chain {primary_key!r} missing from readings")

    tradable_by_chain = {
        c.key: chain_tradable(c, primary if c.key == primary_key else None) for c in chains
    }
    tradable = sum(tradable_by_chain.values())
    msig = sum(c.msig_balance for c in chains)
    burned = sum(c.burned_wei for c in chains)

    unallocated = floor_zero(primary.put_manager_balance - primary.in_puts)
    non_circulating = unallocated + msig + primary.institutional
    circulating = primary.in_puts + tradable

    return MetricsSnapshot(
        updated_at=updated_at or _utc_now_iso(),
        decimals=primary.decimals,
        allocated_source=primary.allocated_source,
        invariant_target_wei=invariant_target_wei,
        burned_source=BURNED_SOURCE,
        latest_blocks={c.key: c.latest_block for c in chains},
        burned=burned,
        circulating=circulating,
        non_circulating=non_circulating,
        in_puts=primary.in_puts,
        tradable=tradable,
        unallocated=unallocated,
        vc_msig=msig,
        institutional=primary.institutional,
        tradable_by_chain=tradable_by_chain,
        final_sum=burned + circulating + non_circulating,
    )


def snapshot_to_json(snapshot: MetricsSnapshot) -> Dict[str, Any]:
    values: Dict[str, str] = {
        "burned": str(snapshot.burned),
        "circulating": str(snapshot.circulating),
        "nonCirculating": str(snapshot.non_circulating),
        "inPuts": str(snapshot.in_puts),
        "tradable": str(snapshot.tradable),
        "unallocated": str(snapshot.unallocated),
        "vcMsig": str(snapshot.vc_msig),
        "institutional": str(snapshot.institutional),
    }
    # The dashboard expects every supported chain's field, even when a run indexed a subset.
    for c in DEFAULT_CHAINS:
        values[c.snapshot_field] = str(snapshot.tradable_by_chain.get(c.key, 0))
    default_keys = {c.key for c in DEFAULT_CHAINS}
    for key, amount in snapshot.tradable_by_chain.items():
        if key not in default_keys:
            values["on" + key[:1].upper() + key[1:]] = str(amount)
    values["finalSum"] = str(snapshot.final_sum)

    return {
        "updatedAt": snapshot.updated_at,
        "decimals": snapshot.decimals,
        "meta": {
            "allocatedSource": snapshot.allocated_source,
            "invariantTargetWei": str(snapshot.invariant_target_wei),
            "burnedSource": snapshot.burned_source,
        },
        "latestBlocks": {k: str(v) for k, v in snapshot.latest_blocks.items()},
        "valuesWei": values,
    }
