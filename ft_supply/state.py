"""
Resumable indexer state: per-chain burn cursors, the PUT allocation ledger and the
institutional address registry.

The whole document is read once at the start of a run and written once at the end.
Cursors are tagged values (`Uninitialized` / `Checkpoint`) in memory; on disk a cursor
is a decimal block number string or null.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Union

from ft_supply.aggregate import MetricsSnapshot, snapshot_to_json
from ft_supply.utils import read_json, write_json_atomic


class StateError(RuntimeError):
    pass


@dataclass(frozen=True)
class Uninitialized:
    pass


@dataclass(frozen=True)
class Checkpoint:
    block: int


Cursor = Union[Uninitialized, Checkpoint]

UNINITIALIZED = Uninitialized()


def start_block(cursor: Cursor, latest_block: int, lookback: int) -> int:
    """First block an incremental job scans: one past the checkpoint, or a bounded backfill."""
    if isinstance(cursor, Checkpoint):
        return cursor.block + 1
    return max(0, latest_block - lookback)


def advance(cursor: Cursor, latest_block: int) -> Checkpoint:
    # A lagging endpoint can report a head below the stored checkpoint; never move backwards.
    if isinstance(cursor, Checkpoint) and cursor.block > latest_block:
        return cursor
    return Checkpoint(latest_block)


@dataclass(frozen=True)
class ChainCursorState:
    cursor: Cursor = UNINITIALIZED
    burned_wei: int = 0


@dataclass(frozen=True)
class AllocationLedgerState:
    cursor: Cursor = UNINITIALIZED
    invested_wei: int = 0
    divested_wei: int = 0
    withdrawn_wei: int = 0


@dataclass(frozen=True)
class AddressRegistryState:
    cursor: Cursor = UNINITIALIZED
    addresses: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class PersistedState:
    chains: Dict[str, ChainCursorState] = field(default_factory=dict)
    registry: AddressRegistryState = AddressRegistryState()
    ledger: AllocationLedgerState = AllocationLedgerState()

    def chain(self, key: str) -> ChainCursorState:
        return self.chains.get(key, ChainCursorState())


def _cursor_from_json(raw: Any) -> Cursor:
    if raw is None:
        return UNINITIALIZED
    try:
        block = int(str(raw))
    except ValueError as e:
        raise StateError(f"invalid block cursor: {raw!r}") from e
    # Older state files used "-1" to mean "never scanned".
    return UNINITIALIZED if block < 0 else Checkpoint(block)


def _cursor_to_json(cursor: Cursor) -> Optional[str]:
    return str(cursor.block) if isinstance(cursor, Checkpoint) else None


def _amount_from_json(raw: Any, name: str) -> int:
    try:
        value = int(str(raw if raw is not None else "0"))
    except ValueError as e:
        raise StateError(f"invalid amount for {name}: {raw!r}") from e
    if value < 0:
        raise StateError(f"negative amount for {name}: {raw!r}")
    return value


def _object(raw: Any, name: str) -> Dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise StateError(f"{name} must be an object, got {type(raw).__name__}")
    return raw


def state_from_json(data: Any) -> PersistedState:
    if not isinstance(data, dict):
        raise StateError(f"state document must be an object, got {type(data).__name__}")

    chains: Dict[str, ChainCursorState] = {}
    for key, raw in _object(data.get("chains"), "chains").items():
        raw = _object(raw, f"chains.{key}")
        chains[str(key)] = ChainCursorState(
            cursor=_cursor_from_json(raw.get("lastBurnBlock")),
            burned_wei=_amount_from_json(raw.get("burnedWei"), f"chains.{key}.burnedWei"),
        )

    vc = _object(data.get("vc"), "vc")
    addresses = vc.get("addresses") or []
    if not isinstance(addresses, list):
        raise StateError(f"vc.addresses must be a list, got {type(addresses).__name__}")
    registry = AddressRegistryState(
        cursor=_cursor_from_json(vc.get("lastBlock")),
        addresses=frozenset(str(a).lower() for a in addresses),
    )

    alloc = _object(data.get("ftAlloc"), "ftAlloc")
    ledger = AllocationLedgerState(
        cursor=_cursor_from_json(alloc.get("lastBlock")),
        invested_wei=_amount_from_json(alloc.get("investedWei"), "ftAlloc.investedWei"),
        divested_wei=_amount_from_json(alloc.get("divestedWei"), "ftAlloc.divestedWei"),
        withdrawn_wei=_amount_from_json(alloc.get("withdrawnWei"), "ftAlloc.withdrawnWei"),
    )
    return PersistedState(chains=chains, registry=registry, ledger=ledger)


def state_to_json(state: PersistedState) -> Dict[str, Any]:
    return {
        "chains": {
            key: {
                "lastBurnBlock": _cursor_to_json(c.cursor),
                "burnedWei": str(c.burned_wei),
            }
            for key, c in sorted(state.chains.items())
        },
        "vc": {
            "lastBlock": _cursor_to_json(state.registry.cursor),
            "addresses": sorted(state.registry.addresses),
        },
        "ftAlloc": {
            "lastBlock": _cursor_to_json(state.ledger.cursor),
            "investedWei": str(state.ledger.invested_wei),
            "divestedWei": str(state.ledger.divested_wei),
            "withdrawnWei": str(state.ledger.withdrawn_wei),
        },
    }


def load_state(path: Path) -> PersistedState:
    # A missing file is a cold start; an unreadable one must not reset cumulative burns.
    if not path.exists():
        return PersistedState()
    try:
        data = read_json(path)
    except (OSError, json.JSONDecodeError) as e:
        raise StateError(f"cannot read state file {path}: {e}") from e
    return state_from_json(data)


def save_state(path: Path, state: PersistedState) -> None:
    write_json_atomic(path, state_to_json(state))


def write_snapshot(path: Path, snapshot: MetricsSnapshot) -> None:
    write_json_atomic(path, snapshot_to_json(snapshot))
