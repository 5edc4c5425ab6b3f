"""
One indexer run across all configured chains.

Chain heads are read concurrently, then every chain's burn scan and the primary-chain job
(PUT allocation, institutional discovery and balances) run concurrently. The run either
completes and yields a new state plus snapshot, or raises and yields nothing: the caller
persists both files only after `run_once` returns.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ft_supply.aggregate import ChainReading, MetricsSnapshot, PrimaryReading, build_snapshot
from ft_supply.allocation import (
    AllocationResult,
    BalanceFallbackStrategy,
    EventLedgerStrategy,
    SelectorProbeStrategy,
    resolve_allocation,
)
from ft_supply.burns import BurnResult, update_burned
from ft_supply.config import ChainDescriptor, IndexerConfig
from ft_supply.discovery import institutional_total, update_registry
from ft_supply.rpc import FallbackRpc, erc20_balance_of, erc20_decimals, erc20_total_supply
from ft_supply.state import (
    AddressRegistryState,
    AllocationLedgerState,
    PersistedState,
    load_state,
    save_state,
    write_snapshot,
)


RpcFactory = Callable[[ChainDescriptor], FallbackRpc]
Progress = Callable[[str], None]


def _quiet(_msg: str) -> None:
    return None


@dataclass(frozen=True)
class ChainHead:
    chain: ChainDescriptor
    latest_block: int
    total_supply: int
    msig_balance: int


@dataclass(frozen=True)
class PrimaryResult:
    reading: PrimaryReading
    allocation: AllocationResult
    ledger: AllocationLedgerState
    registry: AddressRegistryState


@dataclass(frozen=True)
class RunResult:
    state: PersistedState
    snapshot: MetricsSnapshot
    burns: Dict[str, BurnResult]
    primary: PrimaryResult


def default_rpc_factory(config: IndexerConfig) -> RpcFactory:
    return lambda chain: FallbackRpc(chain.rpcs, timeout_s=config.timeout_s)


def read_chain_head(config: IndexerConfig, chain: ChainDescriptor, rpc: FallbackRpc) -> ChainHead:
    latest = rpc.block_number()
    return ChainHead(
        chain=chain,
        latest_block=latest,
        total_supply=erc20_total_supply(rpc, config.token),
        msig_balance=erc20_balance_of(rpc, config.token, config.msig_wallet),
    )


def run_primary_job(
    config: IndexerConfig,
    rpc: FallbackRpc,
    latest_block: int,
    state: PersistedState,
    *,
    progress: Progress = print,
) -> PrimaryResult:
    chain = config.primary_chain
    ledger_strategy = EventLedgerStrategy(
        rpc, chain, config.put_manager, latest_block, state.ledger, progress=progress
    )
    allocation = resolve_allocation(
        [
            ledger_strategy,
            SelectorProbeStrategy(rpc, config.put_manager),
            BalanceFallbackStrategy(rpc, config.token, config.ft_put),
        ],
        progress=progress,
    )
    progress(f"[{chain.key}] allocated in PUTs: {allocation.value} ({allocation.source})")

    registry = update_registry(
        rpc,
        chain,
        config.token,
        config.msig_wallet,
        config.discovery_excluded,
        latest_block,
        state.registry,
        progress=progress,
    )
    institutional = institutional_total(rpc, config.token, registry.addresses)
    progress(f"[{chain.key}] institutional: {institutional} across {len(registry.addresses)} addresses")

    reading = PrimaryReading(
        decimals=erc20_decimals(rpc, config.token),
        in_puts=allocation.value,
        allocated_source=allocation.source,
        put_manager_balance=erc20_balance_of(rpc, config.token, config.put_manager),
        institutional=institutional,
    )
    return PrimaryResult(reading=reading, allocation=allocation, ledger=ledger_strategy.ledger, registry=registry)


def run_once(
    config: IndexerConfig,
    state: PersistedState,
    *,
    rpc_factory: Optional[RpcFactory] = None,
    updated_at: Optional[str] = None,
    progress: Optional[Progress] = None,
) -> RunResult:
    """Index every chain once. The input state is not modified."""
    if progress is None:
        progress = _quiet if config.quiet else print
    factory = rpc_factory or default_rpc_factory(config)
    rpcs = {c.key: factory(c) for c in config.chains}
    primary_key = config.primary

    with ThreadPoolExecutor(max_workers=config.worker_count) as pool:
        head_futures = {c.key: pool.submit(read_chain_head, config, c, rpcs[c.key]) for c in config.chains}
        heads = {key: f.result() for key, f in head_futures.items()}
        for head in heads.values():
            progress(f"[{head.chain.key}] head {head.latest_block:,}")

        burn_futures = {
            key: pool.submit(
                update_burned,
                rpcs[key],
                head.chain,
                config.token,
                head.latest_block,
                state.chain(key),
                progress=progress,
            )
            for key, head in heads.items()
        }
        primary_future = pool.submit(
            run_primary_job,
            config,
            rpcs[primary_key],
            heads[primary_key].latest_block,
            state,
            progress=progress,
        )
        burns = {key: f.result() for key, f in burn_futures.items()}
        primary = primary_future.result()

    readings = [
        ChainReading(
            key=key,
            label=head.chain.label,
            latest_block=head.latest_block,
            total_supply=head.total_supply,
            msig_balance=head.msig_balance,
            burned_wei=burns[key].state.burned_wei,
        )
        for key, head in heads.items()
    ]
    snapshot = build_snapshot(
        readings,
        primary_key,
        primary.reading,
        invariant_target_wei=config.max_supply_wei,
        updated_at=updated_at,
    )

    chains = dict(state.chains)
    chains.update({key: b.state for key, b in burns.items()})
    new_state = PersistedState(chains=chains, registry=primary.registry, ledger=primary.ledger)
    return RunResult(state=new_state, snapshot=snapshot, burns=burns, primary=primary)


def run_and_persist(
    config: IndexerConfig,
    *,
    rpc_factory: Optional[RpcFactory] = None,
    dry_run: bool = False,
    progress: Optional[Progress] = None,
) -> RunResult:
    state = load_state(config.state_path)
    result = run_once(config, state, rpc_factory=rpc_factory, progress=progress)
    if not dry_run:
        save_state(config.state_path, result.state)
        write_snapshot(config.metrics_path, result.snapshot)
    return result
