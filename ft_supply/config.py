from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple

from ft_supply.utils import env, env_list, normalize_address


FT_TOKEN = "0x5dd1a7a369e8273371d2dbf9d83356057088082c"
# PUT manager: its FT balance is the PUT mechanism's holdings, part allocated, part not.
PUT_MANAGER = "0xba49d0ac42f4fba4e24a8677a22218a4df75ebaa"
FT_PUT = "0xa4215daaf3745e14e96e169e0e7706c479ce04f2"
MSIG_WALLET = "0x22246a9183ce2ce6e2c2a9973f94aea91435017c"

MAX_SUPPLY_WEI = 10_000_000_000 * 10**18

PRIMARY_CHAIN = "ethereum"

DEFAULT_STATE_PATH = "data/state.json"
DEFAULT_METRICS_PATH = "public/data/metrics.json"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ChainDescriptor:
    key: str
    label: str
    rpcs: Tuple[str, ...]
    lookback: int
    chunk_size: int

    def __post_init__(self) -> None:
        if not self.rpcs:
            raise ConfigError(f"{self.key}: no RPC endpoints configured")
        if self.chunk_size < 1:
            raise ConfigError(f"{self.key}: chunk_size must be >= 1 (got {self.chunk_size})")
        if self.lookback < 0:
            raise ConfigError(f"{self.key}: lookback must be >= 0 (got {self.lookback})")

    @property
    def snapshot_field(self) -> str:
        # ethereum -> onEthereum, bnb -> onBnb
        return "on" + self.key[:1].upper() + self.key[1:]


DEFAULT_CHAINS: Tuple[ChainDescriptor, ...] = (
    ChainDescriptor(
        key="ethereum",
        label="Ethereum",
        rpcs=("https://ethereum-rpc.publicnode.com", "https://cloudflare-eth.com"),
        lookback=220_000,
        chunk_size=40_000,
    ),
    ChainDescriptor(
        key="sonic",
        label="Sonic",
        rpcs=("https://rpc.soniclabs.com",),
        lookback=900_000,
        chunk_size=45_000,
    ),
    ChainDescriptor(
        key="base",
        label="Base",
        rpcs=("https://base-rpc.publicnode.com", "https://mainnet.base.org"),
        lookback=900_000,
        chunk_size=40_000,
    ),
    ChainDescriptor(
        key="bnb",
        label="BNB",
        rpcs=("https://bsc-rpc.publicnode.com", "https://bsc-dataseed.binance.org"),
        lookback=80_000,
        chunk_size=8_000,
    ),
    ChainDescriptor(
        key="avalanche",
        label="Avalanche",
        rpcs=("https://avalanche-c-chain-rpc.publicnode.com", "https://api.avax.network/ext/bc/C/rpc"),
        lookback=700_000,
        chunk_size=40_000,
    ),
)


@dataclass(frozen=True)
class IndexerConfig:
    chains: Tuple[ChainDescriptor, ...] = DEFAULT_CHAINS
    primary: str = PRIMARY_CHAIN
    token: str = FT_TOKEN
    put_manager: str = PUT_MANAGER
    ft_put: str = FT_PUT
    msig_wallet: str = MSIG_WALLET
    max_supply_wei: int = MAX_SUPPLY_WEI
    state_path: Path = Path(DEFAULT_STATE_PATH)
    metrics_path: Path = Path(DEFAULT_METRICS_PATH)
    workers: int = 0
    quiet: bool = False
    timeout_s: int = 45
    # Destinations of multisig transfers that are never counted as institutional wallets.
    discovery_excluded: Tuple[str, ...] = (PUT_MANAGER,)

    def __post_init__(self) -> None:
        keys = [c.key for c in self.chains]
        if len(set(keys)) != len(keys):
            raise ConfigError(f"duplicate chain keys: {keys}")
        if self.primary not in keys:
            raise ConfigError(f"primary chain {self.primary!r} is not configured (chains: {keys})")
        for name in ("token", "put_manager", "ft_put", "msig_wallet"):
            try:
                normalize_address(getattr(self, name))
            except ValueError as e:
                raise ConfigError(f"{name}: {e}") from e

    @property
    def primary_chain(self) -> ChainDescriptor:
        return self.chain(self.primary)

    def chain(self, key: str) -> ChainDescriptor:
        for c in self.chains:
            if c.key == key:
                return c
        raise ConfigError(f"unknown chain: {key}")

    @property
    def worker_count(self) -> int:
        # One worker per chain pipeline plus one for the primary-chain job.
        return self.workers if self.workers > 0 else len(self.chains) + 1


def _select_chains(chains: Sequence[ChainDescriptor], keys: Sequence[str]) -> Tuple[ChainDescriptor, ...]:
    known = {c.key: c for c in chains}
    unknown = [k for k in keys if k not in known]
    if unknown:
        raise ConfigError(f"unknown chain key(s): {', '.join(unknown)} (known: {', '.join(known)})")
    wanted = set(keys)
    return tuple(c for c in chains if c.key in wanted)


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    *,
    chain_keys: Optional[Sequence[str]] = None,
    state_path: Optional[str] = None,
    metrics_path: Optional[str] = None,
    workers: int = 0,
    quiet: bool = False,
) -> IndexerConfig:
    """Build the run configuration from defaults, environment and explicit overrides.

    Environment:
    - FT_RPC_<CHAIN>: comma-separated endpoints replacing the chain's defaults
    - FT_CHAINS: comma-separated subset of chain keys
    - FT_STATE_PATH / FT_METRICS_PATH: output locations
    """
    environ = os.environ if environ is None else environ

    chains = []
    for c in DEFAULT_CHAINS:
        override = env_list(environ, f"FT_RPC_{c.key.upper()}")
        chains.append(replace(c, rpcs=tuple(override)) if override else c)

    keys = list(chain_keys) if chain_keys else env_list(environ, "FT_CHAINS")
    selected = _select_chains(chains, keys) if keys else tuple(chains)

    return IndexerConfig(
        chains=selected,
        state_path=Path(state_path or env(environ, "FT_STATE_PATH", DEFAULT_STATE_PATH)),
        metrics_path=Path(metrics_path or env(environ, "FT_METRICS_PATH", DEFAULT_METRICS_PATH)),
        workers=int(workers),
        quiet=bool(quiet),
    )
