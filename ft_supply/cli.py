#!/usr/bin/env python3
"""
FT supply indexer.

Scans FT burns on every configured chain, resolves the amount allocated into PUTs,
discovers institutional wallets fed by the VC multisig, and writes:

- the resumable state document (default: data/state.json)
- the public metrics snapshot (default: public/data/metrics.json)

Both files are written once, at the end of a successful run. A failed run writes nothing;
the next invocation resumes from the previous state.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from ft_supply.aggregate import snapshot_to_json
from ft_supply.config import ConfigError, load_config
from ft_supply.indexer import run_and_persist
from ft_supply.rpc import RpcError
from ft_supply.state import StateError


def _csv(value: str) -> List[str]:
    return [x.strip() for x in value.split(",") if x.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ft-supply-indexer", description="Index FT supply metrics across chains.")
    parser.add_argument("--state-json", default=None, help="state file (env FT_STATE_PATH, default data/state.json)")
    parser.add_argument(
        "--metrics-json",
        default=None,
        help="snapshot file (env FT_METRICS_PATH, default public/data/metrics.json)",
    )
    parser.add_argument("--chains", type=_csv, default=None, help="comma-separated chain keys (env FT_CHAINS)")
    parser.add_argument("--workers", type=int, default=0, help="0 = one per chain plus one")
    parser.add_argument("--dry-run", action="store_true", help="print the snapshot instead of writing files")
    parser.add_argument("--quiet", action="store_true")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(
            chain_keys=args.chains,
            state_path=args.state_json,
            metrics_path=args.metrics_json,
            workers=args.workers,
            quiet=args.quiet,
        )
        result = run_and_persist(config, dry_run=args.dry_run)
    except (ConfigError, StateError, RpcError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    if args.dry_run:
        print(json.dumps(snapshot_to_json(result.snapshot), indent=2))
        return 0

    if not config.quiet:
        print(f"wrote: {config.state_path}")
        print(f"wrote: {config.metrics_path}")
    print(f"Indexed metrics at {result.snapshot.updated_at}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
