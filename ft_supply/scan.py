from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from ft_supply.rpc import FallbackRpc, RpcUnavailable


PRUNED_MARKERS = (
    "pruned",
    "missing trie node",
    "state is not available",
    "history is not available",
)


@dataclass(frozen=True)
class LogBatch:
    from_block: int
    to_block: int
    logs: List[Dict[str, Any]]


def iter_block_ranges(from_block: int, to_block: int, chunk_size: int) -> Iterator[Tuple[int, int]]:
    """Inclusive sub-ranges of at most `chunk_size` blocks covering [from_block, to_block] exactly."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1 (got {chunk_size})")
    start = max(0, int(from_block))
    while start <= to_block:
        end = min(start + chunk_size - 1, to_block)
        yield start, end
        start = end + 1


def scan_logs(
    rpc: FallbackRpc,
    *,
    address: str,
    topics: Sequence[Optional[str]],
    from_block: int,
    to_block: int,
    chunk_size: int,
) -> Iterator[LogBatch]:
    for start, end in iter_block_ranges(from_block, to_block, chunk_size):
        logs = rpc.get_logs(
            {
                "address": address,
                "topics": list(topics),
                "fromBlock": hex(start),
                "toBlock": hex(end),
            }
        )
        yield LogBatch(from_block=start, to_block=end, logs=logs)


def is_pruned_error(exc: BaseException) -> bool:
    err: Optional[BaseException] = exc
    while err is not None:
        msg = str(err).lower()
        if any(m in msg for m in PRUNED_MARKERS):
            return True
        err = err.last_error if isinstance(err, RpcUnavailable) else None
    return False
