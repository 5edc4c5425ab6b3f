"""Tests for incremental burn detection."""

import pytest

from conftest import E18, FakeRpc, burn_log, event_log, word
from ft_supply.burns import TRANSFER_TOPIC, is_bridge_transaction, update_burned
from ft_supply.config import FT_TOKEN
from ft_supply.rpc import RpcError
from ft_supply.state import UNINITIALIZED, ChainCursorState, Checkpoint


def _bridge_receipt(tx: str, burn: dict) -> dict:
    # OFT send: the burn Transfer plus another FT event in the same receipt.
    oft_sent = {
        "address": FT_TOKEN,
        "topics": ["0x" + "ee" * 32],
        "data": word(0),
        "transactionHash": tx,
    }
    return {"transactionHash": tx, "logs": [burn, oft_sent]}


def test_transfer_topic_is_erc20_transfer():
    assert TRANSFER_TOPIC == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def test_bridge_transaction_excluded_entirely(chain, progress):
    """A burn whose receipt carries a non-Transfer FT log is not counted."""
    genuine = burn_log(950, "0xaa", 5 * E18)
    bridged = burn_log(960, "0xbb", 7 * E18)
    rpc = FakeRpc(head=1_000, logs=[genuine, bridged], receipts={"0xbb": _bridge_receipt("0xbb", bridged)})
    rpc.auto_receipts()

    result = update_burned(rpc, chain, FT_TOKEN, 1_000, ChainCursorState(), progress=progress)

    assert result.delta_wei == 5 * E18
    assert result.state.burned_wei == 5 * E18
    assert result.txs_included == 1
    assert result.txs_excluded == 1


def test_foreign_contract_logs_do_not_exclude():
    receipt = {
        "logs": [
            burn_log(1, "0x01", 1),
            event_log(1, "0x01", "Swap(uint256)", 1, address="0x" + "12" * 20),
        ]
    }
    assert not is_bridge_transaction(receipt, FT_TOKEN)


def test_multiple_burn_logs_in_one_tx_are_summed(chain, progress):
    logs = [burn_log(900, "0xcc", 2 * E18), burn_log(900, "0xcc", 3 * E18)]
    rpc = FakeRpc(head=1_000, logs=logs).auto_receipts()

    result = update_burned(rpc, chain, FT_TOKEN, 1_000, ChainCursorState(), progress=progress)

    assert result.state.burned_wei == 5 * E18
    assert len(rpc.methods("eth_getTransactionReceipt")) == 1


def test_first_run_backfills_lookback_window_only(chain, progress):
    old = burn_log(100, "0x01", 1 * E18)
    recent = burn_log(600, "0x02", 2 * E18)
    rpc = FakeRpc(head=1_000, logs=[old, recent]).auto_receipts()

    result = update_burned(rpc, chain, FT_TOKEN, 1_000, ChainCursorState(), progress=progress)

    assert result.from_block == 500
    assert rpc.log_ranges[0][0] == 500
    assert rpc.log_ranges[-1][1] == 1_000
    assert result.state.burned_wei == 2 * E18
    assert result.state.cursor == Checkpoint(1_000)


def test_resumes_after_checkpoint_and_accumulates(chain, progress):
    rpc = FakeRpc(head=1_200, logs=[burn_log(1_000, "0x01", 9), burn_log(1_150, "0x02", 4)]).auto_receipts()
    prev = ChainCursorState(cursor=Checkpoint(1_000), burned_wei=100)

    result = update_burned(rpc, chain, FT_TOKEN, 1_200, prev, progress=progress)

    assert rpc.log_ranges == [(1_001, 1_100), (1_101, 1_200)]
    assert result.state == ChainCursorState(cursor=Checkpoint(1_200), burned_wei=104)


def test_unchanged_head_is_idempotent(chain, progress):
    rpc = FakeRpc(head=1_000, logs=[burn_log(990, "0x01", 9)]).auto_receipts()
    prev = ChainCursorState(cursor=Checkpoint(1_000), burned_wei=50)

    result = update_burned(rpc, chain, FT_TOKEN, 1_000, prev, progress=progress)

    assert result.state == prev
    assert rpc.requests == []


def test_lagging_head_never_moves_cursor_back(chain, progress):
    rpc = FakeRpc(head=900)
    prev = ChainCursorState(cursor=Checkpoint(1_000), burned_wei=50)

    result = update_burned(rpc, chain, FT_TOKEN, 900, prev, progress=progress)

    assert result.state.cursor == Checkpoint(1_000)
    assert result.state.burned_wei == 50


def test_error_mid_scan_propagates(chain, progress):
    rpc = FakeRpc(head=1_300, logs=[burn_log(1_050, "0x01", 9)]).auto_receipts()
    rpc.fail_logs = lambda flt, lo, hi: RpcError("rate limited") if lo > 1_100 else None
    prev = ChainCursorState(cursor=Checkpoint(1_000), burned_wei=50)

    with pytest.raises(RpcError):
        update_burned(rpc, chain, FT_TOKEN, 1_300, prev, progress=progress)


def test_missing_receipt_is_an_error(chain, progress):
    rpc = FakeRpc(head=1_000, logs=[burn_log(990, "0x01", 9)])

    with pytest.raises(RpcError, match="missing receipt"):
        update_burned(rpc, chain, FT_TOKEN, 1_000, ChainCursorState(), progress=progress)


def test_pruned_history_on_first_run_skips_to_head(chain, progress, messages):
    """Cold start: an unreachable early range is skipped, the rest near head is still scanned."""
    rpc = FakeRpc(head=1_000, logs=[burn_log(550, "0x01", 1), burn_log(950, "0x02", 2)]).auto_receipts()
    rpc.fail_logs = lambda flt, lo, hi: RpcError("history has been pruned") if lo < 800 else None

    result = update_burned(rpc, chain, FT_TOKEN, 1_000, ChainCursorState(cursor=UNINITIALIZED), progress=progress)

    assert result.pruned_range == (500, 899)
    assert rpc.log_ranges == [(900, 999), (1_000, 1_000)]
    assert result.state == ChainCursorState(cursor=Checkpoint(1_000), burned_wei=2)
    assert any("pruned" in m for m in messages)


def test_pruned_history_keeps_delta_scanned_before_the_gap(chain, progress):
    rpc = FakeRpc(head=1_000, logs=[burn_log(520, "0x01", 1), burn_log(950, "0x02", 2)]).auto_receipts()
    rpc.fail_logs = lambda flt, lo, hi: RpcError("pruned") if 600 <= lo < 800 else None

    result = update_burned(rpc, chain, FT_TOKEN, 1_000, ChainCursorState(), progress=progress)

    assert result.pruned_range == (600, 899)
    assert result.state.burned_wei == 3


def test_pruned_history_with_checkpoint_is_fatal(chain, progress):
    rpc = FakeRpc(head=1_000)
    rpc.fail_logs = lambda flt, lo, hi: RpcError("history has been pruned")
    prev = ChainCursorState(cursor=Checkpoint(400), burned_wei=7)

    with pytest.raises(RpcError):
        update_burned(rpc, chain, FT_TOKEN, 1_000, prev, progress=progress)


def test_pruned_near_head_cannot_loop(chain, progress):
    rpc = FakeRpc(head=1_000)
    rpc.fail_logs = lambda flt, lo, hi: RpcError("pruned")

    with pytest.raises(RpcError):
        update_burned(rpc, chain, FT_TOKEN, 1_000, ChainCursorState(), progress=progress)
