"""
Tests for the FIFO acquired-balance ledger.

Run with: pytest tests/test_ledger.py -v
"""

from spending_oracle.engine.ledger import (
    TokenLedgers,
    add_to_queue,
    consume_from_queue,
    get_valid_balance,
    prune_expired_entries,
)
from spending_oracle.engine.models import LedgerEntry

WINDOW = 86400


class TestAddToQueue:
    """Test appending acquired amounts."""

    def test_appends_in_order(self):
        queue = []
        add_to_queue(queue, 100, 10)
        add_to_queue(queue, 50, 5)

        assert queue == [LedgerEntry(100, 10), LedgerEntry(50, 5)]

    def test_ignores_zero_and_negative(self):
        queue = []
        add_to_queue(queue, 0, 10)
        add_to_queue(queue, -3, 10)
        assert queue == []


class TestConsumeFromQueue:
    """Test FIFO consumption with expiry."""

    def test_splits_last_entry(self):
        """Partial consumption leaves the remainder in place."""
        queue = [LedgerEntry(100, 1000), LedgerEntry(50, 2000)]

        result = consume_from_queue(queue, 120, 3000, WINDOW)

        assert result.consumed == [LedgerEntry(100, 1000), LedgerEntry(20, 2000)]
        assert result.remaining == 0
        assert result.total == 120
        assert result.oldest_timestamp == 1000
        assert queue == [LedgerEntry(30, 2000)]

    def test_reports_unfilled_remainder(self):
        queue = [LedgerEntry(40, 1000)]

        result = consume_from_queue(queue, 100, 1000, WINDOW)

        assert result.total == 40
        assert result.remaining == 60
        assert queue == []

    def test_skips_expired_entries(self):
        """Expired entries are discarded, not counted."""
        queue = [LedgerEntry(100, 0), LedgerEntry(50, WINDOW + 10)]

        result = consume_from_queue(queue, 60, WINDOW + 100, WINDOW)

        assert result.consumed == [LedgerEntry(50, WINDOW + 10)]
        assert result.remaining == 10
        assert queue == []

    def test_skips_expired_entry_between_fresh_ones(self):
        """An inherited old timestamp can sit mid-queue; it is dropped, not spent."""
        queue = [LedgerEntry(10, 2000), LedgerEntry(5, 0), LedgerEntry(7, 2000)]

        result = consume_from_queue(queue, 15, 1000 + WINDOW, WINDOW)

        assert result.consumed == [LedgerEntry(10, 2000), LedgerEntry(5, 2000)]
        assert result.remaining == 0
        assert queue == [LedgerEntry(2, 2000)]

    def test_long_queue(self):
        """Interleaved expired entries across a long queue are drained in one pass."""
        queue = [LedgerEntry(1, 2000 if i % 2 == 0 else 0) for i in range(10_000)]

        result = consume_from_queue(queue, 4000, 1000 + WINDOW, WINDOW)

        assert result.total == 4000
        assert len(result.consumed) == 4000
        assert result.remaining == 0
        # The 4000th fresh entry sits at index 7998
        assert len(queue) == 10_000 - 7999
        assert queue[0] == LedgerEntry(1, 0)

    def test_entry_at_window_edge_is_valid(self):
        """An entry stamped exactly now - window has not expired."""
        queue = [LedgerEntry(10, 1000)]

        result = consume_from_queue(queue, 10, 1000 + WINDOW, WINDOW)

        assert result.total == 10

    def test_empty_queue(self):
        result = consume_from_queue([], 10, 0, WINDOW)
        assert result.consumed == []
        assert result.remaining == 10
        assert result.oldest_timestamp is None


class TestBalanceAndPrune:
    """Test balance queries and pruning."""

    def test_valid_balance_ignores_expired(self):
        queue = [LedgerEntry(5, 0), LedgerEntry(7, 200)]
        now = 100 + WINDOW

        assert get_valid_balance(queue, now, WINDOW) == 7
        # Query does not mutate
        assert len(queue) == 2

    def test_valid_balance_ignores_expired_mid_queue(self):
        queue = [LedgerEntry(10, 2000), LedgerEntry(5, 0), LedgerEntry(7, 2000)]

        assert get_valid_balance(queue, 1000 + WINDOW, WINDOW) == 17
        assert len(queue) == 3

    def test_prune_scans_whole_queue(self):
        """An expired entry behind a fresh one is still pruned."""
        queue = [LedgerEntry(7, 500), LedgerEntry(5, 0), LedgerEntry(3, 600)]

        prune_expired_entries(queue, 400 + WINDOW, WINDOW)

        assert queue == [LedgerEntry(7, 500), LedgerEntry(3, 600)]


class TestTokenLedgers:
    """Test the per-replay token map."""

    def test_keys_are_normalized(self):
        ledgers = TokenLedgers()
        ledgers.get("0xABCDEF" + "0" * 34).append(LedgerEntry(1, 1))

        assert ledgers.get("0xabcdef" + "0" * 34) == [LedgerEntry(1, 1)]
        assert ledgers.touched_tokens == ["0xabcdef" + "0" * 34]

    def test_touched_includes_empty_queues(self):
        ledgers = TokenLedgers()
        ledgers.get("0x" + "1" * 40)
        ledgers.get("0x" + "2" * 40).append(LedgerEntry(1, 1))

        assert ledgers.touched_tokens == ["0x" + "1" * 40, "0x" + "2" * 40]
        assert set(ledgers.as_dict()) == set(ledgers.touched_tokens)
