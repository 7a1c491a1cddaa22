"""
Tests for logging configuration and context helpers.
"""

import pytest
import structlog
from structlog.contextvars import clear_contextvars, get_contextvars

from spending_oracle.utils.logging import (
    MAX_SAFE_INTEGER,
    cycle_context,
    log_context,
    setup_logging,
    stringify_large_ints,
)


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()
    clear_contextvars()


class TestStringifyLargeInts:
    """Test uint256-safe rendering of integers."""

    def test_large_amount_becomes_string(self):
        event_dict = {"event": "Plan", "balance": 2**60, "count": 3}

        result = stringify_large_ints(None, "info", event_dict)

        assert result["balance"] == str(2**60)
        assert result["count"] == 3

    def test_boundary_and_negative(self):
        event_dict = {"safe": MAX_SAFE_INTEGER, "unsafe": -(MAX_SAFE_INTEGER + 1)}

        result = stringify_large_ints(None, "info", event_dict)

        assert result["safe"] == MAX_SAFE_INTEGER
        assert result["unsafe"] == str(-(MAX_SAFE_INTEGER + 1))

    def test_bools_untouched(self):
        result = stringify_large_ints(None, "info", {"confirmed": True})
        assert result["confirmed"] is True


class TestContext:
    """Test static and per-cycle context binding."""

    def test_setup_binds_static_context(self):
        setup_logging("INFO", json_output=True, chain_id=1, oracle_module="0x" + "f0" * 20)

        assert get_contextvars() == {"chain_id": 1, "oracle_module": "0x" + "f0" * 20}

    def test_setup_clears_previous_context(self):
        structlog.contextvars.bind_contextvars(stale=True)

        setup_logging("INFO", json_output=True)

        assert get_contextvars() == {}

    def test_cycle_context_scoped(self):
        with cycle_context("poll", 123):
            assert get_contextvars() == {"trigger": "poll", "head_block": 123}
            with log_context(sub_account="0xabc"):
                assert get_contextvars()["sub_account"] == "0xabc"
        assert get_contextvars() == {}

    def test_json_output_keeps_large_amounts_exact(self, capsys):
        setup_logging("INFO", json_output=True)

        structlog.get_logger().info("Balance", amount=10**30 + 1)

        assert f'"amount": "{10**30 + 1}"' in capsys.readouterr().out
