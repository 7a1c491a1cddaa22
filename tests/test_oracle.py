"""
Tests for the oracle runner against a fake module client.

Run with: pytest tests/test_oracle.py -v
"""

from unittest.mock import AsyncMock

import pytest

from spending_oracle.engine.models import OperationType
from spending_oracle.services.chain import SafeValue, SubAccountLimits
from spending_oracle.services.errors import ChainClientError
from spending_oracle.services.oracle import SpendingOracle

MODULE = "0x" + "f0" * 20
SUB_ACCOUNT = "0x" + "a1" * 20
OTHER_SUB_ACCOUNT = "0x" + "a2" * 20
USDC = "0x" + "12" * 20
DAI = "0x" + "13" * 20

ONE_USD = 10**18
T0 = 1_700_000_000
HEAD = 50_000


@pytest.fixture
def swap(make_operation):
    return make_operation(
        OperationType.SWAP,
        tokens_in=[USDC], amounts_in=[100],
        tokens_out=[DAI], amounts_out=[99],
        timestamp=T0, spending_cost=ONE_USD,
        block_number=HEAD - 10,
    )


@pytest.fixture
def client(swap):
    """Fake ModuleClient holding one swap by SUB_ACCOUNT."""
    fake = AsyncMock()
    fake.module_address = MODULE

    async def protocol_events(from_block, to_block, sub_account=None):
        events = [swap]
        if sub_account is not None:
            events = [e for e in events if e.sub_account == sub_account]
        return [e for e in events if from_block <= e.block_number <= to_block]

    fake.get_block_number.return_value = HEAD
    fake.get_safe_value.return_value = SafeValue(100 * ONE_USD, T0, 1)
    fake.get_subaccount_limits.return_value = SubAccountLimits(500, 86400)
    fake.get_active_subaccounts.return_value = [SUB_ACCOUNT]
    fake.query_protocol_events.side_effect = protocol_events
    fake.query_transfer_events.return_value = []
    fake.get_block_timestamp.return_value = T0 + 60
    fake.query_historical_acquired_tokens.return_value = set()
    fake.get_spending_allowance.return_value = 0
    fake.get_acquired_balances.return_value = {}
    return fake


@pytest.fixture
def submitter():
    fake = AsyncMock()
    fake.address = "0x" + "c0" * 20
    fake.submit.return_value = "0x" + "ab" * 32
    fake.wait_for_pending.return_value = (1, 0)
    return fake


@pytest.fixture
def oracle(client, submitter):
    return SpendingOracle(client, submitter)


class TestProcessSubaccount:
    """Test the per-sub-account pipeline."""

    async def test_submits_plan(self, oracle, client, submitter):
        plan = await oracle.process_subaccount(SUB_ACCOUNT, HEAD)

        # 5% of $100 minus $1 spent
        assert plan.new_allowance == 4 * ONE_USD
        assert plan.token_updates == [(DAI, 99)]
        submitter.submit.assert_awaited_once_with(plan)

    async def test_uses_doubled_lookback(self, oracle, client):
        from spending_oracle.config import settings

        await oracle.process_subaccount(SUB_ACCOUNT, HEAD)

        from_block, to_block, _ = client.query_protocol_events.await_args.args
        assert from_block == HEAD - 2 * settings.blocks_to_look_back
        assert to_block == HEAD

    async def test_no_changes_no_submit(self, oracle, client, submitter):
        client.get_spending_allowance.return_value = 4 * ONE_USD
        client.get_acquired_balances.return_value = {DAI: 99}

        plan = await oracle.process_subaccount(SUB_ACCOUNT, HEAD)

        assert plan is None
        submitter.submit.assert_not_awaited()

    async def test_module_is_never_processed(self, oracle, client, submitter):
        plan = await oracle.process_subaccount(MODULE.upper().replace("0X", "0x"), HEAD)

        assert plan is None
        client.get_subaccount_limits.assert_not_awaited()

    async def test_safe_value_failure_propagates(self, oracle, client, submitter):
        client.get_safe_value.side_effect = ChainClientError("rpc down")

        with pytest.raises(ChainClientError):
            await oracle.process_subaccount(SUB_ACCOUNT, HEAD)
        submitter.submit.assert_not_awaited()


class TestRefreshAll:
    """Test the periodic refresh."""

    async def test_processes_active_subaccounts(self, oracle, submitter):
        plans = await oracle.refresh_all()

        assert [p.sub_account for p in plans] == [SUB_ACCOUNT]
        submitter.wait_for_pending.assert_awaited_once()
        assert oracle.last_processed_block == HEAD

    async def test_one_failure_does_not_stop_others(self, oracle, client, submitter):
        client.get_active_subaccounts.return_value = [OTHER_SUB_ACCOUNT, SUB_ACCOUNT]

        async def limits(sub_account):
            if sub_account == OTHER_SUB_ACCOUNT:
                raise ChainClientError("boom", sub_account)
            return SubAccountLimits(500, 86400)

        client.get_subaccount_limits.side_effect = limits

        plans = await oracle.refresh_all()

        assert [p.sub_account for p in plans] == [SUB_ACCOUNT]
        submitter.wait_for_pending.assert_awaited_once()

    async def test_skipped_while_processing(self, oracle, client):
        async with oracle._lock:
            result = await oracle.refresh_all()

        assert result is None
        client.get_active_subaccounts.assert_not_awaited()


class TestPollForNewEvents:
    """Test incremental event polling."""

    async def test_first_poll_scans_lookback(self, oracle, client):
        from spending_oracle.config import settings

        plans = await oracle.poll_for_new_events()

        first_call = client.query_protocol_events.await_args_list[0]
        assert first_call.args == (HEAD - settings.blocks_to_look_back + 1, HEAD)
        assert [p.sub_account for p in plans] == [SUB_ACCOUNT]
        assert oracle.last_processed_block == HEAD

    async def test_no_new_blocks(self, oracle, client):
        oracle.last_processed_block = HEAD

        assert await oracle.poll_for_new_events() == []
        client.query_protocol_events.assert_not_awaited()

    async def test_range_without_events(self, oracle, client, submitter):
        oracle.last_processed_block = HEAD - 5

        assert await oracle.poll_for_new_events() == []
        submitter.wait_for_pending.assert_not_awaited()
        assert oracle.last_processed_block == HEAD

    async def test_failed_query_keeps_cursor(self, oracle, client):
        oracle.last_processed_block = HEAD - 100
        client.query_transfer_events.side_effect = ChainClientError("rpc down")

        with pytest.raises(ChainClientError):
            await oracle.poll_for_new_events()

        assert oracle.last_processed_block == HEAD - 100
        assert not oracle.is_processing

    async def test_skipped_while_processing(self, oracle, client):
        async with oracle._lock:
            assert await oracle.poll_for_new_events() is None
        client.get_block_number.assert_not_awaited()


class TestLifecycle:
    """Test start/stop."""

    async def test_start_and_stop(self, client, submitter):
        oracle = SpendingOracle(client, submitter, poll_interval=3600, refresh_interval=3600)

        await oracle.start()
        assert len(oracle._tasks) == 2
        client.get_active_subaccounts.assert_awaited_once()

        await oracle.stop()
        assert oracle._tasks == []
