"""
Spending oracle runner.

Two triggers drive reconciliation:
- a periodic refresh over every active sub-account
- event polling, which reprocesses only sub-accounts with new logs

Both share one lock. A trigger that finds the lock held is skipped, not
queued; the next tick picks up whatever it would have done.
"""

import asyncio
from typing import Iterable, Optional

from spending_oracle.config import settings
from spending_oracle.engine.models import normalize_address
from spending_oracle.engine.pricing import PriceCache
from spending_oracle.engine.state import build_subaccount_state
from spending_oracle.services.allowance import allowance_for_state
from spending_oracle.services.chain import ModuleClient
from spending_oracle.services.prices import ChainlinkPriceLoader
from spending_oracle.services.reconcile import WritePlan, prepare_batch_update
from spending_oracle.services.submitter import BatchSubmitter
from spending_oracle.utils.logging import LoggerMixin, cycle_context, log_context


class SpendingOracle(LoggerMixin):
    """Keeps on-chain allowances and acquired balances in line with the event log."""

    def __init__(
        self,
        client: ModuleClient,
        submitter: BatchSubmitter,
        price_loader: Optional[ChainlinkPriceLoader] = None,
        poll_interval: Optional[float] = None,
        refresh_interval: Optional[float] = None,
    ):
        self.client = client
        self.submitter = submitter
        self.price_loader = price_loader
        self.poll_interval = poll_interval or settings.poll_interval_seconds
        self.refresh_interval = refresh_interval or settings.refresh_interval_seconds

        self.last_processed_block: Optional[int] = None

        self._lock = asyncio.Lock()
        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def is_processing(self) -> bool:
        return self._lock.locked()

    def _is_module(self, address: str) -> bool:
        return normalize_address(address) == normalize_address(self.client.module_address)

    async def _load_prices(self, operations) -> Optional[PriceCache]:
        if self.price_loader is None:
            return None
        cache = PriceCache()
        tokens = {token for event in operations for token in event.tokens_in}
        await self.price_loader.prefetch(cache, tokens)
        return cache

    async def process_subaccount(
        self,
        sub_account: str,
        current_block: int,
        portfolio_value: Optional[int] = None,
    ) -> Optional[WritePlan]:
        """
        Rebuild one sub-account from its recent events and submit any changes.

        Args:
            sub_account: Sub-account address
            current_block: Head block; events from the lookback range up to it are replayed
            portfolio_value: Vault value, read from the module when not given

        Returns:
            The submitted WritePlan, or None when on-chain values are current
        """
        sub_account = normalize_address(sub_account)
        if self._is_module(sub_account):
            return None

        with log_context(sub_account=sub_account):
            if portfolio_value is None:
                portfolio_value = (await self.client.get_safe_value()).total_value_usd

            limits = await self.client.get_subaccount_limits(sub_account)
            from_block = max(current_block - settings.state_lookback_blocks, 0)

            operations = await self.client.query_protocol_events(from_block, current_block, sub_account)
            transfers = await self.client.query_transfer_events(from_block, current_block, sub_account)
            now = await self.client.get_block_timestamp(current_block)

            state = build_subaccount_state(
                operations,
                transfers,
                sub_account,
                current_timestamp=now,
                window_duration=limits.window_duration,
                prices=await self._load_prices(operations),
            )
            new_allowance = allowance_for_state(state, portfolio_value, limits.max_spending_bps)

            historical = await self.client.query_historical_acquired_tokens(sub_account, from_block, current_block)
            onchain_allowance = await self.client.get_spending_allowance(sub_account)
            onchain_balances = await self.client.get_acquired_balances(
                sub_account,
                sorted(set(state.acquired_balances) | historical),
            )

            plan = prepare_batch_update(
                sub_account,
                new_allowance,
                state.acquired_balances,
                onchain_allowance,
                onchain_balances,
                historical_tokens=historical,
                threshold_bps=settings.allowance_change_threshold_bps,
            )
            if plan is None:
                return None

            await self.submitter.submit(plan)
            return plan

    async def _process_many(self, sub_accounts: Iterable[str], current_block: int) -> list[WritePlan]:
        """Process sub-accounts in turn; one failure does not stop the rest."""
        portfolio_value = (await self.client.get_safe_value()).total_value_usd

        plans = []
        try:
            for sub_account in sub_accounts:
                try:
                    plan = await self.process_subaccount(sub_account, current_block, portfolio_value)
                except Exception as e:
                    self.log.error("Sub-account processing failed", sub_account=sub_account, error=str(e))
                    continue
                if plan is not None:
                    plans.append(plan)
        finally:
            await self.submitter.wait_for_pending()
        return plans

    async def refresh_all(self) -> Optional[list[WritePlan]]:
        """
        Reconcile every active sub-account.

        Returns:
            Submitted plans, or None when skipped because another cycle is running
        """
        if self._lock.locked():
            self.log.info("Refresh skipped, processing in progress")
            return None

        async with self._lock:
            current_block = await self.client.get_block_number()
            with cycle_context("refresh", current_block):
                sub_accounts = await self.client.get_active_subaccounts()
                self.log.info("Refreshing sub-accounts", count=len(sub_accounts))

                plans = await self._process_many(sub_accounts, current_block)
                if self.last_processed_block is None:
                    self.last_processed_block = current_block

                self.log.info("Refresh complete", updates=len(plans))
                return plans

    async def poll_for_new_events(self) -> Optional[list[WritePlan]]:
        """
        Process sub-accounts that emitted events since the last processed block.

        The cursor only advances after the range was read and processed, so a
        failed query is retried from the same block next time.
        """
        if self._lock.locked():
            self.log.debug("Poll skipped, processing in progress")
            return None

        async with self._lock:
            current_block = await self.client.get_block_number()
            if self.last_processed_block is None:
                self.last_processed_block = max(current_block - settings.blocks_to_look_back, 0)

            from_block = self.last_processed_block + 1
            if from_block > current_block:
                return []

            with cycle_context("poll", current_block):
                operations = await self.client.query_protocol_events(from_block, current_block)
                transfers = await self.client.query_transfer_events(from_block, current_block)

                affected = sorted({
                    normalize_address(event.sub_account)
                    for event in [*operations, *transfers]
                    if not self._is_module(event.sub_account)
                })

                plans: list[WritePlan] = []
                if affected:
                    self.log.info(
                        "New events found",
                        from_block=from_block,
                        sub_accounts=len(affected),
                    )
                    plans = await self._process_many(affected, current_block)

                self.last_processed_block = current_block
                return plans

    # ===================
    # Service lifecycle
    # ===================

    async def start(self) -> None:
        """Run an initial refresh, then start the polling and refresh loops."""
        if self._running:
            return

        self._running = True
        try:
            await self.refresh_all()
        except Exception as e:
            self.log.error("Initial refresh failed", error=str(e))

        self._tasks = [
            asyncio.create_task(self._poll_loop()),
            asyncio.create_task(self._refresh_loop()),
        ]
        self.log.info(
            "Spending oracle started",
            poll_interval=self.poll_interval,
            refresh_interval=self.refresh_interval,
            updater=self.submitter.address,
        )

    async def stop(self) -> None:
        """Stop both loops."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        self.log.info("Spending oracle stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.poll_for_new_events()
            except Exception as e:
                self.log.error("Polling error", error=str(e))

    async def _refresh_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.refresh_interval)
            try:
                await self.refresh_all()
            except Exception as e:
                self.log.error("Refresh error", error=str(e))
