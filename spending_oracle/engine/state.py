"""
Sub-account state reconstruction.

Replays a sub-account's ProtocolExecution and TransferExecuted events in
chronological order and derives:

- the spending total inside the rolling window
- per-token FIFO queues of acquired balances
- deposit records used to match withdrawals and claims

Acquired status rules:
- SWAP/DEPOSIT outputs are acquired. The share funded by acquired inputs
  inherits the oldest consumed acquisition time; the rest is stamped with
  the event time.
- WITHDRAW outputs are acquired only when matched to a deposit by the same
  sub-account at the same target; they inherit that deposit's acquisition time.
- CLAIM outputs follow the same matching, and an unmatched claim is still
  acquired when the sub-account holds any deposit at the target.
- Transfers out consume acquired balance.

The replay is pure: all state lives in locals and is returned, so a failed
cycle is retried by calling it again on a fresh read of the event log.
"""

from typing import Iterable, Optional

from spending_oracle.engine.deposits import DepositLinkTable
from spending_oracle.engine.events import normalize_events
from spending_oracle.engine.ledger import (
    TokenLedgers,
    add_to_queue,
    consume_from_queue,
    get_valid_balance,
    prune_expired_entries,
)
from spending_oracle.engine.models import (
    LedgerEntry,
    OperationEvent,
    OperationType,
    ReplayEvent,
    SpendingRecord,
    SubAccountState,
    TransferEvent,
    normalize_address,
)
from spending_oracle.engine.pricing import PriceCache, token_value_usd
from spending_oracle.utils.logging import get_logger

logger = get_logger(__name__)


def _acquired_weights(
    inputs: list[tuple[str, int, int]],
    prices: Optional[PriceCache],
) -> tuple[int, int]:
    """
    Numerator/denominator of the acquired ratio for one event.

    `inputs` holds (token, amount in, amount drawn from acquired ledgers).
    USD weighting is used only when every input token has a positive price;
    otherwise raw amounts are compared.
    """
    acquired = sum(consumed for _, _, consumed in inputs)
    total = sum(amount for _, amount, _ in inputs)

    if prices is None or acquired == 0 or acquired == total:
        return acquired, total

    token_prices = [prices.get(token) for token, _, _ in inputs]
    if any(price is None or price.price_usd <= 0 for price in token_prices):
        return acquired, total

    acquired_usd = sum(
        token_value_usd(consumed, price)
        for (_, _, consumed), price in zip(inputs, token_prices)
    )
    total_usd = sum(
        token_value_usd(amount, price)
        for (_, amount, _), price in zip(inputs, token_prices)
    )
    if total_usd <= 0:
        return acquired, total
    return acquired_usd, total_usd


class _Replay:
    """Mutable working set for a single build_subaccount_state call."""

    def __init__(
        self,
        sub_account: str,
        current_timestamp: int,
        window_duration: int,
        prices: Optional[PriceCache],
    ):
        self.state = SubAccountState(sub_account=normalize_address(sub_account))
        self.now = current_timestamp
        self.window = window_duration
        self.window_start = current_timestamp - window_duration
        self.prices = prices
        self.ledgers = TokenLedgers()
        self.deposits = DepositLinkTable()

    def apply(self, event: ReplayEvent) -> None:
        self._record_spending(event)

        if isinstance(event, OperationEvent):
            if event.op_type in (OperationType.SWAP, OperationType.DEPOSIT):
                self._apply_swap_or_deposit(event)
            elif event.op_type in (OperationType.WITHDRAW, OperationType.CLAIM):
                self._apply_withdraw_or_claim(event)
            elif event.op_type in (OperationType.APPROVE, OperationType.UNKNOWN):
                # Spending only; no tokens move
                pass
            else:
                raise TypeError(f"Unhandled operation type: {event.op_type!r}")
        elif isinstance(event, TransferEvent):
            self._apply_transfer(event)
        else:
            raise TypeError(f"Unhandled event type: {type(event).__name__}")

    def _record_spending(self, event: ReplayEvent) -> None:
        if event.spending_cost <= 0:
            return
        if not (self.window_start <= event.timestamp <= self.now):
            return
        self.state.spending_records.append(SpendingRecord(event.spending_cost, event.timestamp))
        self.state.total_spending_in_window += event.spending_cost

    def _apply_swap_or_deposit(self, event: OperationEvent) -> None:
        consumed: list[LedgerEntry] = []
        inputs: list[tuple[str, int, int]] = []

        for token, amount in event.inputs:
            if amount <= 0:
                continue
            result = consume_from_queue(self.ledgers.get(token), amount, event.timestamp, self.window)
            consumed.extend(result.consumed)
            inputs.append((token, amount, result.total))

        oldest_timestamp = min((entry.original_timestamp for entry in consumed), default=None)

        if event.op_type is OperationType.DEPOSIT:
            inherited = oldest_timestamp if oldest_timestamp is not None else event.timestamp
            records = self.deposits.record_deposit(event, inherited)
            logger.debug(
                "Deposit recorded",
                target=event.target,
                records=len(records),
                original_timestamp=inherited,
            )

        numerator, denominator = _acquired_weights(inputs, self.prices)

        for token_out, amount_out in event.outputs:
            if amount_out <= 0:
                continue

            from_acquired = 0
            if numerator > 0 and denominator > 0:
                from_acquired = min(amount_out * numerator // denominator, amount_out)
            newly_acquired = amount_out - from_acquired

            queue = self.ledgers.get(token_out)
            if from_acquired > 0:
                add_to_queue(queue, from_acquired, oldest_timestamp)
            add_to_queue(queue, newly_acquired, event.timestamp)

            logger.debug(
                "Output acquired",
                op=event.op_type.name,
                token=normalize_address(token_out),
                inherited=from_acquired,
                inherited_timestamp=oldest_timestamp,
                new=newly_acquired,
                timestamp=event.timestamp,
            )

    def _apply_withdraw_or_claim(self, event: OperationEvent) -> None:
        for token, amount in event.outputs:
            if amount <= 0:
                continue

            match = self.deposits.match_withdrawal(event, token, amount)

            for receipt_token, release in match.receipt_consumption:
                released = consume_from_queue(self.ledgers.get(receipt_token), release, event.timestamp, self.window)
                logger.debug(
                    "Receipt token released",
                    op=event.op_type.name,
                    token=receipt_token,
                    requested=release,
                    consumed=released.total,
                )

            if match.matched > 0:
                inherited = match.inherited_timestamp if match.inherited_timestamp is not None else event.timestamp
                add_to_queue(self.ledgers.get(token), match.matched, inherited)

            if match.remaining <= 0:
                continue

            if event.op_type is OperationType.CLAIM and self.deposits.has_position(event.target, event.sub_account):
                inherited = self.deposits.oldest_position_timestamp(event.target, event.sub_account, event.timestamp)
                add_to_queue(self.ledgers.get(token), match.remaining, inherited)
                logger.debug(
                    "Claim acquired through open position",
                    token=normalize_address(token),
                    amount=match.remaining,
                    inherited_timestamp=inherited,
                )
            else:
                logger.debug(
                    "Unmatched output not acquired",
                    op=event.op_type.name,
                    token=normalize_address(token),
                    amount=match.remaining,
                )

    def _apply_transfer(self, event: TransferEvent) -> None:
        if event.amount <= 0:
            return
        result = consume_from_queue(self.ledgers.get(event.token), event.amount, event.timestamp, self.window)
        logger.debug(
            "Transfer consumed acquired balance",
            token=normalize_address(event.token),
            amount=event.amount,
            consumed=result.total,
        )

    def finish(self) -> SubAccountState:
        for token in self.ledgers.touched_tokens:
            queue = self.ledgers.get(token)
            prune_expired_entries(queue, self.now, self.window)
            balance = get_valid_balance(queue, self.now, self.window)
            if balance > 0:
                self.state.acquired_balances[token] = balance

        self.state.acquired_queues = self.ledgers.as_dict()
        self.state.deposit_records = self.deposits.records
        return self.state


def build_subaccount_state(
    operations: Iterable[OperationEvent],
    transfers: Iterable[TransferEvent],
    sub_account: str,
    current_timestamp: int,
    window_duration: int,
    prices: Optional[PriceCache] = None,
) -> SubAccountState:
    """
    Rebuild a sub-account's spending and acquired balances from its events.

    Args:
        operations: ProtocolExecution events (any order, any sub-account)
        transfers: TransferExecuted events (any order, any sub-account)
        sub_account: Sub-account to rebuild
        current_timestamp: "Now", in seconds
        window_duration: Rolling window length in seconds
        prices: Optional price cache enabling USD-weighted acquired ratios

    Returns:
        SubAccountState with the window spending total and acquired balances

    Raises:
        EventValidationError: If an event record is inconsistent (raised
            before any event is replayed)
    """
    events = normalize_events(operations, transfers, sub_account)

    replay = _Replay(sub_account, current_timestamp, window_duration, prices)
    for event in events:
        replay.apply(event)
    state = replay.finish()

    logger.info(
        "State built",
        sub_account=state.sub_account,
        events=len(events),
        spending=state.total_spending_in_window,
        acquired_tokens=len(state.acquired_balances),
        deposits=len(state.deposit_records),
    )
    return state
