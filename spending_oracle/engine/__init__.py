"""
Acquired-balance reconciliation engine.

Pure functions over in-memory event records: no chain access, no I/O.
"""

from spending_oracle.engine.deposits import DepositLinkTable, WithdrawalMatch
from spending_oracle.engine.events import normalize_events
from spending_oracle.engine.ledger import (
    ConsumeResult,
    TokenLedgers,
    add_to_queue,
    consume_from_queue,
    get_valid_balance,
    prune_expired_entries,
)
from spending_oracle.engine.models import (
    DepositRecord,
    EventValidationError,
    LedgerEntry,
    OperationEvent,
    OperationType,
    ReplayEvent,
    SpendingRecord,
    SubAccountState,
    TransferEvent,
    normalize_address,
)
from spending_oracle.engine.pricing import PriceCache, TokenPrice, token_value_usd
from spending_oracle.engine.state import build_subaccount_state

__all__ = [
    "ConsumeResult",
    "DepositLinkTable",
    "DepositRecord",
    "EventValidationError",
    "LedgerEntry",
    "OperationEvent",
    "OperationType",
    "PriceCache",
    "ReplayEvent",
    "SpendingRecord",
    "SubAccountState",
    "TokenLedgers",
    "TokenPrice",
    "TransferEvent",
    "WithdrawalMatch",
    "add_to_queue",
    "build_subaccount_state",
    "consume_from_queue",
    "get_valid_balance",
    "normalize_address",
    "normalize_events",
    "prune_expired_entries",
    "token_value_usd",
]
