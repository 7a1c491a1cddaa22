"""
Data model for the acquired-balance reconciliation engine.

Everything here is plain in-memory data. Events are immutable records
supplied by the chain collaborators; ledgers and deposit records are owned
by a single replay call and returned inside the final SubAccountState.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional, Union


class OperationType(IntEnum):
    """Operation kinds as encoded (uint8) by the module's ProtocolExecution event."""
    UNKNOWN = 0
    SWAP = 1
    DEPOSIT = 2
    WITHDRAW = 3
    CLAIM = 4
    APPROVE = 5


class EventValidationError(ValueError):
    """An event record is internally inconsistent and cannot be replayed."""

    def __init__(self, message: str, block_number: Optional[int] = None, log_index: Optional[int] = None):
        self.message = message
        self.block_number = block_number
        self.log_index = log_index
        location = ""
        if block_number is not None:
            location = f" (block {block_number}, log {log_index})"
        super().__init__(f"{message}{location}")


def normalize_address(address: str) -> str:
    """Canonical form used for every address-keyed lookup."""
    value = address.strip().lower()
    if not value.startswith("0x"):
        value = "0x" + value
    return value


def same_address(a: str, b: str) -> bool:
    return normalize_address(a) == normalize_address(b)


@dataclass(frozen=True)
class OperationEvent:
    """A ProtocolExecution event: one permitted DeFi operation by a sub-account."""
    sub_account: str
    target: str
    op_type: OperationType
    tokens_in: tuple[str, ...]
    amounts_in: tuple[int, ...]
    tokens_out: tuple[str, ...]
    amounts_out: tuple[int, ...]
    spending_cost: int
    timestamp: int
    block_number: int
    log_index: int

    @property
    def inputs(self) -> list[tuple[str, int]]:
        return list(zip(self.tokens_in, self.amounts_in))

    @property
    def outputs(self) -> list[tuple[str, int]]:
        return list(zip(self.tokens_out, self.amounts_out))


@dataclass(frozen=True)
class TransferEvent:
    """A TransferExecuted event: tokens sent out of the vault by a sub-account."""
    sub_account: str
    token: str
    recipient: str
    amount: int
    spending_cost: int
    timestamp: int
    block_number: int
    log_index: int


# Tagged variant consumed by the replay loop
ReplayEvent = Union[OperationEvent, TransferEvent]


@dataclass
class LedgerEntry:
    """Acquired amount plus the time it was originally acquired (drives expiry)."""
    amount: int
    original_timestamp: int


@dataclass
class DepositRecord:
    """Links a deposited input token to the receipt token the protocol returned."""
    sub_account: str
    target: str
    token_in: str
    amount_in: int
    remaining_amount: int
    token_out: Optional[str]
    amount_out: int
    remaining_output_amount: int
    timestamp: int
    original_acquisition_timestamp: int

    @property
    def is_drained(self) -> bool:
        return self.remaining_amount <= 0


@dataclass
class SpendingRecord:
    amount: int
    timestamp: int


@dataclass
class SubAccountState:
    """Result of one replay for one sub-account."""
    sub_account: str
    total_spending_in_window: int = 0
    spending_records: list[SpendingRecord] = field(default_factory=list)
    deposit_records: list[DepositRecord] = field(default_factory=list)
    # Token -> FIFO queue, kept for inspection/debugging
    acquired_queues: dict[str, list[LedgerEntry]] = field(default_factory=dict)
    # Token -> strictly positive unexpired acquired balance
    acquired_balances: dict[str, int] = field(default_factory=dict)

    def acquired_balance(self, token: str) -> int:
        """Published acquired balance for a token (0 when absent)."""
        return self.acquired_balances.get(normalize_address(token), 0)

    def queue(self, token: str) -> list[LedgerEntry]:
        return self.acquired_queues.get(normalize_address(token), [])
