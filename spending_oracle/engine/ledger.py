"""
FIFO queues of acquired balances.

Each token has an ordered list of (amount, original_timestamp) entries.
Spending takes from the front, oldest first. Entries keep the timestamp at
which the tokens were first acquired, so a swap output that inherits that
timestamp expires together with the tokens that funded it.

Entries are not guaranteed to be in timestamp order (an inherited, older
timestamp can be appended after a newer entry), so expiry checks never
assume the head is the oldest entry.
"""

from dataclasses import dataclass, field
from typing import Optional

from spending_oracle.engine.models import LedgerEntry, normalize_address

AcquiredBalanceQueue = list[LedgerEntry]


@dataclass
class ConsumeResult:
    """Entries taken from a queue and the part of the request left unfilled."""
    consumed: list[LedgerEntry] = field(default_factory=list)
    remaining: int = 0

    @property
    def total(self) -> int:
        return sum(entry.amount for entry in self.consumed)

    @property
    def oldest_timestamp(self) -> Optional[int]:
        if not self.consumed:
            return None
        return min(entry.original_timestamp for entry in self.consumed)


def add_to_queue(queue: AcquiredBalanceQueue, amount: int, original_timestamp: int) -> None:
    """Append an acquired amount. Zero and negative amounts are ignored."""
    if amount <= 0:
        return
    queue.append(LedgerEntry(amount=amount, original_timestamp=original_timestamp))


def consume_from_queue(
    queue: AcquiredBalanceQueue,
    amount: int,
    timestamp: int,
    window_duration: int,
) -> ConsumeResult:
    """
    Take up to `amount` from the front of the queue.

    Expired entries met on the way are discarded without counting. The
    last entry touched is split in place when it holds more than needed.

    Args:
        queue: Queue to mutate
        amount: Amount requested
        timestamp: Time of the spending event (expiry is judged at this time)
        window_duration: Window length in seconds

    Returns:
        ConsumeResult with consumed entries (original timestamps preserved)
        and the unfulfilled remainder
    """
    result = ConsumeResult(remaining=max(amount, 0))
    expiry_threshold = timestamp - window_duration

    # Entries before `drained` are expired or fully taken; removed in one slice
    drained = 0
    while result.remaining > 0 and drained < len(queue):
        entry = queue[drained]

        if entry.original_timestamp < expiry_threshold:
            drained += 1
            continue

        if entry.amount <= result.remaining:
            result.consumed.append(LedgerEntry(entry.amount, entry.original_timestamp))
            result.remaining -= entry.amount
            drained += 1
        else:
            result.consumed.append(LedgerEntry(result.remaining, entry.original_timestamp))
            entry.amount -= result.remaining
            result.remaining = 0

    del queue[:drained]
    return result


def get_valid_balance(queue: AcquiredBalanceQueue, current_timestamp: int, window_duration: int) -> int:
    """Sum of entries that have not expired. Does not mutate the queue."""
    expiry_threshold = current_timestamp - window_duration
    return sum(
        entry.amount for entry in queue
        if entry.original_timestamp >= expiry_threshold
    )


def prune_expired_entries(queue: AcquiredBalanceQueue, current_timestamp: int, window_duration: int) -> None:
    """Remove every expired entry, wherever it sits in the queue."""
    expiry_threshold = current_timestamp - window_duration
    queue[:] = [entry for entry in queue if entry.original_timestamp >= expiry_threshold]


class TokenLedgers:
    """
    Token -> queue map owned by one replay.

    Keys are canonical addresses. Every token looked up through `get` is
    remembered as touched so the final balance pass can visit it, including
    tokens whose queue ended up empty.
    """

    def __init__(self):
        self._queues: dict[str, AcquiredBalanceQueue] = {}
        self._touched: set[str] = set()

    def get(self, token: str) -> AcquiredBalanceQueue:
        key = normalize_address(token)
        self._touched.add(key)
        return self._queues.setdefault(key, [])

    @property
    def touched_tokens(self) -> list[str]:
        return sorted(self._touched)

    def as_dict(self) -> dict[str, AcquiredBalanceQueue]:
        return dict(self._queues)
