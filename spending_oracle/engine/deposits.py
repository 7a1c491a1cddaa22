"""
Deposit-link bookkeeping.

A DEPOSIT creates one record per contributing input token. A later
WITHDRAW or CLAIM of that token at the same target is matched against the
records, oldest first, so the returned tokens inherit the acquisition
timestamp of whatever funded the deposit and the receipt tokens (aTokens,
LP tokens) are released from the acquired ledgers.

Records are drained but never removed.
"""

from dataclasses import dataclass, field
from typing import Optional

from spending_oracle.engine.models import DepositRecord, OperationEvent, normalize_address, same_address


@dataclass
class WithdrawalMatch:
    """Outcome of matching one withdrawn/claimed token against deposit records."""
    matched: int = 0
    remaining: int = 0
    inherited_timestamp: Optional[int] = None
    # (receipt token, amount) pairs to consume from the acquired ledgers
    receipt_consumption: list[tuple[str, int]] = field(default_factory=list)


def split_output(total: int, parts: int) -> list[int]:
    """Divide `total` into `parts` shares that sum exactly to `total`."""
    if parts <= 0:
        return []
    share, remainder = divmod(total, parts)
    return [share + (1 if i < remainder else 0) for i in range(parts)]


class DepositLinkTable:
    """Deposit records for one replay, in creation order."""

    def __init__(self):
        self.records: list[DepositRecord] = []

    def record_deposit(self, event: OperationEvent, original_acquisition_timestamp: int) -> list[DepositRecord]:
        """
        Create records for every input with a positive amount.

        Input i is paired with output i when that output exists. Input 0
        and every input past the last output fund output 0 together
        (LP-style deposit); its amount is divided evenly across their
        records so the shares sum to the observed output. With no outputs
        the records carry no receipt token.
        """
        contributing = [
            (index, token, amount)
            for index, (token, amount) in enumerate(event.inputs)
            if amount > 0
        ]
        if not contributing:
            return []

        output_count = len(event.tokens_out)
        if output_count == 0:
            outputs = [(None, 0)] * len(contributing)
        else:
            sharing = [index for index, _, _ in contributing if index == 0 or index >= output_count]
            shares = iter(split_output(event.amounts_out[0], len(sharing)))
            outputs = [
                (event.tokens_out[0], next(shares)) if index in sharing
                else (event.tokens_out[index], event.amounts_out[index])
                for index, _, _ in contributing
            ]

        created = []
        for (_, token_in, amount_in), (token_out, amount_out) in zip(contributing, outputs):
            record = DepositRecord(
                sub_account=normalize_address(event.sub_account),
                target=normalize_address(event.target),
                token_in=normalize_address(token_in),
                amount_in=amount_in,
                remaining_amount=amount_in,
                token_out=normalize_address(token_out) if token_out else None,
                amount_out=max(amount_out, 0),
                remaining_output_amount=max(amount_out, 0),
                timestamp=event.timestamp,
                original_acquisition_timestamp=original_acquisition_timestamp,
            )
            self.records.append(record)
            created.append(record)
        return created

    def _position_records(self, target: str, sub_account: str) -> list[DepositRecord]:
        return [
            record for record in self.records
            if same_address(record.target, target) and same_address(record.sub_account, sub_account)
        ]

    def match_withdrawal(self, event: OperationEvent, token: str, amount: int) -> WithdrawalMatch:
        """
        Drain deposit records for `token` at the event's target, oldest first.

        The receipt token of each touched record is released in proportion
        to the share of its input being withdrawn; a record whose input is
        fully drained releases all of its remaining receipt amount.
        """
        match = WithdrawalMatch(remaining=max(amount, 0))
        if match.remaining == 0:
            return match

        for record in self._position_records(event.target, event.sub_account):
            if match.remaining <= 0:
                break
            if record.token_in != normalize_address(token) or record.remaining_amount <= 0:
                continue

            take = min(match.remaining, record.remaining_amount)
            record.remaining_amount -= take
            match.remaining -= take
            match.matched += take

            if record.token_out and record.remaining_output_amount > 0:
                if record.remaining_amount == 0:
                    release = record.remaining_output_amount
                else:
                    release = min(record.amount_out * take // record.amount_in, record.remaining_output_amount)
                if release > 0:
                    record.remaining_output_amount -= release
                    match.receipt_consumption.append((record.token_out, release))

            if match.inherited_timestamp is None or record.original_acquisition_timestamp < match.inherited_timestamp:
                match.inherited_timestamp = record.original_acquisition_timestamp

        return match

    def has_position(self, target: str, sub_account: str) -> bool:
        """True if the sub-account ever deposited into this target."""
        return bool(self._position_records(target, sub_account))

    def oldest_position_timestamp(self, target: str, sub_account: str, default: int) -> int:
        """Oldest inherited acquisition time among the pair's records, capped at `default`."""
        oldest = default
        for record in self._position_records(target, sub_account):
            if record.original_acquisition_timestamp < oldest:
                oldest = record.original_acquisition_timestamp
        return oldest
