"""
Event ingestion: validation and chronological merge.

All records are validated before replay starts so an inconsistent event
is reported up front instead of leaving other tokens' ledgers half updated.
"""

import dataclasses
from typing import Iterable, Optional

from spending_oracle.engine.models import (
    EventValidationError,
    OperationEvent,
    OperationType,
    ReplayEvent,
    TransferEvent,
    same_address,
)
from spending_oracle.utils.logging import get_logger

logger = get_logger(__name__)

_KIND_RANK = {OperationEvent: 0, TransferEvent: 1}


def validate_operation_event(event: OperationEvent) -> OperationEvent:
    """Check array shapes and amounts; returns the event with a typed op_type."""
    where = {"block_number": event.block_number, "log_index": event.log_index}

    try:
        op_type = OperationType(int(event.op_type))
    except (TypeError, ValueError):
        raise EventValidationError(f"Unknown operation type {event.op_type!r}", **where)

    if len(event.tokens_in) != len(event.amounts_in):
        raise EventValidationError(
            f"tokens_in has {len(event.tokens_in)} entries but amounts_in has {len(event.amounts_in)}",
            **where,
        )
    if len(event.tokens_out) != len(event.amounts_out):
        raise EventValidationError(
            f"tokens_out has {len(event.tokens_out)} entries but amounts_out has {len(event.amounts_out)}",
            **where,
        )
    if any(amount < 0 for amount in (*event.amounts_in, *event.amounts_out)):
        raise EventValidationError("Negative token amount", **where)
    if event.spending_cost < 0:
        raise EventValidationError("Negative spending cost", **where)

    if op_type is not event.op_type:
        event = dataclasses.replace(event, op_type=op_type)
    return event


def validate_transfer_event(event: TransferEvent) -> TransferEvent:
    where = {"block_number": event.block_number, "log_index": event.log_index}
    if event.amount < 0:
        raise EventValidationError("Negative transfer amount", **where)
    if event.spending_cost < 0:
        raise EventValidationError("Negative spending cost", **where)
    return event


def replay_order_key(event: ReplayEvent) -> tuple:
    """(timestamp, block, log index), then kind and content so ties never depend on input order."""
    return (
        event.timestamp,
        event.block_number,
        event.log_index,
        _KIND_RANK[type(event)],
        repr(event),
    )


def normalize_events(
    operations: Iterable[OperationEvent],
    transfers: Iterable[TransferEvent],
    sub_account: Optional[str] = None,
) -> list[ReplayEvent]:
    """
    Validate both streams and merge them into one replay sequence.

    Args:
        operations: ProtocolExecution events
        transfers: TransferExecuted events
        sub_account: When given, only this sub-account's events are kept

    Returns:
        Events sorted by replay_order_key

    Raises:
        EventValidationError: If any record is internally inconsistent
    """
    merged: list[ReplayEvent] = []

    for event in operations:
        if sub_account is not None and not same_address(event.sub_account, sub_account):
            continue
        merged.append(validate_operation_event(event))

    for event in transfers:
        if sub_account is not None and not same_address(event.sub_account, sub_account):
            continue
        merged.append(validate_transfer_event(event))

    merged.sort(key=replay_order_key)
    logger.debug("Events normalized", sub_account=sub_account, events=len(merged))
    return merged
