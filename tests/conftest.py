"""
Pytest configuration and fixtures.
"""

from typing import Callable

import pytest

from spending_oracle.engine.models import OperationEvent, OperationType, TransferEvent

SUB_ACCOUNT = "0x" + "a1" * 20
OTHER_SUB_ACCOUNT = "0x" + "a2" * 20
POOL = "0x" + "b1" * 20
OTHER_POOL = "0x" + "b2" * 20
ROUTER = "0x" + "b3" * 20


@pytest.fixture
def sub_account() -> str:
    """Provide the sub-account most tests replay."""
    return SUB_ACCOUNT


@pytest.fixture
def make_operation() -> Callable[..., OperationEvent]:
    """Factory for ProtocolExecution events with sensible defaults."""

    def _make(
        op_type: OperationType,
        tokens_in=(),
        amounts_in=(),
        tokens_out=(),
        amounts_out=(),
        timestamp: int = 0,
        spending_cost: int = 0,
        target: str = POOL,
        sub_account: str = SUB_ACCOUNT,
        block_number: int = None,
        log_index: int = 0,
    ) -> OperationEvent:
        return OperationEvent(
            sub_account=sub_account,
            target=target,
            op_type=op_type,
            tokens_in=tuple(tokens_in),
            amounts_in=tuple(amounts_in),
            tokens_out=tuple(tokens_out),
            amounts_out=tuple(amounts_out),
            spending_cost=spending_cost,
            timestamp=timestamp,
            block_number=timestamp if block_number is None else block_number,
            log_index=log_index,
        )

    return _make


@pytest.fixture
def make_transfer() -> Callable[..., TransferEvent]:
    """Factory for TransferExecuted events."""

    def _make(
        token: str,
        amount: int,
        timestamp: int = 0,
        spending_cost: int = 0,
        recipient: str = "0x" + "c1" * 20,
        sub_account: str = SUB_ACCOUNT,
        block_number: int = None,
        log_index: int = 0,
    ) -> TransferEvent:
        return TransferEvent(
            sub_account=sub_account,
            token=token,
            recipient=recipient,
            amount=amount,
            spending_cost=spending_cost,
            timestamp=timestamp,
            block_number=timestamp if block_number is None else block_number,
            log_index=log_index,
        )

    return _make
