"""
Spending allowance calculation.

allowance = max(0, portfolio_value * max_spending_bps / 10000 - spent_in_window)

All values are integers in the module's fixed-point units (USD, 18 decimals);
division truncates like the contract does.
"""

from spending_oracle.engine.models import SubAccountState
from spending_oracle.utils.logging import get_logger

logger = get_logger(__name__)

BPS_DENOMINATOR = 10000


def max_spending(portfolio_value: int, max_spending_bps: int) -> int:
    """Spending cap for the window."""
    if portfolio_value < 0 or max_spending_bps < 0:
        raise ValueError("portfolio_value and max_spending_bps must be non-negative")
    return portfolio_value * max_spending_bps // BPS_DENOMINATOR


def calculate_spending_allowance(
    portfolio_value: int,
    max_spending_bps: int,
    total_spending_in_window: int,
) -> int:
    """
    Remaining spending allowance.

    Args:
        portfolio_value: Total vault value (USD, 18 decimals)
        max_spending_bps: Sub-account limit in basis points of the vault value
        total_spending_in_window: Spending already recorded in the window

    Returns:
        Allowance, never negative
    """
    if total_spending_in_window < 0:
        raise ValueError("total_spending_in_window must be non-negative")

    cap = max_spending(portfolio_value, max_spending_bps)
    allowance = max(cap - total_spending_in_window, 0)

    logger.info(
        "Allowance calculated",
        portfolio_value=portfolio_value,
        max_bps=max_spending_bps,
        max_spending=cap,
        spent=total_spending_in_window,
        allowance=allowance,
    )
    return allowance


def allowance_for_state(state: SubAccountState, portfolio_value: int, max_spending_bps: int) -> int:
    """Allowance for a freshly built sub-account state."""
    return calculate_spending_allowance(portfolio_value, max_spending_bps, state.total_spending_in_window)
