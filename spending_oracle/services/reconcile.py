"""
Diff between computed state and the values already published on-chain.

Decides whether a batchUpdate is needed and which token balances it must
carry, including zeroing stale balances for tokens that dropped out of
the computed set (expired or no longer matched).
"""

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from spending_oracle.engine.models import normalize_address
from spending_oracle.utils.logging import get_logger

logger = get_logger(__name__)

BPS_DENOMINATOR = 10000


@dataclass
class WritePlan:
    """Arguments for one batchUpdate(subAccount, allowance, tokens, balances) call."""
    sub_account: str
    new_allowance: int
    tokens: list[str] = field(default_factory=list)
    balances: list[int] = field(default_factory=list)
    allowance_changed: bool = False
    stale_tokens: list[str] = field(default_factory=list)

    @property
    def token_updates(self) -> list[tuple[str, int]]:
        return list(zip(self.tokens, self.balances))


def allowance_changed(new_allowance: int, onchain_allowance: int, threshold_bps: int = 0) -> bool:
    """True when the difference exceeds `threshold_bps` of the on-chain value."""
    diff = abs(new_allowance - onchain_allowance)
    threshold = onchain_allowance * threshold_bps // BPS_DENOMINATOR
    return diff > threshold


def prepare_batch_update(
    sub_account: str,
    new_allowance: int,
    acquired_balances: Mapping[str, int],
    onchain_allowance: int,
    onchain_balances: Mapping[str, int],
    historical_tokens: Iterable[str] = (),
    threshold_bps: int = 0,
) -> Optional[WritePlan]:
    """
    Build the write plan for a sub-account, or None if nothing changed.

    Args:
        sub_account: Sub-account address
        new_allowance: Freshly computed allowance
        acquired_balances: Freshly computed token -> acquired balance
        onchain_allowance: Allowance currently stored by the module
        onchain_balances: Token -> acquired balance currently stored
            (tokens missing from the mapping read as 0)
        historical_tokens: Tokens that ever had an acquired balance published
        threshold_bps: Allowance tolerance in basis points

    Returns:
        WritePlan carrying every computed token plus zeroed stale tokens
    """
    onchain = {normalize_address(token): value for token, value in onchain_balances.items()}
    computed = {normalize_address(token): value for token, value in acquired_balances.items()}

    plan = WritePlan(
        sub_account=normalize_address(sub_account),
        new_allowance=new_allowance,
        allowance_changed=allowance_changed(new_allowance, onchain_allowance, threshold_bps),
    )

    balances_changed = False
    for token, balance in computed.items():
        if balance != onchain.get(token, 0):
            balances_changed = True
        plan.tokens.append(token)
        plan.balances.append(balance)

    candidates = {normalize_address(token) for token in historical_tokens} | set(onchain)
    for token in sorted(candidates):
        if token in computed:
            continue
        if onchain.get(token, 0) > 0:
            logger.info("Clearing stale acquired balance", token=token, onchain=onchain[token])
            balances_changed = True
            plan.tokens.append(token)
            plan.balances.append(0)
            plan.stale_tokens.append(token)

    if not plan.allowance_changed and not balances_changed:
        logger.debug(
            "No changes to publish",
            sub_account=plan.sub_account,
            allowance=new_allowance,
            onchain_allowance=onchain_allowance,
            tokens=len(plan.tokens),
        )
        return None

    logger.info(
        "Batch update prepared",
        sub_account=plan.sub_account,
        allowance=new_allowance,
        onchain_allowance=onchain_allowance,
        tokens=len(plan.tokens),
        stale=len(plan.stale_tokens),
    )
    return plan
