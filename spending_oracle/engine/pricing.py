"""
USD pricing used to weight mixed acquired/original inputs.

Prices are 18-decimal fixed point integers. The cache is an explicit object
handed to the state builder; there is no module-level price state.
"""

from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from spending_oracle.engine.models import normalize_address
from spending_oracle.utils.logging import get_logger

logger = get_logger(__name__)

PRICE_DECIMALS = 18


@dataclass(frozen=True)
class TokenPrice:
    price_usd: int  # USD per whole token, 18 decimals
    decimals: int   # token decimals


def token_value_usd(amount: int, price: TokenPrice) -> int:
    """USD value (18 decimals) of a raw token amount."""
    return amount * price.price_usd // (10 ** price.decimals)


PriceLoader = Callable[[str], Optional[TokenPrice]]


class PriceCache:
    """
    Read-through token -> TokenPrice cache.

    The loader is called at most once per token. A loader failure or a
    `None` result is remembered as a miss, which makes the state builder
    fall back to amount weighting for events involving that token.
    """

    def __init__(self, loader: Optional[PriceLoader] = None):
        self._loader = loader
        self._prices: dict[str, Optional[TokenPrice]] = {}

    @classmethod
    def from_mapping(cls, prices: Mapping[str, TokenPrice]) -> "PriceCache":
        cache = cls()
        for token, price in prices.items():
            cache.set(token, price)
        return cache

    def set(self, token: str, price: Optional[TokenPrice]) -> None:
        self._prices[normalize_address(token)] = price

    def get(self, token: str) -> Optional[TokenPrice]:
        key = normalize_address(token)
        if key in self._prices:
            return self._prices[key]

        price = None
        if self._loader is not None:
            try:
                price = self._loader(key)
            except Exception as e:
                logger.warning("Price lookup failed", token=key, error=str(e))
                price = None
        self._prices[key] = price
        return price

    def missing(self, tokens) -> list[str]:
        """Canonical tokens that have never been looked up or set."""
        keys = {normalize_address(token) for token in tokens}
        return sorted(key for key in keys if key not in self._prices)

    def __contains__(self, token: str) -> bool:
        return self._prices.get(normalize_address(token)) is not None

    def __len__(self) -> int:
        return sum(1 for price in self._prices.values() if price is not None)
