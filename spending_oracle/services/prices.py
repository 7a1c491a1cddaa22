"""
Chainlink-backed token prices.

Feeds are configured per token (PRICE_FEEDS). Answers are rescaled to 18
decimals and paired with the token's ERC20 decimals so the state builder
can value mixed inputs in USD.
"""

from typing import Iterable, Optional

from web3 import AsyncWeb3

from spending_oracle.abi import CHAINLINK_AGGREGATOR_ABI, ERC20_DECIMALS_ABI
from spending_oracle.config import PriceFeedConfig, settings
from spending_oracle.engine.models import normalize_address
from spending_oracle.engine.pricing import PRICE_DECIMALS, PriceCache, TokenPrice
from spending_oracle.utils.logging import LoggerMixin


def scale_price(answer: int, feed_decimals: int) -> int:
    """Rescale a feed answer to PRICE_DECIMALS."""
    if feed_decimals < PRICE_DECIMALS:
        return answer * 10 ** (PRICE_DECIMALS - feed_decimals)
    return answer // 10 ** (feed_decimals - PRICE_DECIMALS)


class ChainlinkPriceLoader(LoggerMixin):
    """Loads TokenPrices for configured tokens from Chainlink aggregators."""

    def __init__(
        self,
        web3: AsyncWeb3,
        feeds: Optional[list[PriceFeedConfig]] = None,
    ):
        self.web3 = web3
        feeds = settings.price_feeds if feeds is None else feeds
        self._feeds = {normalize_address(feed.address): feed for feed in feeds}
        # Token decimals never change, cache across cycles
        self._token_decimals: dict[str, int] = {}

    async def _token_decimals_for(self, token: str) -> int:
        if token not in self._token_decimals:
            contract = self.web3.eth.contract(
                address=AsyncWeb3.to_checksum_address(token),
                abi=ERC20_DECIMALS_ABI,
            )
            self._token_decimals[token] = int(await contract.functions.decimals().call())
        return self._token_decimals[token]

    async def load(self, token: str) -> Optional[TokenPrice]:
        """
        Price for one token, or None when it has no feed or the feed is unusable.

        A non-positive answer is treated as no price.
        """
        key = normalize_address(token)
        feed = self._feeds.get(key)
        if feed is None:
            return None

        aggregator = self.web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(feed.price_feed_address),
            abi=CHAINLINK_AGGREGATOR_ABI,
        )
        _, answer, _, updated_at, _ = await aggregator.functions.latestRoundData().call()
        feed_decimals = int(await aggregator.functions.decimals().call())

        if int(answer) <= 0:
            self.log.warning("Non-positive feed answer", token=key, symbol=feed.symbol, answer=int(answer))
            return None

        price = TokenPrice(
            price_usd=scale_price(int(answer), feed_decimals),
            decimals=await self._token_decimals_for(key),
        )
        self.log.debug(
            "Price loaded",
            token=key,
            symbol=feed.symbol,
            price_usd=price.price_usd,
            updated_at=int(updated_at),
        )
        return price

    async def prefetch(self, cache: PriceCache, tokens: Iterable[str]) -> None:
        """
        Fill `cache` for every token not yet looked up.

        Failures are cached as misses so a broken feed only disables USD
        weighting for the events that involve it.
        """
        for token in cache.missing(tokens):
            try:
                price = await self.load(token)
            except Exception as e:
                self.log.warning("Price fetch failed", token=token, error=str(e))
                price = None
            cache.set(token, price)
