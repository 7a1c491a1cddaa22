"""
Spending Oracle - Main Entry Point

Off-chain service that rebuilds sub-account spending and acquired balances
from DeFiInteractorModule events and publishes them with batchUpdate.
"""

import asyncio
import signal
import sys

from web3 import AsyncWeb3

from spending_oracle import __version__
from spending_oracle.config import ConfigurationError, settings
from spending_oracle.services.chain import ModuleClient
from spending_oracle.services.oracle import SpendingOracle
from spending_oracle.services.prices import ChainlinkPriceLoader
from spending_oracle.services.submitter import BatchSubmitter
from spending_oracle.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def create_oracle() -> SpendingOracle:
    """Wire the chain client, price loader and submitter from settings."""
    settings.validate_runtime()

    web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings.rpc_url))
    client = ModuleClient(web3, settings.module_address)
    submitter = BatchSubmitter(web3, settings.module_address, settings.private_key)

    price_loader = None
    if settings.price_feeds:
        price_loader = ChainlinkPriceLoader(web3, settings.price_feeds)
        logger.info("Price feeds configured", tokens=len(settings.price_feeds))
    else:
        logger.info("No price feeds configured, acquired ratios use raw amounts")

    return SpendingOracle(client, submitter, price_loader)


async def run_service() -> None:
    """Run the oracle until SIGINT/SIGTERM."""
    oracle = create_oracle()

    logger.info(
        "Starting spending oracle",
        module=settings.module_address,
        chain_id=settings.chain_id,
        updater=oracle.submitter.address,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(signal_handler))

    await oracle.start()
    try:
        await stop_event.wait()
    finally:
        await oracle.stop()


async def run_once() -> int:
    """
    Single full refresh, then exit.

    Returns:
        Number of sub-accounts updated
    """
    oracle = create_oracle()
    plans = await oracle.refresh_all()
    updated = len(plans or [])
    logger.info("Single refresh finished", updated=updated)
    return updated


def main() -> None:
    """Main entry point."""
    setup_logging(settings.log_level, chain_id=settings.chain_id, oracle_module=settings.module_address)

    logger.info(
        "Spending Oracle",
        version=__version__,
        log_level=settings.log_level,
    )

    try:
        asyncio.run(run_service())
    except KeyboardInterrupt:
        logger.info("Oracle stopped by user")
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        sys.exit(2)
    except Exception as e:
        logger.error("Fatal error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
