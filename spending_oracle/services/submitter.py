"""
Signs and sends batchUpdate transactions.

Updates for several sub-accounts go out back to back in one cycle, so the
nonce is read once ("pending") and then sequenced locally. Confirmation is
a separate phase: wait_for_pending() awaits every receipt sent since the
last reset.
"""

import asyncio
from typing import Optional

from eth_account import Account
from web3 import AsyncWeb3

from spending_oracle.abi import MODULE_ABI
from spending_oracle.config import settings
from spending_oracle.services.errors import SubmissionError
from spending_oracle.services.reconcile import WritePlan
from spending_oracle.utils.logging import LoggerMixin


class BatchSubmitter(LoggerMixin):
    """Submits WritePlans to the module as batchUpdate calls."""

    def __init__(
        self,
        web3: AsyncWeb3,
        module_address: Optional[str] = None,
        private_key: Optional[str] = None,
    ):
        key = private_key or settings.private_key
        if not key:
            raise SubmissionError("Updater private key not configured")

        self.web3 = web3
        self.account = Account.from_key(key)
        self.contract = self.web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(module_address or settings.module_address),
            abi=MODULE_ABI,
        )
        self._nonce: Optional[int] = None
        self._pending: list[tuple[str, str]] = []  # (sub_account, tx_hash)

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def _next_nonce(self) -> int:
        if self._nonce is None:
            self._nonce = await self.web3.eth.get_transaction_count(self.account.address, "pending")
        nonce = self._nonce
        self._nonce += 1
        return nonce

    async def submit(self, plan: WritePlan) -> str:
        """
        Sign and send one batchUpdate.

        Returns:
            The transaction hash (0x hex)

        Raises:
            SubmissionError: If building, signing or sending fails
        """
        try:
            nonce = await self._next_nonce()
            gas_price = await self.web3.eth.gas_price

            tx = await self.contract.functions.batchUpdate(
                AsyncWeb3.to_checksum_address(plan.sub_account),
                plan.new_allowance,
                [AsyncWeb3.to_checksum_address(token) for token in plan.tokens],
                list(plan.balances),
            ).build_transaction({
                "from": self.account.address,
                "nonce": nonce,
                "gas": settings.gas_limit,
                "gasPrice": gas_price,
                "chainId": settings.chain_id,
            })

            signed_tx = self.account.sign_transaction(tx)
            tx_hash = await self.web3.eth.send_raw_transaction(signed_tx.raw_transaction)
        except Exception as e:
            # The local nonce may now be ahead of the chain; re-read it next time
            self._nonce = None
            self.log.error("batchUpdate submission failed", sub_account=plan.sub_account, error=str(e))
            raise SubmissionError(f"batchUpdate failed: {e}", plan.sub_account)

        tx_hash_hex = AsyncWeb3.to_hex(tx_hash)
        self._pending.append((plan.sub_account, tx_hash_hex))

        self.log.info(
            "batchUpdate sent",
            sub_account=plan.sub_account,
            new_allowance=plan.new_allowance,
            tokens=len(plan.tokens),
            nonce=nonce,
            tx_hash=tx_hash_hex,
        )
        return tx_hash_hex

    async def _wait_one(self, sub_account: str, tx_hash: str) -> bool:
        try:
            receipt = await self.web3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=settings.confirmation_timeout_seconds,
            )
        except Exception as e:
            self.log.warning(
                "batchUpdate confirmation not received",
                sub_account=sub_account,
                tx_hash=tx_hash,
                error=str(e),
            )
            return False

        if receipt["status"] == 1:
            self.log.info(
                "batchUpdate confirmed",
                sub_account=sub_account,
                tx_hash=tx_hash,
                block=receipt["blockNumber"],
            )
            return True

        self.log.error("batchUpdate reverted", sub_account=sub_account, tx_hash=tx_hash)
        return False

    async def wait_for_pending(self) -> tuple[int, int]:
        """
        Await receipts for every transaction sent since the last call.

        Always resets nonce tracking, so the next cycle starts from the
        chain's pending nonce.

        Returns:
            Tuple of (confirmed, failed)
        """
        pending, self._pending = self._pending, []
        try:
            if not pending:
                return 0, 0

            results = await asyncio.gather(
                *(self._wait_one(sub_account, tx_hash) for sub_account, tx_hash in pending)
            )
            confirmed = sum(1 for ok in results if ok)
            failed = len(results) - confirmed
            self.log.info("Pending updates settled", confirmed=confirmed, failed=failed)
            return confirmed, failed
        finally:
            self._nonce = None
