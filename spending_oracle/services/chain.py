"""
Read-side access to the DeFiInteractorModule.

Wraps an AsyncWeb3 contract handle: view calls for limits, allowances and
acquired balances, and log queries that turn ProtocolExecution /
TransferExecuted logs into engine events stamped with block timestamps.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception

from spending_oracle.abi import DEFI_EXECUTE_ROLE, MODULE_ABI
from spending_oracle.config import settings
from spending_oracle.engine.models import (
    EventValidationError,
    OperationEvent,
    OperationType,
    TransferEvent,
    normalize_address,
)
from spending_oracle.services.errors import ChainClientError
from spending_oracle.utils.logging import LoggerMixin

# Transient RPC failures worth retrying
_RETRYABLE = (Web3Exception, ConnectionError, TimeoutError, OSError)

_chain_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(_RETRYABLE),
    reraise=True,
)


@dataclass(frozen=True)
class SafeValue:
    """Portfolio value snapshot published on-chain (USD, 18 decimals)."""
    total_value_usd: int
    last_updated: int
    update_count: int


@dataclass(frozen=True)
class SubAccountLimits:
    max_spending_bps: int
    window_duration: int


class ModuleClient(LoggerMixin):
    """Async client for the module contract's views and event logs."""

    def __init__(
        self,
        web3: Optional[AsyncWeb3] = None,
        module_address: Optional[str] = None,
    ):
        self.web3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings.rpc_url))
        address = module_address or settings.module_address
        if not address:
            raise ChainClientError("Module address not configured")
        self.module_address = AsyncWeb3.to_checksum_address(address)
        self.contract = self.web3.eth.contract(address=self.module_address, abi=MODULE_ABI)
        self._block_timestamps: dict[int, int] = {}

    # ===================
    # Views
    # ===================

    @_chain_retry
    async def _block_number(self) -> int:
        return await self.web3.eth.block_number

    async def get_block_number(self) -> int:
        try:
            return await self._block_number()
        except _RETRYABLE as e:
            raise ChainClientError(f"Failed to read block number: {e}")

    @_chain_retry
    async def _safe_value(self) -> tuple:
        return await self.contract.functions.getSafeValue().call()

    async def get_safe_value(self) -> SafeValue:
        """Current portfolio value; failures propagate so the cycle is skipped."""
        try:
            total, last_updated, update_count = await self._safe_value()
        except _RETRYABLE as e:
            raise ChainClientError(f"Failed to read safe value: {e}")
        return SafeValue(int(total), int(last_updated), int(update_count))

    @_chain_retry
    async def _limits(self, sub_account: str) -> tuple:
        return await self.contract.functions.getSubAccountLimits(
            AsyncWeb3.to_checksum_address(sub_account)
        ).call()

    async def get_subaccount_limits(self, sub_account: str) -> SubAccountLimits:
        """
        Spending limits for a sub-account.

        Falls back to the configured defaults when the read fails or the
        contract reports a zero window.
        """
        try:
            max_bps, window = await self._limits(sub_account)
        except _RETRYABLE as e:
            self.log.warning(
                "Limits read failed, using defaults",
                sub_account=sub_account,
                error=str(e),
            )
            return SubAccountLimits(settings.default_max_spending_bps, settings.window_duration_seconds)

        window = int(window) or settings.window_duration_seconds
        return SubAccountLimits(int(max_bps), window)

    @_chain_retry
    async def _subaccounts_by_role(self, role: int) -> list:
        return await self.contract.functions.getSubaccountsByRole(role).call()

    async def get_active_subaccounts(self) -> list[str]:
        """Sub-accounts holding the execute role, excluding the module itself."""
        try:
            accounts = await self._subaccounts_by_role(DEFI_EXECUTE_ROLE)
        except _RETRYABLE as e:
            raise ChainClientError(f"Failed to list sub-accounts: {e}")

        module = normalize_address(self.module_address)
        return [
            normalize_address(account)
            for account in accounts
            if normalize_address(account) != module
        ]

    @_chain_retry
    async def _allowance(self, sub_account: str) -> int:
        return await self.contract.functions.getSpendingAllowance(
            AsyncWeb3.to_checksum_address(sub_account)
        ).call()

    async def get_spending_allowance(self, sub_account: str) -> int:
        try:
            return int(await self._allowance(sub_account))
        except _RETRYABLE as e:
            raise ChainClientError(f"Failed to read allowance: {e}", sub_account)

    @_chain_retry
    async def _acquired(self, sub_account: str, token: str) -> int:
        return await self.contract.functions.getAcquiredBalance(
            AsyncWeb3.to_checksum_address(sub_account),
            AsyncWeb3.to_checksum_address(token),
        ).call()

    async def get_acquired_balance(self, sub_account: str, token: str) -> int:
        try:
            return int(await self._acquired(sub_account, token))
        except _RETRYABLE as e:
            raise ChainClientError(f"Failed to read acquired balance for {token}: {e}", sub_account)

    async def get_acquired_balances(self, sub_account: str, tokens: Iterable[str]) -> dict[str, int]:
        """On-chain acquired balance for each token, keyed by normalized address."""
        balances: dict[str, int] = {}
        for token in tokens:
            balances[normalize_address(token)] = await self.get_acquired_balance(sub_account, token)
        return balances

    # ===================
    # Logs
    # ===================

    @_chain_retry
    async def _get_logs(self, event_name: str, from_block: int, to_block: int, filters: dict) -> list:
        event = getattr(self.contract.events, event_name)
        return await event.get_logs(
            from_block=from_block,
            to_block=to_block,
            argument_filters=filters or None,
        )

    async def _query(
        self,
        event_name: str,
        from_block: int,
        to_block: int,
        sub_account: Optional[str] = None,
    ) -> list:
        filters: dict[str, Any] = {}
        if sub_account:
            filters["subAccount"] = AsyncWeb3.to_checksum_address(sub_account)
        try:
            logs = await self._get_logs(event_name, max(from_block, 0), to_block, filters)
        except _RETRYABLE as e:
            raise ChainClientError(f"Failed to query {event_name} logs: {e}", sub_account)

        self.log.debug(
            "Logs fetched",
            event_name=event_name,
            from_block=from_block,
            to_block=to_block,
            count=len(logs),
        )
        return list(logs)

    @_chain_retry
    async def _block_timestamp(self, block_number: int) -> int:
        block = await self.web3.eth.get_block(block_number)
        return int(block["timestamp"])

    async def get_block_timestamp(self, block_number: int) -> int:
        """Block timestamp, cached per block number."""
        if block_number not in self._block_timestamps:
            try:
                self._block_timestamps[block_number] = await self._block_timestamp(block_number)
            except _RETRYABLE as e:
                raise ChainClientError(f"Failed to read block {block_number}: {e}")
        return self._block_timestamps[block_number]

    async def query_protocol_events(
        self,
        from_block: int,
        to_block: int,
        sub_account: Optional[str] = None,
    ) -> list[OperationEvent]:
        """ProtocolExecution logs in range, as OperationEvents."""
        logs = await self._query("ProtocolExecution", from_block, to_block, sub_account)

        events = []
        for log in logs:
            args = log["args"]
            block_number = int(log["blockNumber"])
            log_index = int(log["logIndex"])
            try:
                op_type = OperationType(int(args["opType"]))
            except ValueError:
                raise EventValidationError(
                    f"Unknown operation type {args['opType']}",
                    block_number,
                    log_index,
                )
            events.append(OperationEvent(
                sub_account=normalize_address(args["subAccount"]),
                target=normalize_address(args["target"]),
                op_type=op_type,
                tokens_in=tuple(normalize_address(t) for t in args["tokensIn"]),
                amounts_in=tuple(int(a) for a in args["amountsIn"]),
                tokens_out=tuple(normalize_address(t) for t in args["tokensOut"]),
                amounts_out=tuple(int(a) for a in args["amountsOut"]),
                spending_cost=int(args["spendingCost"]),
                timestamp=await self.get_block_timestamp(block_number),
                block_number=block_number,
                log_index=log_index,
            ))
        return events

    async def query_transfer_events(
        self,
        from_block: int,
        to_block: int,
        sub_account: Optional[str] = None,
    ) -> list[TransferEvent]:
        """TransferExecuted logs in range, as TransferEvents."""
        logs = await self._query("TransferExecuted", from_block, to_block, sub_account)

        events = []
        for log in logs:
            args = log["args"]
            block_number = int(log["blockNumber"])
            events.append(TransferEvent(
                sub_account=normalize_address(args["subAccount"]),
                token=normalize_address(args["token"]),
                recipient=normalize_address(args["recipient"]),
                amount=int(args["amount"]),
                spending_cost=int(args["spendingCost"]),
                timestamp=await self.get_block_timestamp(block_number),
                block_number=block_number,
                log_index=int(log["logIndex"]),
            ))
        return events

    async def query_historical_acquired_tokens(
        self,
        sub_account: str,
        from_block: int,
        to_block: int,
    ) -> set[str]:
        """Tokens the module has ever published an acquired balance for."""
        logs = await self._query("AcquiredBalanceUpdated", from_block, to_block, sub_account)
        return {normalize_address(log["args"]["token"]) for log in logs}
