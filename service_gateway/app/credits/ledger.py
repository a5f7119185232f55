"""
Credit ledger.

The debit path is a single atomic store primitive, so concurrent requests
for one client can never drive the balance below zero.
"""

from typing import Optional

from shared.errors import ValidationError
from shared.keystore import CREDITS, KeyValueStore, parse_balance
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..models import CreditResult
from ..usage import UsageTracker


class CreditLedger:
    """Per-client prepaid credit balances."""

    def __init__(
        self,
        store: KeyValueStore,
        usage: Optional[UsageTracker] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.usage = usage
        self.metrics = metrics
        self.logger = get_logger("gateway.ledger")

    async def get_balance(self, client_id: str) -> int:
        return parse_balance(await self.store.get(CREDITS.key(client_id)))

    async def has_balance(self, client_id: str) -> bool:
        return await self.store.exists(CREDITS.key(client_id))

    async def debit(self, client_id: str, cost: int) -> CreditResult:
        """Debit ``cost`` if the balance covers it; never writes otherwise."""
        if cost < 0:
            raise ValueError("cost must not be negative")

        success, balance = await self.store.decrement_if_sufficient(CREDITS.key(client_id), cost)

        if self.metrics:
            self.metrics.record_debit(success, cost)

        if not success:
            self.logger.info("Insufficient credits", client_id=client_id, balance=balance, cost=cost)
            return CreditResult(success=False, remaining=balance, used=0)

        if self.usage and cost > 0:
            self.usage.record_client_usage(client_id, cost)

        self.logger.debug("Credits debited", client_id=client_id, cost=cost, remaining=balance)
        return CreditResult(success=True, remaining=balance, used=cost)

    async def refund(self, client_id: str, amount: int) -> int:
        """Return credits taken by a request whose backend call failed."""
        balance = await self.store.increment_balance(CREDITS.key(client_id), amount)
        self.logger.info("Credits refunded", client_id=client_id, amount=amount, balance=balance)
        return balance

    async def add(self, client_id: str, amount: int) -> int:
        if amount <= 0:
            raise ValidationError("Amount must be a positive number")
        balance = await self.store.increment_balance(CREDITS.key(client_id), amount)
        self.logger.info("Credits added", client_id=client_id, amount=amount, balance=balance)
        return balance

    async def set(self, client_id: str, balance: int) -> int:
        if balance < 0:
            raise ValidationError("Credits cannot be negative")
        await self.store.put(CREDITS.key(client_id), str(balance))
        self.logger.info("Credits set", client_id=client_id, balance=balance)
        return balance

    async def delete(self, client_id: str) -> bool:
        return await self.store.delete(CREDITS.key(client_id))
