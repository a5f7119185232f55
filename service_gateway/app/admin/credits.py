"""
Credit balance management for the admin API.
"""

from typing import Any, Dict, Optional

from shared.errors import ConflictError, ValidationError
from shared.logging import get_logger

from ..credits import CreditLedger
from ..models import MAX_CREDITS


def validate_credits(credits: Optional[int]) -> int:
    if credits is None:
        raise ValidationError("Credits value is required")
    if credits < 0:
        raise ValidationError("Credits cannot be negative")
    if credits > MAX_CREDITS:
        raise ValidationError("Credits cannot be greater than 1,000,000")
    return credits


def validate_amount(amount: Optional[int]) -> int:
    if amount is None:
        raise ValidationError("Amount is required")
    if amount <= 0:
        raise ValidationError("Amount must be a positive number")
    if amount > MAX_CREDITS:
        raise ValidationError("Amount cannot be greater than 1,000,000")
    return amount


class CreditService:
    """Admin reads and writes of credit balances."""

    def __init__(self, ledger: CreditLedger):
        self.ledger = ledger
        self.logger = get_logger("gateway.admin.credits")

    async def get_credits(self, client_id: str) -> Dict[str, Any]:
        return {"clientId": client_id, "credits": await self.ledger.get_balance(client_id)}

    async def create_credits(self, client_id: Optional[str], credits: Optional[int]) -> Dict[str, Any]:
        if not client_id:
            raise ValidationError("Client ID is required")
        credits = validate_credits(credits)
        if await self.ledger.has_balance(client_id):
            raise ConflictError("Client ID already exists", details={"client_id": client_id})
        await self.ledger.set(client_id, credits)
        return {"clientId": client_id, "credits": credits}

    async def set_credits(self, client_id: str, credits: Optional[int]) -> Dict[str, Any]:
        credits = validate_credits(credits)
        await self.ledger.set(client_id, credits)
        return {"clientId": client_id, "credits": credits}

    async def add_credits(self, client_id: str, amount: Optional[int]) -> Dict[str, Any]:
        amount = validate_amount(amount)
        balance = await self.ledger.add(client_id, amount)
        return {"clientId": client_id, "credits": balance, "added": amount}
