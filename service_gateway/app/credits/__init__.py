"""
Credit metering: cost lookup and the balance ledger.
"""

from .cost_table import CostTable
from .ledger import CreditLedger

__all__ = ["CostTable", "CreditLedger"]
