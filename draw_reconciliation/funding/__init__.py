"""
Wire batch funding and the budget bookkeeping that follows it.
"""

from .budget_spend import BudgetSpendRecorder, BudgetSpendReport
from .wire_batch import WireBatchFunder

__all__ = [
    "BudgetSpendRecorder",
    "BudgetSpendReport",
    "WireBatchFunder"
]
