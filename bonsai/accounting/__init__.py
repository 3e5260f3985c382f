"""Quota, credit and spending bookkeeping plus pricing."""

from bonsai.accounting.credits import CreditLedger
from bonsai.accounting.pool import ProviderAccountPool
from bonsai.accounting.pricing import PricingStrategy, estimate_tokens
from bonsai.accounting.spending import SpendingBudget

__all__ = [
    "CreditLedger",
    "PricingStrategy",
    "ProviderAccountPool",
    "SpendingBudget",
    "estimate_tokens",
]
