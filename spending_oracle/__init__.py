"""Spending Oracle - acquired balance and allowance reconciliation for the DeFiInteractorModule."""

__version__ = "1.0.0"
