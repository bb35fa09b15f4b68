"""
FinTrack - Ledger Core Package

Keeps derived balances (accounts, debts, savings goals) consistent with
the ledger events that produced them, and projects the spending balance
forward one day at a time.

DESIGN PRINCIPLES:
1. Only the balance mutator writes an aggregate's current value
2. Fail before mutating, never half-way through
3. No silent corrections (negative projections are flagged, not clamped)
4. Every balance change is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "FinTrack Team"
