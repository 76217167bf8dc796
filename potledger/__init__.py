"""
Pot Ledger - Source Package

A bookkeeping ledger for a small business that tracks money as pots:
every expense is paid from one specific receipt of funds, and anything a
pot can't cover becomes a tracked overdraft.

DESIGN PRINCIPLES:
1. Every balance change is one transaction
2. Fail early, fail visibly
3. No silent corrections
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Pot Ledger Team"
