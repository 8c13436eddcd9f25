"""
Coinflow - Cashbook Ledger Core

Keeps multiple cashbooks, their transactions, categories and payment modes
consistent in memory, mirrors them to a remote store or a local cache, and
derives balances and report exports from them.

DESIGN PRINCIPLES:
1. The in-memory snapshot is updated first, persistence follows
2. Derived fields are always recomputed, never edited
3. Remote failures are recorded, not hidden
4. Every remote query carries the owner scope
"""

__version__ = "1.0.0"
__author__ = "Coinflow Team"
