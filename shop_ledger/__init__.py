"""
Shop Ledger - Source Package

Bookkeeping for a small retail/food business: sales itemized against a
product catalog, categorized expenses, and the daily/periodic summaries
derived from them.

DESIGN PRINCIPLES:
1. Reports are pure functions over an explicit snapshot
2. Malformed records are quarantined and counted, never guessed at
3. Writes go through one service, one at a time
4. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Shop Ledger Team"
