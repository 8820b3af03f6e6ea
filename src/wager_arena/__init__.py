"""
Wager Arena - round-based wagering game core.

Runs rounds where participants stake to enter, a weighted-random elimination
narrows the field to finalists, spectators stake on survivors, and a single
winner is paid from the pooled stakes minus a house fee. A reconciliation
crank drives every round forward against an authoritative external ledger.
"""

__version__ = "0.1.0"
