"""
Ledger Bank

Personal-banking ledger service: balances, deposits, withdrawals and
internal/external transfers over a REST API.
"""

__version__ = "1.0.0"
