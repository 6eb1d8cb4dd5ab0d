"""
finledger - Personal Finance Ledger Core

Accounts, credit cards, categories and transactions for many users,
plus a statement ingestion pipeline (OCR -> LLM -> transactions).

DESIGN PRINCIPLES:
1. A container's balance always equals the sum of its active transactions
2. Every mutation is all-or-nothing
3. Fail early, fail visibly
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "finledger Team"
