"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table before create_all() runs
  2. Other modules can import from card_ledger.models directly
"""

from card_ledger.models.account import Account  # noqa: F401
from card_ledger.models.card import Card  # noqa: F401
from card_ledger.models.transaction import Transaction  # noqa: F401
