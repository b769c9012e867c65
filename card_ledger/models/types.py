"""
Money column type: integer cents in the database, Decimal in Python.

Why not a Numeric column?
  SQLite has no exact decimal storage: NUMERIC values end up as IEEE 754
  REALs, and 0.1 + 0.2 != 0.3 in binary floating point. Storing integer
  cents keeps every stored value exact on every backend:
    - $10.99 is stored as 1099, no ambiguity
    - Python code only ever sees Decimal values with exactly 2 places
    - Comparisons and ORDER BY work on plain integers

Because this is a TypeDecorator, literals compared against a Money column
(e.g. Transaction.amount >= Decimal("10.00")) are converted to cents too.
"""

from decimal import Decimal, ROUND_HALF_EVEN

from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator

CENT = Decimal("0.01")


class Money(TypeDecorator):
    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        cents = (Decimal(value) * 100).to_integral_value(rounding=ROUND_HALF_EVEN)
        return int(cents)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return (Decimal(int(value)) / 100).quantize(CENT)
