"""
Reference data: transaction types and transaction categories.

Both are closed sets. A transaction type also carries its debit/credit
classification, which decides the sign of its effect on the account's
owed balance:

  - DEBIT types (purchases, authorizations, adjustments) INCREASE what the
    cardholder owes
  - CREDIT types (payments, credits, refunds, reversals) DECREASE it

The classification is a lookup table keyed by type, not behaviour attached
to each type, so adding a type is a one-line change in the enum and the table.
"""

import enum


class TransactionType(str, enum.Enum):
    """
    Two-character transaction type codes.

    Inherits from str so the enum value serializes naturally to JSON
    and can be stored as a simple string in the database.
    """
    PURCHASE = "01"
    PAYMENT = "02"
    CREDIT = "03"
    AUTHORIZATION = "04"
    REFUND = "05"
    REVERSAL = "06"
    ADJUSTMENT = "07"


class Classification(str, enum.Enum):
    DEBIT = "debit"
    CREDIT = "credit"


# Type -> is it a credit (balance-decreasing) type?
IS_CREDIT: dict[TransactionType, bool] = {
    TransactionType.PURCHASE: False,
    TransactionType.PAYMENT: True,
    TransactionType.CREDIT: True,
    TransactionType.AUTHORIZATION: False,
    TransactionType.REFUND: True,
    TransactionType.REVERSAL: True,
    TransactionType.ADJUSTMENT: False,
}

# Four-digit category codes
TRANSACTION_CATEGORIES: dict[str, str] = {
    "0001": "Regular Sales Draft",
    "0002": "Regular Cash Advance",
    "0003": "Convenience Check Debit",
    "0004": "ATM Cash Advance",
    "0005": "Interest Amount",
}


def parse_transaction_type(code: str | None) -> TransactionType | None:
    """Return the TransactionType for a code, or None if the code is unknown."""
    if code is None:
        return None
    try:
        return TransactionType(code.strip())
    except ValueError:
        return None


def is_known_category(code: str | None) -> bool:
    return code is not None and code.strip() in TRANSACTION_CATEGORIES


def classify(transaction_type: TransactionType) -> Classification:
    """Debit or credit, from the fixed classification table."""
    return Classification.CREDIT if IS_CREDIT[transaction_type] else Classification.DEBIT
