"""
Balance service — the effect of a transaction on its account's owed balance.

The sign comes from the transaction type's classification (reference.py):

    DEBIT  types: current = previous + amount
    CREDIT types: current = previous - amount

The amount's own sign is kept as-is, so a negative purchase (a correction)
lowers the balance and a negative payment raises it. All arithmetic is
Decimal, never float.
"""

from dataclasses import dataclass
from decimal import Decimal

from card_ledger.reference import Classification, TransactionType, classify


@dataclass(frozen=True)
class BalanceSnapshot:
    previous_balance: Decimal
    current_balance: Decimal

    @property
    def delta(self) -> Decimal:
        return self.current_balance - self.previous_balance


def balance_delta(type_code: str, amount: Decimal) -> Decimal:
    """Signed change to the owed balance for a transaction of this type."""
    transaction_type = TransactionType(type_code)
    if classify(transaction_type) is Classification.CREDIT:
        return -amount
    return amount


def compute_balance_impact(transaction, current_balance: Decimal) -> BalanceSnapshot:
    """
    Before/after balances for posting `transaction`.

    Args:
        transaction: Anything with `type_code` and `amount` (a validated
                     request's built Transaction, in practice).
        current_balance: The account's balance before this transaction.

    Raises:
        ValueError: If the type code is not in the reference table. The
                    validation pipeline guarantees it is.
    """
    previous = Decimal(current_balance)
    delta = balance_delta(transaction.type_code, Decimal(transaction.amount))
    return BalanceSnapshot(previous_balance=previous, current_balance=previous + delta)
