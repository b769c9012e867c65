"""
Account model — a card account whose owed balance the ledger moves.

Each account has:
  - An 11-digit account identifier (the primary key, assigned upstream)
  - The current owed balance, as an exact decimal (see models/types.py)
  - An active flag

Balance management:
  `current_balance` is updated in the SAME database transaction as the
  insert of the transaction that moved it, so it always equals the opening
  balance plus the signed sum of the account's transactions.

  Unlike a deposit account, an owed balance can legitimately go negative
  (an overpayment leaves a credit balance), so there is no non-negative
  CHECK constraint here.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from card_ledger.database import Base
from card_ledger.models.types import Money


class Account(Base):
    __tablename__ = "accounts"

    # 11-digit account number
    account_id: Mapped[str] = mapped_column(
        String(11),
        primary_key=True,
    )

    current_balance: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0.00"),
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
