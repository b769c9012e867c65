"""
Card model — the card-to-account cross reference.

Identity resolution on the add path works through this table:
  - given a card number, find the account it belongs to
  - given an account id, find the card issued for it

Each account has at most ONE card (unique constraint on account_id), so
both lookups are unambiguous.

Card numbers are stored in plaintext because they are a lookup key here
and are recorded on every transaction. Encryption or tokenization of the
PAN belongs to the card-issuing system upstream of this service.
"""

from datetime import datetime, timezone

from sqlalchemy import String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from card_ledger.database import Base


class Card(Base):
    __tablename__ = "cards"

    # 16-digit card number
    card_number: Mapped[str] = mapped_column(
        String(16),
        primary_key=True,
    )

    # One card per account: UNIQUE constraint
    account_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.account_id"),
        unique=True,
        nullable=False,
        index=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
