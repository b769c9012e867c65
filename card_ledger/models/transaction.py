"""
Transaction model — one posted ledger transaction.

Key fields:
  - transaction_id: 16-character identifier, assigned once by the writer
    and never changed. The primary key constraint is what finally
    guarantees uniqueness (see services/identifier_service.py).
  - type_code / category_code: closed reference codes (see reference.py)
  - amount: signed exact decimal with 2 places. The direction of its
    effect on the balance comes from the type's classification, not from
    the sign alone.
  - card_number / account_id: the resolved account-card pairing. account_id
    is denormalised from the card cross reference so that "transactions
    for an account" is an indexed lookup rather than a join.
  - original_timestamp / processing_timestamp: business timestamps
    supplied by the caller. processing_timestamp is the default sort key.
  - created_at / updated_at: audit timestamps.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from card_ledger.database import Base
from card_ledger.models.types import Money


class Transaction(Base):
    __tablename__ = "transactions"

    transaction_id: Mapped[str] = mapped_column(
        String(16),
        primary_key=True,
    )

    type_code: Mapped[str] = mapped_column(
        String(2),
        nullable=False,
        index=True,
    )

    category_code: Mapped[str] = mapped_column(
        String(4),
        nullable=False,
        index=True,
    )

    source: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        index=True,
    )

    card_number: Mapped[str] = mapped_column(
        ForeignKey("cards.card_number"),
        nullable=False,
        index=True,
    )

    account_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.account_id"),
        nullable=False,
        index=True,
    )

    # Merchant details (all optional)
    merchant_id: Mapped[str | None] = mapped_column(String(9), nullable=True)
    merchant_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    merchant_city: Mapped[str | None] = mapped_column(String(50), nullable=True)
    merchant_zip: Mapped[str | None] = mapped_column(String(10), nullable=True)

    original_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Indexed for date-range access paths and the default sort
    processing_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

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
