"""
Record stores — SQLAlchemy implementations of the two store capabilities
the transaction core depends on.

  TransactionStore
    find_highest_identifier, find_by_id, exists, save, query

  AccountStore
    current_balance, find_card, find_card_for_account, post_balance

Both wrap the request's AsyncSession; neither commits. The session
lifecycle belongs to get_db() (commit on success, rollback on any error),
so everything a request writes lands in one database transaction.

Error translation:
  Driver-level failures (connection refused, database locked, ...) are
  re-raised as StoreUnavailableError so the service layer never sees
  SQLAlchemy exceptions. A duplicate primary key on save is NOT an error:
  save() reports it as False and the writer retries with a new identifier.
"""

import contextlib
import logging
from decimal import Decimal

from sqlalchemy import select, update, func
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from card_ledger.exceptions import StoreUnavailableError
from card_ledger.models.account import Account
from card_ledger.models.card import Card
from card_ledger.models.transaction import Transaction
from card_ledger.services.predicates import Between, Contains, Equals, SortOrder
from card_ledger.services.validation import CardLink

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def _store_errors(operation: str):
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as exc:
        logger.error(f"Store operation {operation} failed: {exc}")
        raise StoreUnavailableError(operation) from exc


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

# Columns a predicate or sort may reference
_TRANSACTION_COLUMNS = {
    "transaction_id": Transaction.transaction_id,
    "card_number": Transaction.card_number,
    "account_id": Transaction.account_id,
    "type_code": Transaction.type_code,
    "category_code": Transaction.category_code,
    "amount": Transaction.amount,
    "description": Transaction.description,
    "merchant_name": Transaction.merchant_name,
    "original_timestamp": Transaction.original_timestamp,
    "processing_timestamp": Transaction.processing_timestamp,
    "created_at": Transaction.created_at,
}


class TransactionStore:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_highest_identifier(self) -> str | None:
        """The greatest transaction_id in string order, or None if the table is empty."""
        with _store_errors("find_highest_identifier"):
            result = await self.db.execute(
                select(Transaction.transaction_id)
                .order_by(Transaction.transaction_id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def find_by_id(self, transaction_id: str) -> Transaction | None:
        with _store_errors("find_by_id"):
            result = await self.db.execute(
                select(Transaction).where(Transaction.transaction_id == transaction_id)
            )
            return result.scalar_one_or_none()

    async def exists(self, transaction_id: str) -> bool:
        with _store_errors("exists"):
            result = await self.db.execute(
                select(func.count())
                .select_from(Transaction)
                .where(Transaction.transaction_id == transaction_id)
            )
            return result.scalar_one() > 0

    async def save(self, transaction: Transaction) -> bool:
        """
        Insert a new transaction inside a SAVEPOINT.

        Returns:
            True if the row was written, False if its transaction_id already
            exists. On False the savepoint is rolled back and the rest of the
            session's work is untouched.
        """
        try:
            with _store_errors("save"):
                async with self.db.begin_nested():
                    self.db.add(transaction)
                    await self.db.flush()
        except IntegrityError:
            logger.warning(
                "Duplicate transaction ID on insert",
                extra={"transaction_id": transaction.transaction_id},
            )
            return False
        return True

    async def query(
        self,
        predicates: list,
        sort: SortOrder,
        offset: int,
        limit: int,
    ) -> tuple[list[Transaction], int]:
        """
        Run a filtered, sorted, paged query.

        Returns:
            (the requested page of transactions, total matching row count).
            A page starting at or beyond the total is empty and costs no
            row fetch.
        """
        conditions = []
        for predicate in predicates:
            conditions.extend(_conditions_for(predicate))

        sort_column = _TRANSACTION_COLUMNS[sort.field]
        order_by = [sort_column.desc() if sort.descending else sort_column.asc()]
        # Stable order across pages when the sort key has ties
        if sort.field != "transaction_id":
            order_by.append(
                Transaction.transaction_id.desc()
                if sort.descending
                else Transaction.transaction_id.asc()
            )

        with _store_errors("query"):
            total_result = await self.db.execute(
                select(func.count()).select_from(Transaction).where(*conditions)
            )
            total = total_result.scalar_one()
            # Offsets at or past the total never reach the driver
            if offset >= total:
                return [], total

            result = await self.db.execute(
                select(Transaction)
                .where(*conditions)
                .order_by(*order_by)
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), total


def _conditions_for(predicate) -> list:
    column = _TRANSACTION_COLUMNS[predicate.field]
    if isinstance(predicate, Equals):
        return [column == predicate.value]
    if isinstance(predicate, Between):
        conditions = []
        if predicate.lower is not None:
            conditions.append(column >= predicate.lower)
        if predicate.upper is not None:
            conditions.append(
                column < predicate.upper
                if predicate.upper_exclusive
                else column <= predicate.upper
            )
        return conditions
    if isinstance(predicate, Contains):
        # autoescape so % and _ in the fragment match literally
        return [column.icontains(predicate.fragment, autoescape=True)]
    raise TypeError(f"Unsupported predicate: {predicate!r}")


# ---------------------------------------------------------------------------
# Accounts and the card cross reference
# ---------------------------------------------------------------------------

class AccountStore:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def current_balance(self, account_id: str) -> Decimal | None:
        """
        Read the account's balance and lock the row until the request ends.

        Returns None if the account does not exist.
        """
        with _store_errors("current_balance"):
            result = await self.db.execute(
                select(Account.current_balance)
                .where(Account.account_id == account_id)
                .with_for_update()  # No-op on SQLite, locks row on PostgreSQL
            )
            return result.scalar_one_or_none()

    async def find_card(self, card_number: str) -> CardLink | None:
        """Cross reference by card number."""
        with _store_errors("find_card"):
            return await self._find_link(Card.card_number == card_number)

    async def find_card_for_account(self, account_id: str) -> CardLink | None:
        """Cross reference by account id."""
        with _store_errors("find_card_for_account"):
            return await self._find_link(Card.account_id == account_id)

    async def _find_link(self, condition) -> CardLink | None:
        result = await self.db.execute(
            select(Card.account_id, Card.card_number, Card.is_active, Account.is_active)
            .join(Account, Card.account_id == Account.account_id)
            .where(condition)
        )
        row = result.one_or_none()
        if row is None:
            return None
        account_id, card_number, card_active, account_active = row
        return CardLink(
            account_id=account_id,
            card_number=card_number,
            active=card_active and account_active,
        )

    async def post_balance(self, account_id: str, new_balance: Decimal) -> None:
        with _store_errors("post_balance"):
            await self.db.execute(
                update(Account)
                .where(Account.account_id == account_id)
                .values(current_balance=new_balance)
            )
