"""
Test fixtures for the Card Ledger test suite.

This module provides shared fixtures used across all test files:

  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - client: Async HTTP test client (unauthenticated)
  - authenticated_client: Test client carrying a valid bearer token
  - seeded_accounts: Two accounts, each with its card, in the test database
  - make_request: Factory for valid add requests with per-test overrides
  - FakeTransactionStore / FakeAccountStore: in-process stores that count
    their calls, for exercising the core without a database

Key design decisions:
  - In-memory SQLite (sqlite+aiosqlite://) is used for speed and isolation.
    Each test gets a completely fresh database — no state leaks between tests.
  - We override FastAPI's get_db dependency to inject our test session,
    so the application code works exactly as it does in production.
  - Tokens are minted with create_access_token, exactly as the identity
    service upstream would sign them.
"""

import os

# Settings are read at import time; SECRET_KEY is required
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from collections import Counter
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from card_ledger.database import Base, get_db
from card_ledger.exceptions import StoreUnavailableError
from card_ledger.main import app
from card_ledger.models.account import Account
from card_ledger.models.card import Card
from card_ledger.schemas.transaction import TransactionAddRequest
from card_ledger.security import create_access_token
from card_ledger.services.validation import CardLink


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"

ACCOUNT_ID = "12345678901"
CARD_NUMBER = "4111111111111111"
OPENING_BALANCE = Decimal("500.00")

OTHER_ACCOUNT_ID = "98765432109"
OTHER_CARD_NUMBER = "4000000000000002"

VALID_REQUEST = {
    "account_id": ACCOUNT_ID,
    "card_number": CARD_NUMBER,
    "type_code": "01",
    "category_code": "0001",
    "source": "POS TERM",
    "description": "Grocery store",
    "amount": "100.00",
    "merchant_id": "100000001",
    "merchant_name": "FreshMart",
    "merchant_city": "Springfield",
    "merchant_zip": "62701",
    "original_date": "20240115",
    "processing_date": "20240116",
    "confirm": "Y",
}


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Provide an async session bound to the test engine."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_engine):
    """
    Async HTTP test client with the test database injected.

    This overrides the get_db dependency so all requests hit the
    in-memory test database instead of the real one.
    """
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async def override_get_db():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def authenticated_client(client):
    """Test client with a valid bearer token on every request."""
    token = create_access_token({"sub": "test-operator"})
    client.headers["Authorization"] = f"Bearer {token}"
    return client


@pytest_asyncio.fixture
async def seeded_accounts(db_session):
    """
    Two accounts with one card each:

      12345678901 / 4111111111111111, opening balance 500.00
      98765432109 / 4000000000000002, opening balance 0.00
    """
    db_session.add_all([
        Account(account_id=ACCOUNT_ID, current_balance=OPENING_BALANCE),
        Account(account_id=OTHER_ACCOUNT_ID, current_balance=Decimal("0.00")),
    ])
    await db_session.flush()
    db_session.add_all([
        Card(card_number=CARD_NUMBER, account_id=ACCOUNT_ID),
        Card(card_number=OTHER_CARD_NUMBER, account_id=OTHER_ACCOUNT_ID),
    ])
    await db_session.commit()
    return {ACCOUNT_ID: CARD_NUMBER, OTHER_ACCOUNT_ID: OTHER_CARD_NUMBER}


@pytest.fixture
def make_request():
    """Build a valid add request, overriding any fields passed in."""
    def _make(**overrides) -> TransactionAddRequest:
        data = {**VALID_REQUEST, **overrides}
        return TransactionAddRequest(**data)
    return _make


# ---------------------------------------------------------------------------
# In-process fake stores
# ---------------------------------------------------------------------------

class FakeTransactionStore:
    """
    Dict-backed transaction store that records every call.

    duplicate_saves: the next N saves report a duplicate key (as if a
    concurrent writer had just taken the id) before one succeeds.
    """

    def __init__(self, ids=(), items=None, unavailable=False, duplicate_saves=0):
        self.ids = set(ids)
        self.items = list(items or [])
        self.saved = []
        self.unavailable = unavailable
        self.duplicate_saves = duplicate_saves
        self.calls = Counter()
        self.queries = []

    async def find_highest_identifier(self):
        self.calls["find_highest_identifier"] += 1
        if self.unavailable:
            raise StoreUnavailableError("find_highest_identifier")
        return max(self.ids) if self.ids else None

    async def exists(self, transaction_id):
        self.calls["exists"] += 1
        return transaction_id in self.ids

    async def find_by_id(self, transaction_id):
        self.calls["find_by_id"] += 1
        for transaction in self.saved:
            if transaction.transaction_id == transaction_id:
                return transaction
        return None

    async def save(self, transaction):
        self.calls["save"] += 1
        if self.duplicate_saves > 0:
            self.duplicate_saves -= 1
            self.ids.add(transaction.transaction_id)
            return False
        if transaction.transaction_id in self.ids:
            return False
        self.ids.add(transaction.transaction_id)
        self.saved.append(transaction)
        return True

    async def query(self, predicates, sort, offset, limit):
        self.calls["query"] += 1
        self.queries.append((predicates, sort, offset, limit))
        return self.items[offset:offset + limit], len(self.items)


class FakeAccountStore:
    """Cross reference and balances held in dicts."""

    def __init__(self, links=(), balances=None):
        self.links = {link.card_number: link for link in links}
        self.balances = dict(balances or {})
        self.posted = []
        self.calls = Counter()

    async def find_card(self, card_number):
        self.calls["find_card"] += 1
        return self.links.get(card_number)

    async def find_card_for_account(self, account_id):
        self.calls["find_card_for_account"] += 1
        for link in self.links.values():
            if link.account_id == account_id:
                return link
        return None

    async def current_balance(self, account_id):
        self.calls["current_balance"] += 1
        return self.balances.get(account_id)

    async def post_balance(self, account_id, new_balance):
        self.calls["post_balance"] += 1
        self.balances[account_id] = new_balance
        self.posted.append((account_id, new_balance))


@pytest.fixture
def account_store():
    """FakeAccountStore holding 12345678901 / 4111111111111111 at 500.00."""
    return FakeAccountStore(
        links=[CardLink(account_id=ACCOUNT_ID, card_number=CARD_NUMBER)],
        balances={ACCOUNT_ID: OPENING_BALANCE},
    )
