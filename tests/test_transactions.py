"""
Tests for the transaction endpoints, end to end over HTTP and SQLite.

These tests verify:
  - Adding a confirmed transaction allocates sequential ids and posts the balance
  - An unconfirmed add returns 428 and writes nothing
  - Validation failures return 400 with the failure kind and field
  - Viewing by id (200 / 400 bad format / 404 unknown)
  - Listing: access paths, date filtering, text search, paging, rejected filters
  - Inactive cards and accounts are rejected
  - A stale highest-id read is retried at insert; exhausted retries return 409
  - Store faults map to 503 and an expired deadline to 504
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from fastapi import Depends

from card_ledger.config import settings
from card_ledger.database import get_db
from card_ledger.dependencies import get_account_store, get_transaction_store
from card_ledger.exceptions import StoreUnavailableError
from card_ledger.main import app
from card_ledger.models.account import Account
from card_ledger.models.card import Card
from card_ledger.models.transaction import Transaction
from card_ledger.stores import TransactionStore

from conftest import (
    ACCOUNT_ID,
    CARD_NUMBER,
    OTHER_ACCOUNT_ID,
    OTHER_CARD_NUMBER,
    VALID_REQUEST,
)


async def post_transaction(client, **overrides):
    return await client.post("/transactions", json={**VALID_REQUEST, **overrides})


async def stored_balance(db_session, account_id: str) -> Decimal:
    result = await db_session.execute(
        select(Account.current_balance).where(Account.account_id == account_id)
    )
    return result.scalar_one()


class TestAddTransaction:
    """Tests for POST /transactions."""

    async def test_first_transaction(self, authenticated_client, seeded_accounts, db_session):
        """A confirmed purchase gets the seed id and raises the owed balance."""
        response = await post_transaction(authenticated_client)
        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["transaction_id"] == "0000000000000001"
        assert data["previous_balance"] == "500.00"
        assert data["current_balance"] == "600.00"
        assert data["failure_kind"] is None
        assert data["transaction"]["amount"] == "100.00"
        assert data["transaction"]["account_id"] == ACCOUNT_ID
        assert data["transaction"]["card_number"] == CARD_NUMBER

        assert await stored_balance(db_session, ACCOUNT_ID) == Decimal("600.00")

    async def test_ids_are_sequential(self, authenticated_client, seeded_accounts):
        first = await post_transaction(authenticated_client)
        second = await post_transaction(authenticated_client, type_code="02", amount="40.00")
        assert first.json()["transaction_id"] == "0000000000000001"
        assert second.json()["transaction_id"] == "0000000000000002"
        assert second.json()["previous_balance"] == first.json()["current_balance"]
        assert second.json()["current_balance"] == "560.00"

    async def test_unconfirmed_writes_nothing(self, authenticated_client, seeded_accounts, db_session):
        response = await post_transaction(authenticated_client, confirm="N")
        assert response.status_code == 428
        data = response.json()
        assert data["success"] is False
        assert data["failure_kind"] == "confirmation_required"
        assert data["transaction_id"] is None

        count = await db_session.execute(select(Transaction))
        assert count.scalars().all() == []
        assert await stored_balance(db_session, ACCOUNT_ID) == Decimal("500.00")

    async def test_unconfirmed_then_confirmed_gets_seed_id(self, authenticated_client, seeded_accounts):
        """Rejections consume no identifiers."""
        await post_transaction(authenticated_client, confirm="N")
        await post_transaction(authenticated_client, amount="bad")
        response = await post_transaction(authenticated_client)
        assert response.json()["transaction_id"] == "0000000000000001"

    async def test_missing_identity(self, authenticated_client, seeded_accounts):
        response = await post_transaction(authenticated_client, account_id=None, card_number=None)
        assert response.status_code == 400
        data = response.json()
        assert data["failure_kind"] == "cross_reference"
        assert data["field_errors"][0]["field"] == "account_id"

    async def test_card_of_another_account(self, authenticated_client, seeded_accounts):
        response = await post_transaction(authenticated_client, card_number=OTHER_CARD_NUMBER)
        assert response.status_code == 400
        assert response.json()["message"] == "Card Number does not belong to the Account"

    async def test_card_only(self, authenticated_client, seeded_accounts):
        response = await post_transaction(
            authenticated_client, account_id=None, card_number=OTHER_CARD_NUMBER
        )
        assert response.status_code == 201
        assert response.json()["transaction"]["account_id"] == OTHER_ACCOUNT_ID

    @pytest.mark.parametrize("overrides,kind,field", [
        ({"amount": "12.345"}, "range", "amount"),
        ({"amount": "1000000000.00"}, "range", "amount"),
        ({"type_code": "42"}, "range", "type_code"),
        ({"description": ""}, "required_field", "description"),
        ({"merchant_zip": "ABCDE"}, "format", "merchant_zip"),
        ({"original_date": "20240230"}, "temporal", "original_date"),
    ])
    async def test_validation_failures(self, authenticated_client, seeded_accounts, overrides, kind, field):
        response = await post_transaction(authenticated_client, **overrides)
        assert response.status_code == 400
        data = response.json()
        assert data["failure_kind"] == kind
        assert data["field_errors"] == [
            {"kind": kind, "message": data["message"], "field": field}
        ]

    async def test_requires_authentication(self, client, seeded_accounts):
        response = await post_transaction(client)
        assert response.status_code == 401

    async def test_inactive_card_rejected(self, authenticated_client, seeded_accounts, db_session):
        await db_session.execute(
            update(Card).where(Card.card_number == CARD_NUMBER).values(is_active=False)
        )
        await db_session.commit()

        response = await post_transaction(authenticated_client)
        assert response.status_code == 400
        data = response.json()
        assert data["failure_kind"] == "cross_reference"
        assert data["message"] == "Card or Account is not active"
        assert await stored_balance(db_session, ACCOUNT_ID) == Decimal("500.00")

    async def test_inactive_account_rejected(self, authenticated_client, seeded_accounts, db_session):
        await db_session.execute(
            update(Account).where(Account.account_id == ACCOUNT_ID).values(is_active=False)
        )
        await db_session.commit()

        response = await post_transaction(authenticated_client, card_number=None)
        assert response.status_code == 400
        assert response.json()["field_errors"][0]["field"] == "account_id"


class TestViewTransaction:
    """Tests for GET /transactions/{transaction_id}."""

    async def test_view(self, authenticated_client, seeded_accounts):
        await post_transaction(authenticated_client)
        response = await authenticated_client.get("/transactions/0000000000000001")
        assert response.status_code == 200
        data = response.json()
        assert data["transaction_id"] == "0000000000000001"
        assert data["merchant_name"] == "FreshMart"
        assert data["amount"] == "100.00"

    async def test_bad_id_format(self, authenticated_client):
        response = await authenticated_client.get("/transactions/12345")
        assert response.status_code == 400
        assert response.json()["error_type"] == "format"

    async def test_unknown_id(self, authenticated_client):
        response = await authenticated_client.get("/transactions/0000000000000099")
        assert response.status_code == 404
        assert response.json() == {
            "detail": "Transaction ID NOT found",
            "error_type": "transaction_not_found",
        }


class TestListTransactions:
    """Tests for GET /transactions."""

    async def _add_history(self, client):
        """Five transactions on two cards across January and February 2024."""
        await post_transaction(client, processing_date="20240105", original_date="20240105",
                               description="Coffee shop", amount="4.50")
        await post_transaction(client, processing_date="20240115", original_date="20240115",
                               description="Grocery store", amount="82.10")
        await post_transaction(client, processing_date="20240131", original_date="20240131",
                               description="Online payment", type_code="02", amount="50.00")
        await post_transaction(client, processing_date="20240210", original_date="20240210",
                               description="COFFEE beans", amount="15.00")
        await post_transaction(client, account_id=OTHER_ACCOUNT_ID, card_number=OTHER_CARD_NUMBER,
                               processing_date="20240120", original_date="20240120",
                               description="Bookstore", amount="20.00")

    async def test_account_with_date_range(self, authenticated_client, seeded_accounts):
        await self._add_history(authenticated_client)
        response = await authenticated_client.get("/transactions", params={
            "account_id": ACCOUNT_ID, "from_date": "2024-01-01", "to_date": "2024-01-31",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["access_path"] == "account_id"
        assert data["total_records"] == 3
        # Newest processing date first; to_date is inclusive
        assert [t["description"] for t in data["items"]] == [
            "Online payment", "Grocery store", "Coffee shop",
        ]
        assert data["page_aggregate_amount"] == "136.60"

    async def test_reversed_date_range(self, authenticated_client, seeded_accounts):
        await self._add_history(authenticated_client)
        response = await authenticated_client.get("/transactions", params={
            "from_date": "2024-06-01", "to_date": "2024-01-01",
        })
        assert response.status_code == 400
        data = response.json()
        assert data["items"] == []
        assert data["total_records"] == 0
        assert [e["field"] for e in data["errors"]] == ["to_date"]

    async def test_text_search_is_case_insensitive(self, authenticated_client, seeded_accounts):
        await self._add_history(authenticated_client)
        response = await authenticated_client.get("/transactions", params={"description": "coffee"})
        data = response.json()
        assert data["access_path"] == "text"
        assert sorted(t["description"] for t in data["items"]) == ["COFFEE beans", "Coffee shop"]

    async def test_wildcards_match_literally(self, authenticated_client, seeded_accounts):
        await self._add_history(authenticated_client)
        response = await authenticated_client.get("/transactions", params={"description": "_"})
        assert response.json()["total_records"] == 0

    async def test_card_path_ignores_type(self, authenticated_client, seeded_accounts):
        await self._add_history(authenticated_client)
        response = await authenticated_client.get("/transactions", params={
            "card_number": OTHER_CARD_NUMBER, "type_code": "02",
        })
        data = response.json()
        assert data["total_records"] == 1
        assert "ignored: type_code" in data["applied_filter_description"]

    async def test_amount_range(self, authenticated_client, seeded_accounts):
        await self._add_history(authenticated_client)
        response = await authenticated_client.get("/transactions", params={
            "min_amount": "15", "max_amount": "50.00", "sort_by": "amount", "sort_direction": "ASC",
        })
        data = response.json()
        assert [t["amount"] for t in data["items"]] == ["15.00", "20.00", "50.00"]

    async def test_pagination(self, authenticated_client, seeded_accounts):
        for day in range(1, 26):
            await post_transaction(
                authenticated_client,
                processing_date=f"202403{day:02d}", original_date=f"202403{day:02d}",
                amount="1.00",
            )
        last = await authenticated_client.get("/transactions", params={"page_number": 2})
        data = last.json()
        assert data["page"] == 3
        assert data["page_size"] == 10
        assert data["total_pages"] == 3
        assert data["total_records"] == 25
        assert len(data["items"]) == 5
        assert data["has_next_page"] is False
        assert data["has_previous_page"] is True
        assert data["page_aggregate_amount"] == "5.00"

        clamped = await authenticated_client.get("/transactions", params={"page_size": 1000})
        assert clamped.json()["page_size"] == 100
        assert len(clamped.json()["items"]) == 25

    async def test_page_far_past_the_end(self, authenticated_client, seeded_accounts):
        await self._add_history(authenticated_client)
        response = await authenticated_client.get(
            "/transactions", params={"page_number": 10**20}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["items"] == []
        assert data["total_records"] == 5
        assert data["total_pages"] == 1
        assert data["page_aggregate_amount"] == "0.00"

    @pytest.mark.parametrize("params,field", [
        ({"max_amount": "99999999999999999999"}, "max_amount"),
        ({"min_amount": "10.005"}, "min_amount"),
    ])
    async def test_amount_bounds_outside_money_range(self, authenticated_client, seeded_accounts, params, field):
        response = await authenticated_client.get("/transactions", params=params)
        assert response.status_code == 400
        assert [(e["kind"], e["field"]) for e in response.json()["errors"]] == [("range", field)]

    async def test_empty_ledger(self, authenticated_client):
        response = await authenticated_client.get("/transactions")
        data = response.json()
        assert response.status_code == 200
        assert data["total_pages"] == 0
        assert data["page"] == 1
        assert data["page_aggregate_amount"] == "0.00"


class StaleHighestIdStore(TransactionStore):
    """Reports an empty ledger for the first `stale_reads` highest-id reads."""

    def __init__(self, db, stale_reads):
        super().__init__(db)
        self.stale_reads = stale_reads

    async def find_highest_identifier(self):
        if self.stale_reads > 0:
            self.stale_reads -= 1
            return None
        return await super().find_highest_identifier()


def use_stale_store(stale_reads):
    async def stale_store(db=Depends(get_db)):
        return StaleHighestIdStore(db, stale_reads)
    app.dependency_overrides[get_transaction_store] = stale_store


class TestConcurrentIdentifiers:
    """A concurrent writer took the id this request read as next."""

    async def test_taken_id_is_retried_at_insert(self, authenticated_client, seeded_accounts, db_session):
        first = await post_transaction(authenticated_client)
        assert first.json()["transaction_id"] == "0000000000000001"

        use_stale_store(stale_reads=1)
        second = await post_transaction(authenticated_client)
        assert second.status_code == 201
        assert second.json()["transaction_id"] == "0000000000000002"
        assert second.json()["previous_balance"] == "600.00"

        ids = (await db_session.execute(
            select(Transaction.transaction_id).order_by(Transaction.transaction_id)
        )).scalars().all()
        assert ids == ["0000000000000001", "0000000000000002"]
        # Posted once despite the retried insert
        assert await stored_balance(db_session, ACCOUNT_ID) == Decimal("700.00")

    async def test_retries_exhausted_maps_to_409(self, authenticated_client, seeded_accounts, db_session):
        await post_transaction(authenticated_client)

        use_stale_store(stale_reads=1000)
        response = await post_transaction(authenticated_client)
        assert response.status_code == 409
        assert response.json()["error_type"] == "identifier_conflict"

        count = (await db_session.execute(select(Transaction))).scalars().all()
        assert len(count) == 1
        assert await stored_balance(db_session, ACCOUNT_ID) == Decimal("600.00")


class TestStoreFaults:

    async def test_store_unavailable_maps_to_503(self, authenticated_client):
        class BrokenStore:
            async def find_by_id(self, transaction_id):
                raise StoreUnavailableError("find_by_id")

        app.dependency_overrides[get_transaction_store] = lambda: BrokenStore()
        response = await authenticated_client.get("/transactions/0000000000000001")
        assert response.status_code == 503
        assert response.json()["error_type"] == "store_unavailable"

    async def test_deadline_maps_to_504(self, authenticated_client, monkeypatch):
        class SlowAccountStore:
            async def find_card_for_account(self, account_id):
                await asyncio.sleep(1)

            async def find_card(self, card_number):
                await asyncio.sleep(1)

        monkeypatch.setattr(settings, "REQUEST_TIMEOUT_SECONDS", 0.05)
        app.dependency_overrides[get_account_store] = lambda: SlowAccountStore()
        response = await post_transaction(authenticated_client)
        assert response.status_code == 504
        assert response.json()["error_type"] == "request_timeout"
