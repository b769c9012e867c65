#!/usr/bin/env python3
"""
Demo seed script — populates the ledger with sample data for demos.

!! NOT FOR PRODUCTION !!
This script writes demo accounts and cards straight into the database
(there is no account-opening API; accounts come from upstream systems),
then posts two months of transactions through the running API so every
one goes through validation, identifier allocation and balance posting.

Usage:
    # With the API server running on localhost:8000:
    python demo/seed.py

    # Reset the database and re-seed:
    python demo/seed.py --reset

    # Custom server URL:
    python demo/seed.py --base-url http://localhost:9000

The script mints its own bearer token with SECRET_KEY, so it must run with
the same environment (.env) as the server.
"""

import argparse
import asyncio
import os
import random
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx

from card_ledger.security import create_access_token

BASE_URL = "http://localhost:8000"

# ---------------------------------------------------------------------------
# Demo accounts
# ---------------------------------------------------------------------------

ACCOUNTS = [
    {"account_id": "12345678901", "card_number": "4111111111111111", "opening_balance": "250.00"},
    {"account_id": "23456789012", "card_number": "4222222222222222", "opening_balance": "0.00"},
    {"account_id": "34567890123", "card_number": "4333333333333333", "opening_balance": "1200.50"},
    {"account_id": "45678901234", "card_number": "4444444444444444", "opening_balance": "75.25"},
]

# (type code, category code, descriptions)
PURCHASES = ("01", "0001", [
    "Coffee shop", "Grocery store", "Gas station", "Online subscription",
    "Restaurant", "Pharmacy", "Hardware store", "Bookstore",
])
CASH_ADVANCES = ("01", "0004", ["ATM withdrawal"])
PAYMENTS = ("02", "0001", ["Online payment - thank you"])
REFUNDS = ("05", "0001", ["Merchandise return"])

MERCHANTS = [
    {"merchant_id": "100000001", "merchant_name": "Corner Cafe", "merchant_city": "Springfield", "merchant_zip": "62701"},
    {"merchant_id": "100000002", "merchant_name": "FreshMart", "merchant_city": "Shelbyville", "merchant_zip": "62565"},
    {"merchant_id": "100000003", "merchant_name": "QuickFuel", "merchant_city": "Capital City", "merchant_zip": "62702-1234"},
    {"merchant_id": "100000004", "merchant_name": "Page Turners", "merchant_city": "Springfield", "merchant_zip": "62703"},
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def log(msg: str) -> None:
    print(f"  {msg}")


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def insert_accounts() -> None:
    """Create the demo accounts and cards directly in the database."""
    from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
    from card_ledger.config import settings
    from card_ledger.database import Base
    from card_ledger.models.account import Account
    from card_ledger.models.card import Card

    engine = create_async_engine(settings.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession)

    async with session_factory() as session:
        for info in ACCOUNTS:
            if await session.get(Account, info["account_id"]) is not None:
                log(f"Account {info['account_id']} already exists, skipping")
                continue
            session.add(Account(
                account_id=info["account_id"],
                current_balance=Decimal(info["opening_balance"]),
            ))
            await session.flush()
            session.add(Card(card_number=info["card_number"], account_id=info["account_id"]))
            log(f"Account {info['account_id']} / card {info['card_number']}"
                f" (opening balance ${info['opening_balance']})")
        await session.commit()

    await engine.dispose()


async def add_transaction(client: httpx.AsyncClient, token: str, body: dict) -> dict:
    resp = await client.post(
        f"{BASE_URL}/transactions",
        json={**body, "confirm": "Y"},
        headers=auth_header(token),
    )
    return resp.json()


def random_transaction(card_number: str, kind: tuple, day: datetime) -> dict:
    type_code, category_code, descriptions = kind
    if type_code == "02":
        amount = Decimal(random.randint(50_00, 400_00)) / 100
    else:
        amount = Decimal(random.randint(3_00, 120_00)) / 100
    body = {
        "card_number": card_number,
        "type_code": type_code,
        "category_code": category_code,
        "source": "POS TERM" if type_code == "01" else "OPERATOR",
        "description": random.choice(descriptions),
        "amount": f"{amount:.2f}",
        "original_date": day.strftime("%Y%m%d"),
        "processing_date": day.strftime("%Y%m%d"),
    }
    if type_code == "01":
        body.update(random.choice(MERCHANTS))
    return body


# ---------------------------------------------------------------------------
# Seed logic
# ---------------------------------------------------------------------------

async def seed(base_url: str) -> None:
    global BASE_URL
    BASE_URL = base_url

    print("\n========================================")
    print("  DEMO SEED — NOT FOR PRODUCTION")
    print("========================================\n")

    print("Creating accounts and cards...")
    await insert_accounts()

    token = create_access_token({"sub": "demo-seed"})
    today = datetime.now(timezone.utc)
    added = rejected = 0

    async with httpx.AsyncClient(timeout=30.0) as client:
        # Health check
        try:
            health = await client.get(f"{BASE_URL}/health")
            health.raise_for_status()
        except (httpx.ConnectError, httpx.HTTPStatusError):
            print(f"  ERROR: Cannot connect to {BASE_URL}")
            print("  Start the server first: uvicorn card_ledger.main:app --reload\n")
            sys.exit(1)

        print("\nPosting two months of transactions...")
        for info in ACCOUNTS:
            card_number = info["card_number"]
            # Oldest first so sequential IDs follow processing dates
            for days_ago in range(60, -1, -3):
                day = today - timedelta(days=days_ago)
                kinds = [PURCHASES] * 6 + [CASH_ADVANCES, REFUNDS]
                if days_ago % 30 == 0:
                    kinds.append(PAYMENTS)
                result = await add_transaction(
                    client, token, random_transaction(card_number, random.choice(kinds), day)
                )
                if result.get("success"):
                    added += 1
                else:
                    rejected += 1
                    log(f"Rejected: {result.get('message')}")

            last = await client.get(
                f"{BASE_URL}/transactions",
                params={"card_number": card_number, "page_size": 1},
                headers=auth_header(token),
            )
            total = last.json().get("total_records", 0)
            log(f"Card {card_number}: {total} transactions")

    # --- Summary ---
    print("\n========================================")
    print("  SEED COMPLETE")
    print("========================================")
    log(f"Transactions added:    {added}")
    log(f"Transactions rejected: {rejected}")
    print(f"\n  Bearer token for manual testing:\n  {token}\n")


def reset_database() -> None:
    """Delete the SQLite database file so the server recreates it on restart."""
    db_path = os.path.join(os.path.dirname(__file__), "..", "data", "ledger.db")
    db_path = os.path.normpath(db_path)

    if os.path.exists(db_path):
        os.remove(db_path)
        print(f"\n  Deleted {db_path}")
        print("  Restart the server to recreate empty tables.\n")
    else:
        print(f"\n  No database found at {db_path}\n")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Demo seed script — NOT FOR PRODUCTION",
        epilog="Creates sample accounts, cards, and transactions for demos.",
    )
    parser.add_argument(
        "--base-url", default="http://localhost:8000",
        help="Base URL of the running API (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--reset", action="store_true",
        help="Delete the SQLite database before seeding (restart the server afterwards)",
    )
    args = parser.parse_args()

    if args.reset:
        reset_database()
        return

    await seed(args.base_url)


if __name__ == "__main__":
    asyncio.run(main())
