"""
Transactions router — add, list and view ledger transactions.

  POST /transactions                    — Add a transaction
  GET  /transactions                    — List transactions (filtered, paged)
  GET  /transactions/{transaction_id}   — View a single transaction

Every route requires a valid bearer token (get_current_caller).

Status codes for POST:
  201 — transaction posted
  400 — validation failure (body carries failure_kind and field_errors)
  428 — confirmation required: the request was valid but not confirmed;
        resubmit with confirm = "Y"
"""

import asyncio

from fastapi import APIRouter, Depends, Query, Response, status

from card_ledger.config import settings
from card_ledger.dependencies import (
    get_account_store,
    get_current_caller,
    get_transaction_store,
)
from card_ledger.exceptions import RequestTimeoutError
from card_ledger.schemas.transaction import (
    FieldError,
    TransactionAddRequest,
    TransactionAddResponse,
    TransactionListResponse,
    TransactionResponse,
)
from card_ledger.services import query_engine, transaction_service
from card_ledger.services.validation import FailureKind
from card_ledger.stores import AccountStore, TransactionStore

router = APIRouter()


def _field_errors(failures) -> list[FieldError]:
    return [
        FieldError(kind=f.kind.value, message=f.message, field=f.field)
        for f in failures
    ]


@router.post(
    "",
    response_model=TransactionAddResponse,
    status_code=201,
    summary="Add a transaction",
)
async def add_transaction(
    request: TransactionAddRequest,
    response: Response,
    caller: str = Depends(get_current_caller),
    transactions: TransactionStore = Depends(get_transaction_store),
    accounts: AccountStore = Depends(get_account_store),
):
    """
    Validate and post a new transaction against the account/card pair.

    Supply at least one of **account_id** / **card_number**; if both are
    given they must belong together. **confirm** must be "Y" (or true) for
    the transaction to be written.

    Amounts are decimal strings with at most 2 places (e.g. "100.00").
    Debit types raise the owed balance, credit types lower it.
    """
    try:
        outcome = await asyncio.wait_for(
            transaction_service.add_transaction(
                transactions, accounts, request, caller=caller
            ),
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        raise RequestTimeoutError(settings.REQUEST_TIMEOUT_SECONDS)

    if not outcome.success:
        if outcome.failure_kind is FailureKind.CONFIRMATION_REQUIRED:
            response.status_code = status.HTTP_428_PRECONDITION_REQUIRED
        else:
            response.status_code = status.HTTP_400_BAD_REQUEST

    return TransactionAddResponse(
        success=outcome.success,
        message=outcome.message,
        transaction_id=outcome.transaction_id,
        previous_balance=outcome.previous_balance,
        current_balance=outcome.current_balance,
        failure_kind=outcome.failure_kind.value if outcome.failure_kind else None,
        field_errors=_field_errors(outcome.field_errors),
        transaction=(
            TransactionResponse.model_validate(outcome.transaction)
            if outcome.transaction is not None
            else None
        ),
    )


@router.get(
    "",
    response_model=TransactionListResponse,
    summary="List transactions",
)
async def list_transactions(
    response: Response,
    transaction_id: str | None = Query(None, description="Exact 16-character transaction ID"),
    card_number: str | None = Query(None, description="16-digit card number"),
    account_id: str | None = Query(None, description="11-digit account ID"),
    from_date: str | None = Query(None, description="Inclusive start date, CCYYMMDD or YYYY-MM-DD"),
    to_date: str | None = Query(None, description="Inclusive end date, CCYYMMDD or YYYY-MM-DD"),
    min_amount: str | None = Query(None),
    max_amount: str | None = Query(None),
    type_code: str | None = Query(None),
    category_code: str | None = Query(None),
    description: str | None = Query(None, description="Case-insensitive description fragment"),
    merchant_name: str | None = Query(None, description="Case-insensitive merchant name fragment"),
    sort_by: str | None = Query(None),
    sort_direction: str | None = Query(None, description="ASC or DESC"),
    page_number: int = Query(0, description="0-based page index"),
    page_size: int | None = Query(None, description="Records per page (1-100)"),
    caller: str = Depends(get_current_caller),
    transactions: TransactionStore = Depends(get_transaction_store),
):
    """
    List transactions, newest processing date first by default.

    Only the highest-priority filter drives the query (transaction id, then
    card, account, date range, type, category, amount range, text); the
    compatible secondary filters are combined with it. Filters that were
    supplied but not applied are named in **applied_filter_description**.

    Invalid filters return 400 with every problem in **errors** and an empty
    page.
    """
    list_filter = query_engine.ListFilter(
        transaction_id=transaction_id,
        card_number=card_number,
        account_id=account_id,
        from_date=from_date,
        to_date=to_date,
        min_amount=min_amount,
        max_amount=max_amount,
        type_code=type_code,
        category_code=category_code,
        description=description,
        merchant_name=merchant_name,
        sort_by=sort_by,
        sort_direction=sort_direction,
        page_number=page_number,
        page_size=page_size,
    )
    result = await query_engine.query_transactions(transactions, list_filter)

    if result.errors:
        response.status_code = status.HTTP_400_BAD_REQUEST

    return TransactionListResponse(
        items=[TransactionResponse.model_validate(item) for item in result.items],
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
        total_records=result.total_records,
        page_aggregate_amount=result.page_aggregate_amount,
        access_path=result.access_path,
        applied_filter_description=result.applied_filter_description,
        has_next_page=result.has_next_page,
        has_previous_page=result.has_previous_page,
        errors=_field_errors(result.errors),
    )


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="View a single transaction",
)
async def get_transaction(
    transaction_id: str,
    caller: str = Depends(get_current_caller),
    transactions: TransactionStore = Depends(get_transaction_store),
):
    """Get details for a specific transaction by its 16-character ID."""
    return await transaction_service.get_transaction(transactions, transaction_id)
