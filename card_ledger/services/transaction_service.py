"""
Transaction service — the add-transaction writer and the transaction viewer.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. add_transaction() moves a
request through:

    Received -> Validating -> {Rejected | ConfirmationRequired | Validated}
             -> IdentifierAssigned -> BalanceComputed -> Persisted -> Acknowledged

Only "Persisted" has a side effect. Everything before it reads, so a
rejected or unconfirmed request leaves the ledger exactly as it was and no
identifier is consumed.

Atomicity:
  The balance update and the transaction insert are issued on the SAME
  session and committed together by get_db(). If anything fails after the
  balance is computed (identifier conflict, store fault, deadline), the
  exception propagates and the whole unit of work is rolled back.

  The balance UPDATE is issued before the INSERT so that the insert's
  SAVEPOINT always nests inside an open database transaction.

Duplicate identifiers:
  The insert runs in a SAVEPOINT. If the primary key already exists (a
  concurrent writer took the same sequential id), the savepoint is rolled
  back, a fresh id is allocated and the insert retried, within the same
  attempt budget the identifier service uses.

Validation outcomes vs. exceptions:
  Validation failures are returned in AddTransactionOutcome (the caller
  corrects the input and resubmits). Hard failures (store down, no unique
  id, deadline) are raised as LedgerError subclasses.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from card_ledger.config import settings
from card_ledger.exceptions import (
    AccountNotFoundError,
    IdentifierConflictError,
    InvalidTransactionIdError,
    TransactionNotFoundError,
)
from card_ledger.models.transaction import Transaction
from card_ledger.models.types import CENT
from card_ledger.services.balance_service import compute_balance_impact
from card_ledger.services.identifier_service import next_transaction_id
from card_ledger.services.validation import (
    ACCOUNT_ID_PATTERN,
    CARD_NUMBER_PATTERN,
    CrossReference,
    Failure,
    FailureKind,
    clean,
    parse_amount,
    parse_date,
    validate,
    validate_transaction_id,
)

logger = logging.getLogger(__name__)


@dataclass
class AddTransactionOutcome:
    """What the caller is told about an add request."""
    success: bool
    message: str
    transaction_id: str | None = None
    previous_balance: Decimal | None = None
    current_balance: Decimal | None = None
    failure_kind: FailureKind | None = None
    field_errors: list[Failure] = field(default_factory=list)
    transaction: Transaction | None = None


async def resolve_cross_reference(accounts, request) -> CrossReference:
    """
    Look up the supplied account id / card number in the card cross reference.

    Lookups are only made for well-formed identifiers. If either supplied
    identifier is malformed (or neither is supplied) nothing is looked up
    and the format stage of the pipeline reports the problem.
    """
    account_id = clean(request.account_id)
    card_number = clean(request.card_number)

    if account_id is None and card_number is None:
        return CrossReference()
    if account_id is not None and not ACCOUNT_ID_PATTERN.match(account_id):
        return CrossReference()
    if card_number is not None and not CARD_NUMBER_PATTERN.match(card_number):
        return CrossReference()

    via_account = None
    if account_id is not None:
        via_account = await accounts.find_card_for_account(account_id)
    via_card = None
    if card_number is not None:
        via_card = await accounts.find_card(card_number)

    return CrossReference(checked=True, via_account=via_account, via_card=via_card)


def build_transaction(request, link) -> Transaction:
    """
    Map a VALIDATED request onto a new Transaction row (no id yet).

    A missing processing date means "now"; a missing original date means
    "same as processing".
    """
    processing = parse_date(request.processing_date) or datetime.now(timezone.utc)
    original = parse_date(request.original_date) or processing

    return Transaction(
        type_code=request.type_code.strip(),
        category_code=request.category_code.strip(),
        source=request.source.strip(),
        description=request.description.strip(),
        amount=parse_amount(request.amount).quantize(CENT),
        card_number=link.card_number,
        account_id=link.account_id,
        merchant_id=clean(request.merchant_id),
        merchant_name=clean(request.merchant_name),
        merchant_city=clean(request.merchant_city),
        merchant_zip=clean(request.merchant_zip),
        original_timestamp=original,
        processing_timestamp=processing,
    )


async def add_transaction(
    transactions,
    accounts,
    request,
    caller: str | None = None,
    max_attempts: int = settings.TRANSACTION_ID_MAX_ATTEMPTS,
) -> AddTransactionOutcome:
    """
    Validate and, if valid and confirmed, post a new transaction.

    Args:
        transactions: TransactionStore (or a compatible fake).
        accounts: AccountStore (or a compatible fake).
        request: The add request (raw field values).
        caller: Authenticated caller, for the audit log.
        max_attempts: Identifier attempt budget.

    Returns:
        AddTransactionOutcome. success is False for validation failures,
        including CONFIRMATION_REQUIRED.

    Raises:
        AccountNotFoundError: If the resolved account row is missing.
        IdentifierConflictError: If no unique identifier could be stored.
        StoreUnavailableError: If the store faults at any step.
    """
    # --- Validating ---
    context = await resolve_cross_reference(accounts, request)
    failure = validate(request, context)
    if failure is not None:
        logger.warning(
            f"Transaction rejected: {failure.message}",
            extra={
                "failure_kind": failure.kind.value,
                "field": failure.field,
                "caller": caller,
            },
        )
        return AddTransactionOutcome(
            success=False,
            message=failure.message,
            failure_kind=failure.kind,
            field_errors=[failure],
        )

    link = context.resolved
    transaction = build_transaction(request, link)

    # --- IdentifierAssigned ---
    transaction.transaction_id = await next_transaction_id(transactions, max_attempts)

    # --- BalanceComputed ---
    balance = await accounts.current_balance(link.account_id)
    if balance is None:
        raise AccountNotFoundError(link.account_id)
    snapshot = compute_balance_impact(transaction, balance)

    # --- Persisted ---
    await accounts.post_balance(link.account_id, snapshot.current_balance)
    for attempt in range(1, max_attempts + 1):
        if await transactions.save(transaction):
            break
        logger.warning(
            "Transaction ID taken at insert; allocating a new one",
            extra={"transaction_id": transaction.transaction_id, "attempt": attempt},
        )
        transaction.transaction_id = await next_transaction_id(transactions, max_attempts)
    else:
        raise IdentifierConflictError(max_attempts)

    # --- Acknowledged ---
    logger.info(
        f"Transaction added: amount {transaction.amount}, "
        f"balance {snapshot.previous_balance} -> {snapshot.current_balance}",
        extra={
            "transaction_id": transaction.transaction_id,
            "account_id": link.account_id,
            "caller": caller,
        },
    )
    return AddTransactionOutcome(
        success=True,
        message=f"Transaction added successfully. Your Tran ID is {transaction.transaction_id}.",
        transaction_id=transaction.transaction_id,
        previous_balance=snapshot.previous_balance,
        current_balance=snapshot.current_balance,
        transaction=transaction,
    )


async def get_transaction(transactions, transaction_id: str | None) -> Transaction:
    """
    Load one transaction for viewing.

    Raises:
        InvalidTransactionIdError: If the id is empty or not 16 alphanumerics.
        TransactionNotFoundError: If no transaction has this id.
    """
    failure = validate_transaction_id(transaction_id)
    if failure is not None:
        raise InvalidTransactionIdError(failure)

    transaction = await transactions.find_by_id(transaction_id.strip())
    if transaction is None:
        raise TransactionNotFoundError(transaction_id)
    return transaction
