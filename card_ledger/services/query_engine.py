"""
Filter and pagination engine for transaction listing.

Pipeline:
  1. Validate the raw ListFilter (collect-all, see LIST_RULES). Any failure
     returns an empty page envelope carrying every message; the store is
     never called.
  2. Normalize: parse dates/amounts, clamp paging, resolve the sort.
  3. Dispatch: pick ONE access path from the decision table below and
     compose its compatible secondary predicates onto it.
  4. Run one store query and assemble the PageResult.

Access path decision table (first present predicate wins):

    path             primary predicate            composed secondaries
    ---------------  ---------------------------  ---------------------------
    transaction_id   exact transaction id         -
    card_number      card number                  date_range, amount_range
    account_id       account id                   date_range, amount_range
    date_range       processing date range        amount_range
    type_code        transaction type             date_range
    category_code    transaction category         date_range
    amount_range     amount range                 -
    text             description / merchant text  -
    unfiltered       -                            -

Predicates that are present but not part of the chosen path are listed as
ignored in PageResult.applied_filter_description, so the caller can see
exactly what was filtered.

Paging:
  page_number is 0-based on input and 1-based in the result. It is clamped
  to >= 0, page_size to [1, MAX_PAGE_SIZE]. total_pages is ceil(N / size),
  0 for an empty result. page_aggregate_amount is the sum of the returned
  page only.
"""

import enum
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from card_ledger.config import settings
from card_ledger.reference import is_known_category, parse_transaction_type
from card_ledger.services.predicates import Between, Contains, Equals, SortOrder
from card_ledger.services.validation import (
    ACCOUNT_ID_PATTERN,
    AMOUNT_SCALE,
    CARD_NUMBER_PATTERN,
    MAX_ABS_AMOUNT,
    TRANSACTION_ID_PATTERN,
    Failure,
    FailureKind,
    all_failures,
    clean,
    decimal_places,
    parse_amount,
    parse_date,
)

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = (
    "processing_timestamp",
    "original_timestamp",
    "transaction_id",
    "amount",
    "type_code",
    "category_code",
    "merchant_name",
    "created_at",
)
DEFAULT_SORT_FIELD = "processing_timestamp"
DEFAULT_SORT_DIRECTION = "DESC"

TEXT_FRAGMENT_PATTERN = re.compile(r"^[A-Za-z0-9\s.,\-_'&]*$")


@dataclass
class ListFilter:
    """Raw list request, exactly as the caller sent it."""
    transaction_id: str | None = None
    card_number: str | None = None
    account_id: str | None = None
    from_date: str | None = None
    to_date: str | None = None
    min_amount: str | None = None
    max_amount: str | None = None
    type_code: str | None = None
    category_code: str | None = None
    description: str | None = None
    merchant_name: str | None = None
    sort_by: str | None = None
    sort_direction: str | None = None
    page_number: int | None = 0
    page_size: int | None = None


@dataclass
class PageResult:
    items: list = field(default_factory=list)
    page: int = 1
    page_size: int = settings.DEFAULT_PAGE_SIZE
    total_pages: int = 0
    total_records: int = 0
    page_aggregate_amount: Decimal = Decimal("0.00")
    access_path: str | None = None
    applied_filter_description: str = ""
    has_next_page: bool = False
    has_previous_page: bool = False
    errors: list[Failure] = field(default_factory=list)


class AccessPath(str, enum.Enum):
    TRANSACTION_ID = "transaction_id"
    CARD = "card_number"
    ACCOUNT = "account_id"
    DATE_RANGE = "date_range"
    TYPE = "type_code"
    CATEGORY = "category_code"
    AMOUNT_RANGE = "amount_range"
    TEXT = "text"
    UNFILTERED = "unfiltered"


# Priority order, primary predicate name == path value
ACCESS_PATHS: tuple[tuple[AccessPath, frozenset[str]], ...] = (
    (AccessPath.TRANSACTION_ID, frozenset()),
    (AccessPath.CARD, frozenset({"date_range", "amount_range"})),
    (AccessPath.ACCOUNT, frozenset({"date_range", "amount_range"})),
    (AccessPath.DATE_RANGE, frozenset({"amount_range"})),
    (AccessPath.TYPE, frozenset({"date_range"})),
    (AccessPath.CATEGORY, frozenset({"date_range"})),
    (AccessPath.AMOUNT_RANGE, frozenset()),
    (AccessPath.TEXT, frozenset()),
)

# Fixed order used when composing and describing predicates
_PREDICATE_ORDER = (
    "transaction_id",
    "card_number",
    "account_id",
    "date_range",
    "type_code",
    "category_code",
    "amount_range",
    "text",
)


# ---------------------------------------------------------------------------
# List-request validation (collect-all)
# ---------------------------------------------------------------------------

def _pattern_rule(attr: str, pattern: re.Pattern, message: str):
    def check_pattern(list_filter: ListFilter) -> Failure | None:
        value = clean(getattr(list_filter, attr))
        if value is not None and not pattern.match(value):
            return Failure(FailureKind.FORMAT, message, attr)
        return None

    check_pattern.__name__ = f"check_{attr}_format"
    return check_pattern


def _date_rule(attr: str, label: str):
    def check_date(list_filter: ListFilter) -> Failure | None:
        value = getattr(list_filter, attr)
        if clean(value) is not None and parse_date(value) is None:
            return Failure(
                FailureKind.TEMPORAL,
                f"{label} must be a valid date in CCYYMMDD or YYYY-MM-DD format",
                attr,
            )
        return None

    check_date.__name__ = f"check_{attr}"
    return check_date


def check_date_range_order(list_filter: ListFilter) -> Failure | None:
    start = parse_date(list_filter.from_date)
    end = parse_date(list_filter.to_date)
    if start is not None and end is not None and start.date() > end.date():
        return Failure(
            FailureKind.TEMPORAL,
            "To Date must not be before From Date",
            "to_date",
        )
    return None


def _amount_rule(attr: str, label: str):
    def check_amount(list_filter: ListFilter) -> Failure | None:
        value = getattr(list_filter, attr)
        if clean(value) is None:
            return None
        amount = parse_amount(value)
        if amount is None:
            return Failure(FailureKind.FORMAT, f"{label} must be a valid number", attr)
        if decimal_places(amount) > AMOUNT_SCALE:
            return Failure(
                FailureKind.RANGE, f"{label} may have at most 2 decimal places", attr
            )
        if abs(amount) > MAX_ABS_AMOUNT:
            return Failure(
                FailureKind.RANGE,
                f"{label} must be between -999999999.99 and 999999999.99",
                attr,
            )
        return None

    check_amount.__name__ = f"check_{attr}"
    return check_amount


def check_amount_range_order(list_filter: ListFilter) -> Failure | None:
    low = parse_amount(list_filter.min_amount)
    high = parse_amount(list_filter.max_amount)
    if low is not None and high is not None and low > high:
        return Failure(
            FailureKind.RANGE,
            "Minimum amount must not be greater than maximum amount",
            "max_amount",
        )
    return None


def check_type_filter(list_filter: ListFilter) -> Failure | None:
    code = clean(list_filter.type_code)
    if code is not None and parse_transaction_type(code) is None:
        return Failure(FailureKind.RANGE, f"Unknown transaction type {code!r}", "type_code")
    return None


def check_category_filter(list_filter: ListFilter) -> Failure | None:
    code = clean(list_filter.category_code)
    if code is not None and not is_known_category(code):
        return Failure(
            FailureKind.RANGE, f"Unknown transaction category {code!r}", "category_code"
        )
    return None


def check_sort_field(list_filter: ListFilter) -> Failure | None:
    sort_by = clean(list_filter.sort_by)
    if sort_by is not None and sort_by not in SORTABLE_FIELDS:
        return Failure(
            FailureKind.RANGE,
            f"Sort field must be one of: {', '.join(SORTABLE_FIELDS)}",
            "sort_by",
        )
    return None


def check_sort_direction(list_filter: ListFilter) -> Failure | None:
    direction = clean(list_filter.sort_direction)
    if direction is not None and direction.upper() not in ("ASC", "DESC"):
        return Failure(FailureKind.RANGE, "Sort direction must be ASC or DESC", "sort_direction")
    return None


LIST_RULES = (
    _pattern_rule(
        "transaction_id",
        TRANSACTION_ID_PATTERN,
        "Transaction ID must be exactly 16 alphanumeric characters",
    ),
    _pattern_rule("card_number", CARD_NUMBER_PATTERN, "Card Number must be exactly 16 digits"),
    _pattern_rule("account_id", ACCOUNT_ID_PATTERN, "Account ID must be exactly 11 digits"),
    _date_rule("from_date", "From Date"),
    _date_rule("to_date", "To Date"),
    check_date_range_order,
    _amount_rule("min_amount", "Minimum amount"),
    _amount_rule("max_amount", "Maximum amount"),
    check_amount_range_order,
    check_type_filter,
    check_category_filter,
    check_sort_field,
    check_sort_direction,
    _pattern_rule(
        "description",
        TEXT_FRAGMENT_PATTERN,
        "Description filter may only contain letters, digits, spaces and .,-_'&",
    ),
    _pattern_rule(
        "merchant_name",
        TEXT_FRAGMENT_PATTERN,
        "Merchant name filter may only contain letters, digits, spaces and .,-_'&",
    ),
)


def validate_list_filter(list_filter: ListFilter) -> list[Failure]:
    return all_failures(LIST_RULES, list_filter)


# ---------------------------------------------------------------------------
# Normalization and dispatch
# ---------------------------------------------------------------------------

def clamp_paging(
    page_number: int | None,
    page_size: int | None,
    default_page_size: int = settings.DEFAULT_PAGE_SIZE,
    max_page_size: int = settings.MAX_PAGE_SIZE,
) -> tuple[int, int]:
    """(0-based page index, page size) within bounds."""
    page_index = max(0, page_number or 0)
    if page_size is None:
        size = default_page_size
    else:
        size = min(max(page_size, 1), max_page_size)
    return page_index, size


def resolve_sort(list_filter: ListFilter) -> SortOrder:
    sort_field = clean(list_filter.sort_by) or DEFAULT_SORT_FIELD
    direction = (clean(list_filter.sort_direction) or DEFAULT_SORT_DIRECTION).upper()
    return SortOrder(field=sort_field, descending=direction == "DESC")


def build_predicates(list_filter: ListFilter) -> dict[str, list]:
    """
    Every predicate the (already validated) filter supplies, grouped by
    predicate name. Absent predicates are left out of the dict.
    """
    predicates: dict[str, list] = {}

    transaction_id = clean(list_filter.transaction_id)
    if transaction_id is not None:
        predicates["transaction_id"] = [Equals("transaction_id", transaction_id)]

    card_number = clean(list_filter.card_number)
    if card_number is not None:
        predicates["card_number"] = [Equals("card_number", card_number)]

    account_id = clean(list_filter.account_id)
    if account_id is not None:
        predicates["account_id"] = [Equals("account_id", account_id)]

    start = parse_date(list_filter.from_date)
    end = parse_date(list_filter.to_date)
    if start is not None or end is not None:
        # Whole calendar days: from midnight of from_date to before midnight after to_date
        lower = _start_of_day(start) if start is not None else None
        upper = _start_of_day(end) + timedelta(days=1) if end is not None else None
        predicates["date_range"] = [
            Between("processing_timestamp", lower, upper, upper_exclusive=True)
        ]

    type_code = clean(list_filter.type_code)
    if type_code is not None:
        predicates["type_code"] = [Equals("type_code", type_code)]

    category_code = clean(list_filter.category_code)
    if category_code is not None:
        predicates["category_code"] = [Equals("category_code", category_code)]

    low = parse_amount(list_filter.min_amount)
    high = parse_amount(list_filter.max_amount)
    if low is not None or high is not None:
        predicates["amount_range"] = [Between("amount", low, high)]

    text = []
    description = clean(list_filter.description)
    if description is not None:
        text.append(Contains("description", description))
    merchant_name = clean(list_filter.merchant_name)
    if merchant_name is not None:
        text.append(Contains("merchant_name", merchant_name))
    if text:
        predicates["text"] = text

    return predicates


def choose_access_path(present: set[str]) -> tuple[AccessPath, list[str], list[str]]:
    """
    Apply the decision table.

    Returns:
        (path, applied predicate names, ignored predicate names), names in
        a fixed order.
    """
    for path, secondaries in ACCESS_PATHS:
        if path.value in present:
            applied = {path.value} | (secondaries & present)
            break
    else:
        path, applied = AccessPath.UNFILTERED, set()

    applied_names = [name for name in _PREDICATE_ORDER if name in applied]
    ignored_names = [name for name in _PREDICATE_ORDER if name in present - applied]
    return path, applied_names, ignored_names


def describe_access_path(path: AccessPath, applied: list[str], ignored: list[str]) -> str:
    if path is AccessPath.UNFILTERED:
        return "All transactions"
    description = f"Filtered by {' + '.join(applied)}"
    if ignored:
        description += f" (ignored: {', '.join(ignored)})"
    return description


def _start_of_day(moment):
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------

async def query_transactions(
    store,
    list_filter: ListFilter,
    default_page_size: int = settings.DEFAULT_PAGE_SIZE,
    max_page_size: int = settings.MAX_PAGE_SIZE,
) -> PageResult:
    """
    Validate, dispatch and page a transaction list request.

    Args:
        store: Anything with async query(predicates, sort, offset, limit)
               returning (items, total).
        list_filter: The caller's raw filter.

    Returns:
        A PageResult. On validation failure its `errors` is non-empty, its
        items are empty and the store was not called.
    """
    page_index, page_size = clamp_paging(
        list_filter.page_number, list_filter.page_size, default_page_size, max_page_size
    )

    errors = validate_list_filter(list_filter)
    if errors:
        logger.warning(
            f"Transaction list rejected with {len(errors)} filter error(s)",
            extra={"failure_kind": errors[0].kind.value, "field": errors[0].field},
        )
        return PageResult(
            page=page_index + 1,
            page_size=page_size,
            applied_filter_description="Request rejected",
            errors=errors,
        )

    predicates_by_name = build_predicates(list_filter)
    path, applied, ignored = choose_access_path(set(predicates_by_name))
    predicates = [p for name in applied for p in predicates_by_name[name]]
    sort = resolve_sort(list_filter)

    items, total = await store.query(predicates, sort, page_index * page_size, page_size)

    total_pages = math.ceil(total / page_size) if total else 0
    aggregate = sum((item.amount for item in items), Decimal("0.00"))

    logger.info(
        "Transactions listed",
        extra={"access_path": path.value, "result_count": len(items)},
    )
    return PageResult(
        items=items,
        page=page_index + 1,
        page_size=page_size,
        total_pages=total_pages,
        total_records=total,
        page_aggregate_amount=aggregate,
        access_path=path.value,
        applied_filter_description=describe_access_path(path, applied, ignored),
        has_next_page=page_index + 1 < total_pages,
        has_previous_page=page_index > 0,
        errors=[],
    )
