"""
Validation pipeline for add-transaction requests.

Validation failures are expected, user-correctable outcomes, so they are
RETURNED as values (a Failure, or None when the request is valid) rather
than raised.

Structure:
  Every check is a small rule function `rule(request, context) -> Failure | None`.
  ADD_RULES lists them in pipeline order:

    1. identity       — account id and/or card number present and resolvable
    2. format         — digit counts, merchant zip, amount is a number
    3. required       — type, category, source, description, amount, confirm
    4. range          — reference codes, amount limits/scale, field lengths
    5. temporal       — real calendar dates, original <= processing
    6. confirmation   — the caller explicitly confirmed the write

  Two thin drivers run a rule list:
    - first_failure(): stops at the first failing rule (the add path wants
      one authoritative message)
    - all_failures(): runs every rule and keeps every failure in order
      (the list path wants all problems at once for form feedback)

  Each rule judges only what it owns and returns None when its input is
  absent or already broken in an earlier stage, so collect-all mode does
  not report the same problem twice.

Cross-reference context:
  Identity resolution needs to know whether the supplied account/card exist
  and belong together. That lookup is I/O, so the transaction service
  performs it first and hands the result in as a CrossReference value;
  the rules themselves stay pure.
"""

import enum
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from card_ledger.reference import is_known_category, parse_transaction_type


class FailureKind(str, enum.Enum):
    REQUIRED_FIELD = "required_field"
    FORMAT = "format"
    RANGE = "range"
    TEMPORAL = "temporal"
    CROSS_REFERENCE = "cross_reference"
    CONFIRMATION_REQUIRED = "confirmation_required"


@dataclass(frozen=True)
class Failure:
    """One violated rule. `field` names the offending request field, if any."""
    kind: FailureKind
    message: str
    field: str | None = None


@dataclass(frozen=True)
class CardLink:
    """A row of the card cross reference: this card belongs to this account."""
    account_id: str
    card_number: str
    # False once either the card or its account is deactivated
    active: bool = True


@dataclass(frozen=True)
class CrossReference:
    """
    Result of the account/card lookups made before validation.

    checked is False when no lookup was made (e.g. the identifiers were
    malformed); identity rules then defer to the format stage.
    """
    checked: bool = False
    via_account: CardLink | None = None
    via_card: CardLink | None = None

    @property
    def resolved(self) -> CardLink | None:
        return self.via_card or self.via_account


Rule = Callable[..., Failure | None]


# ---------------------------------------------------------------------------
# Field constraints
# ---------------------------------------------------------------------------

ACCOUNT_ID_PATTERN = re.compile(r"^[0-9]{11}$")
CARD_NUMBER_PATTERN = re.compile(r"^[0-9]{16}$")
MERCHANT_ID_PATTERN = re.compile(r"^[0-9]{9}$")
MERCHANT_ZIP_PATTERN = re.compile(r"^[0-9]{5}(-[0-9]{4})?$")
TRANSACTION_ID_PATTERN = re.compile(r"^[A-Za-z0-9]{16}$")

MAX_ABS_AMOUNT = Decimal("999999999.99")
AMOUNT_SCALE = 2

MAX_SOURCE_LENGTH = 10
MAX_DESCRIPTION_LENGTH = 100
MAX_MERCHANT_NAME_LENGTH = 50
MAX_MERCHANT_CITY_LENGTH = 50

_AFFIRMATIVE = {"Y", "YES", "TRUE"}
_NEGATIVE = {"N", "NO", "FALSE"}


# ---------------------------------------------------------------------------
# Parsing helpers (shared with the list-request rules)
# ---------------------------------------------------------------------------

def is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def clean(value: str | None) -> str | None:
    """Strip surrounding whitespace; blank becomes None."""
    if is_blank(value):
        return None
    return value.strip()


def parse_amount(value) -> Decimal | None:
    """Parse a decimal amount from ASCII text. None if it is not a finite number."""
    if is_blank(value):
        return None
    text = str(value).strip()
    if not text.isascii():
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def decimal_places(amount: Decimal) -> int:
    exponent = amount.as_tuple().exponent
    return -exponent if exponent < 0 else 0


def parse_date(value) -> datetime | None:
    """
    Parse a business date as a UTC datetime.

    Accepted: CCYYMMDD ("20240131"), ISO date ("2024-01-31") and ISO
    datetime ("2024-01-31T10:15:00"). The century must be 19 or 20.
    strptime rejects impossible dates, leap years included (20230229).
    """
    if is_blank(value):
        return None
    text = str(value).strip()
    if not text.isascii():
        return None
    try:
        if len(text) == 8 and text.isdigit():
            parsed = datetime.strptime(text, "%Y%m%d")
        elif len(text) == 10:
            parsed = datetime.strptime(text, "%Y-%m-%d")
        elif len(text) > 10:
            parsed = datetime.fromisoformat(text)
        else:
            return None
    except ValueError:
        return None
    if not 1900 <= parsed.year <= 2099:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_affirmative(value) -> bool:
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().upper() in _AFFIRMATIVE


def _is_confirm_value(value) -> bool:
    if isinstance(value, bool):
        return True
    return isinstance(value, str) and value.strip().upper() in _AFFIRMATIVE | _NEGATIVE


# ---------------------------------------------------------------------------
# Stage 1: identity resolution
# ---------------------------------------------------------------------------

def check_identity_present(request, context: CrossReference) -> Failure | None:
    if is_blank(request.account_id) and is_blank(request.card_number):
        return Failure(
            FailureKind.CROSS_REFERENCE,
            "Account or Card Number must be entered",
            "account_id",
        )
    return None


def check_cross_reference(request, context: CrossReference) -> Failure | None:
    if not context.checked:
        return None
    account_id = clean(request.account_id)
    card_number = clean(request.card_number)

    if account_id is not None and context.via_account is None:
        return Failure(
            FailureKind.CROSS_REFERENCE,
            "Account ID NOT found in card cross reference",
            "account_id",
        )
    if card_number is not None and context.via_card is None:
        return Failure(
            FailureKind.CROSS_REFERENCE,
            "Card Number NOT found in card cross reference",
            "card_number",
        )
    if (
        account_id is not None
        and card_number is not None
        and context.via_card.account_id != account_id
    ):
        return Failure(
            FailureKind.CROSS_REFERENCE,
            "Card Number does not belong to the Account",
            "card_number",
        )
    link = context.resolved
    if link is not None and not link.active:
        return Failure(
            FailureKind.CROSS_REFERENCE,
            "Card or Account is not active",
            "card_number" if context.via_card is not None else "account_id",
        )
    return None


# ---------------------------------------------------------------------------
# Stage 2: structural / format
# ---------------------------------------------------------------------------

def check_account_format(request, context=None) -> Failure | None:
    account_id = clean(request.account_id)
    if account_id is not None and not ACCOUNT_ID_PATTERN.match(account_id):
        return Failure(FailureKind.FORMAT, "Account ID must be exactly 11 digits", "account_id")
    return None


def check_card_format(request, context=None) -> Failure | None:
    card_number = clean(request.card_number)
    if card_number is not None and not CARD_NUMBER_PATTERN.match(card_number):
        return Failure(FailureKind.FORMAT, "Card Number must be exactly 16 digits", "card_number")
    return None


def check_merchant_id_format(request, context=None) -> Failure | None:
    merchant_id = clean(request.merchant_id)
    if merchant_id is not None and not MERCHANT_ID_PATTERN.match(merchant_id):
        return Failure(FailureKind.FORMAT, "Merchant ID must be exactly 9 digits", "merchant_id")
    return None


def check_merchant_zip_format(request, context=None) -> Failure | None:
    merchant_zip = clean(request.merchant_zip)
    if merchant_zip is not None and not MERCHANT_ZIP_PATTERN.match(merchant_zip):
        return Failure(
            FailureKind.FORMAT,
            "Merchant ZIP must be in format 12345 or 12345-6789",
            "merchant_zip",
        )
    return None


def check_amount_format(request, context=None) -> Failure | None:
    if not is_blank(request.amount) and parse_amount(request.amount) is None:
        return Failure(
            FailureKind.FORMAT,
            "Amount should be a number in format -999999999.99",
            "amount",
        )
    return None


def validate_transaction_id(transaction_id: str | None) -> Failure | None:
    """Format rule for the view path: exactly 16 alphanumeric characters."""
    if is_blank(transaction_id):
        return Failure(FailureKind.REQUIRED_FIELD, "Tran ID can NOT be empty", "transaction_id")
    if not TRANSACTION_ID_PATTERN.match(transaction_id.strip()):
        return Failure(
            FailureKind.FORMAT,
            "Transaction ID must be exactly 16 alphanumeric characters",
            "transaction_id",
        )
    return None


# ---------------------------------------------------------------------------
# Stage 3: required fields
# ---------------------------------------------------------------------------

def _required(field: str, label: str) -> Rule:
    def check_required(request, context=None) -> Failure | None:
        if is_blank(getattr(request, field)):
            return Failure(FailureKind.REQUIRED_FIELD, f"{label} can NOT be empty", field)
        return None

    check_required.__name__ = f"check_{field}_required"
    return check_required


# ---------------------------------------------------------------------------
# Stage 4: range / enumeration
# ---------------------------------------------------------------------------

def check_type_code_known(request, context=None) -> Failure | None:
    if not is_blank(request.type_code) and parse_transaction_type(request.type_code) is None:
        return Failure(
            FailureKind.RANGE,
            f"Transaction type {request.type_code.strip()!r} is not a valid type code",
            "type_code",
        )
    return None


def check_category_known(request, context=None) -> Failure | None:
    if not is_blank(request.category_code) and not is_known_category(request.category_code):
        return Failure(
            FailureKind.RANGE,
            f"Transaction category {request.category_code.strip()!r} is not a valid category code",
            "category_code",
        )
    return None


def check_amount_range(request, context=None) -> Failure | None:
    amount = parse_amount(request.amount)
    if amount is None:
        return None
    if decimal_places(amount) > AMOUNT_SCALE:
        return Failure(
            FailureKind.RANGE,
            "Amount may have at most 2 decimal places",
            "amount",
        )
    if abs(amount) > MAX_ABS_AMOUNT:
        return Failure(
            FailureKind.RANGE,
            "Amount must be between -999999999.99 and 999999999.99",
            "amount",
        )
    return None


def _max_length(field: str, label: str, limit: int) -> Rule:
    def check_length(request, context=None) -> Failure | None:
        value = clean(getattr(request, field))
        if value is not None and len(value) > limit:
            return Failure(
                FailureKind.RANGE,
                f"{label} must be at most {limit} characters",
                field,
            )
        return None

    check_length.__name__ = f"check_{field}_length"
    return check_length


def check_confirm_value(request, context=None) -> Failure | None:
    if not is_blank(request.confirm) and not _is_confirm_value(request.confirm):
        return Failure(FailureKind.RANGE, "Confirm must be Y or N", "confirm")
    return None


# ---------------------------------------------------------------------------
# Stage 5: temporal
# ---------------------------------------------------------------------------

def _date_rule(field: str, label: str) -> Rule:
    def check_date(request, context=None) -> Failure | None:
        value = getattr(request, field)
        if not is_blank(value) and parse_date(value) is None:
            return Failure(
                FailureKind.TEMPORAL,
                f"{label} must be a valid date in CCYYMMDD or YYYY-MM-DD format",
                field,
            )
        return None

    check_date.__name__ = f"check_{field}"
    return check_date


def check_date_order(request, context=None) -> Failure | None:
    original = parse_date(request.original_date)
    processing = parse_date(request.processing_date)
    if original is not None and processing is not None and original > processing:
        return Failure(
            FailureKind.TEMPORAL,
            "Orig Date must not be after Proc Date",
            "original_date",
        )
    return None


# ---------------------------------------------------------------------------
# Stage 6: confirmation gate
# ---------------------------------------------------------------------------

def check_confirmation(request, context=None) -> Failure | None:
    if not is_blank(request.confirm) and not is_affirmative(request.confirm):
        return Failure(
            FailureKind.CONFIRMATION_REQUIRED,
            "Confirm to add this transaction...",
            "confirm",
        )
    return None


ADD_RULES: tuple[Rule, ...] = (
    # 1. identity
    check_identity_present,
    check_cross_reference,
    # 2. format
    check_account_format,
    check_card_format,
    check_merchant_id_format,
    check_merchant_zip_format,
    check_amount_format,
    # 3. required
    _required("type_code", "Type CD"),
    _required("category_code", "Category CD"),
    _required("source", "Source"),
    _required("description", "Description"),
    _required("amount", "Amount"),
    _required("confirm", "Confirm"),
    # 4. range
    check_type_code_known,
    check_category_known,
    check_amount_range,
    _max_length("source", "Source", MAX_SOURCE_LENGTH),
    _max_length("description", "Description", MAX_DESCRIPTION_LENGTH),
    _max_length("merchant_name", "Merchant Name", MAX_MERCHANT_NAME_LENGTH),
    _max_length("merchant_city", "Merchant City", MAX_MERCHANT_CITY_LENGTH),
    check_confirm_value,
    # 5. temporal
    _date_rule("original_date", "Orig Date"),
    _date_rule("processing_date", "Proc Date"),
    check_date_order,
    # 6. confirmation
    check_confirmation,
)


# ---------------------------------------------------------------------------
# Drivers
# ---------------------------------------------------------------------------

def first_failure(rules: Iterable[Rule], *args) -> Failure | None:
    """Run rules in order and return the first failure (short-circuit)."""
    for rule in rules:
        failure = rule(*args)
        if failure is not None:
            return failure
    return None


def all_failures(rules: Iterable[Rule], *args) -> list[Failure]:
    """Run every rule and return all failures in rule order."""
    failures = []
    for rule in rules:
        failure = rule(*args)
        if failure is not None:
            failures.append(failure)
    return failures


def validate(request, context: CrossReference | None = None) -> Failure | None:
    """Short-circuit validation of an add request. None means valid."""
    return first_failure(ADD_RULES, request, context or CrossReference())


def validate_all(request, context: CrossReference | None = None) -> list[Failure]:
    """Collect-all validation of an add request."""
    return all_failures(ADD_RULES, request, context or CrossReference())
