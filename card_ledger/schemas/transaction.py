"""
Pydantic schemas for the transaction endpoints.

Request fields are deliberately lenient (optional strings): every check on
their content is made by the validation pipeline, so problems come back
through its failure taxonomy rather than as a generic 422.

All monetary amounts are Decimals with 2 places, serialized as strings
(e.g. "100.00") so no precision is lost in JSON.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator


class TransactionAddRequest(BaseModel):
    """Request body for POST /transactions."""
    account_id: str | None = Field(None, description="11-digit account ID")
    card_number: str | None = Field(None, description="16-digit card number")
    type_code: str | None = Field(None, description="Transaction type code, e.g. 01")
    category_code: str | None = Field(None, description="Transaction category code, e.g. 0001")
    source: str | None = None
    description: str | None = None
    amount: str | None = Field(None, description="Signed amount, e.g. -12.50")
    merchant_id: str | None = None
    merchant_name: str | None = None
    merchant_city: str | None = None
    merchant_zip: str | None = None
    original_date: str | None = Field(None, description="CCYYMMDD or YYYY-MM-DD")
    processing_date: str | None = Field(None, description="CCYYMMDD or YYYY-MM-DD")
    confirm: str | bool | None = Field(None, description="Y/N or true/false")

    @field_validator(
        "account_id", "card_number", "type_code", "category_code",
        "amount", "merchant_id", "merchant_zip",
        mode="before",
    )
    @classmethod
    def numbers_as_text(cls, value):
        """Accept JSON numbers for numeric-looking fields; the pipeline judges the text."""
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            return str(value)
        return value


class FieldError(BaseModel):
    kind: str
    message: str
    field: str | None = None


class TransactionResponse(BaseModel):
    """Public representation of a transaction."""
    transaction_id: str
    type_code: str
    category_code: str
    source: str
    description: str
    amount: Decimal
    card_number: str
    account_id: str
    merchant_id: str | None
    merchant_name: str | None
    merchant_city: str | None
    merchant_zip: str | None
    original_timestamp: datetime
    processing_timestamp: datetime
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TransactionAddResponse(BaseModel):
    """Response body for POST /transactions (success and validation failure)."""
    success: bool
    message: str
    transaction_id: str | None = None
    previous_balance: Decimal | None = None
    current_balance: Decimal | None = None
    failure_kind: str | None = None
    field_errors: list[FieldError] = []
    transaction: TransactionResponse | None = None


class TransactionListResponse(BaseModel):
    """Response body for GET /transactions."""
    items: list[TransactionResponse]
    page: int
    page_size: int
    total_pages: int
    total_records: int
    page_aggregate_amount: Decimal
    access_path: str | None
    applied_filter_description: str
    has_next_page: bool
    has_previous_page: bool
    errors: list[FieldError]
