"""
Custom exception classes and FastAPI exception handlers.

Validation problems are NOT exceptions here: the validation pipeline returns
them as values (see services/validation.py) because they are expected,
user-correctable outcomes. The classes below cover the hard failures that
must abort a request with nothing written:

Exception hierarchy:
    LedgerError (base)
    ├── NotFoundError
    │   ├── AccountNotFoundError        — account row missing for a resolved card
    │   └── TransactionNotFoundError    — view of an unknown transaction id
    ├── InvalidTransactionIdError       — view id fails the 16-alphanumeric rule
    ├── ConflictError
    │   └── IdentifierConflictError     — no unique id after all attempts
    └── SystemFaultError
        ├── StoreUnavailableError       — record store unreachable / faulted
        └── RequestTimeoutError         — caller deadline expired mid-pipeline

The service layer raises these without importing HTTP concepts; the
handlers registered here translate them into JSON responses.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class LedgerError(Exception):
    """Base exception for all Card Ledger domain errors."""

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------

class NotFoundError(LedgerError):
    """Raised when a looked-up record does not exist."""


class AccountNotFoundError(NotFoundError):
    """Raised when a requested account does not exist."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class TransactionNotFoundError(NotFoundError):
    """Raised when a transaction id is well-formed but unknown."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__("Transaction ID NOT found")


class InvalidTransactionIdError(LedgerError):
    """
    Raised by the view path when the id fails the format rule.

    Attributes:
        failure: The validation Failure describing the problem.
    """

    def __init__(self, failure):
        self.failure = failure
        super().__init__(failure.message)


class ConflictError(LedgerError):
    """Raised when a write collides with existing state."""


class IdentifierConflictError(ConflictError):
    """Raised when a unique transaction id could not be allocated."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Unable to allocate a unique transaction ID after {attempts} attempts"
        )


class SystemFaultError(LedgerError):
    """Raised when infrastructure fails; the caller may retry later."""


class StoreUnavailableError(SystemFaultError):
    """Raised when the record store cannot be reached or faults mid-request."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Record store unavailable during {operation}")


class RequestTimeoutError(SystemFaultError):
    """Raised when the caller deadline expires before the pipeline finishes."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Request did not complete within {timeout_seconds} seconds")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Each handler maps a domain exception to an HTTP status code and a
    consistent JSON body: {"detail": "...", "error_type": "..."}

    This is called once during app startup in main.py.
    """

    @app.exception_handler(NotFoundError)
    async def not_found_handler(
        request: Request, exc: NotFoundError
    ) -> JSONResponse:
        error_type = (
            "transaction_not_found"
            if isinstance(exc, TransactionNotFoundError)
            else "account_not_found"
        )
        return JSONResponse(
            status_code=404,
            content={"detail": exc.detail, "error_type": error_type},
        )

    @app.exception_handler(InvalidTransactionIdError)
    async def invalid_transaction_id_handler(
        request: Request, exc: InvalidTransactionIdError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "detail": exc.detail,
                "error_type": exc.failure.kind.value,
                "field": exc.failure.field,
            },
        )

    @app.exception_handler(IdentifierConflictError)
    async def identifier_conflict_handler(
        request: Request, exc: IdentifierConflictError
    ) -> JSONResponse:
        logger.error(exc.detail, extra={"attempt": exc.attempts, "path": request.url.path})
        return JSONResponse(
            status_code=409,
            content={"detail": exc.detail, "error_type": "identifier_conflict"},
        )

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(
        request: Request, exc: StoreUnavailableError
    ) -> JSONResponse:
        logger.error(exc.detail, extra={"path": request.url.path})
        return JSONResponse(
            status_code=503,
            content={"detail": exc.detail, "error_type": "store_unavailable"},
        )

    @app.exception_handler(RequestTimeoutError)
    async def request_timeout_handler(
        request: Request, exc: RequestTimeoutError
    ) -> JSONResponse:
        logger.error(exc.detail, extra={"path": request.url.path})
        return JSONResponse(
            status_code=504,
            content={"detail": exc.detail, "error_type": "request_timeout"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        # Never leak internals to the caller; the traceback goes to the log only
        logger.error(
            f"Unhandled exception on {request.url.path}: {exc}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "An unexpected error occurred", "error_type": "system_error"},
        )
