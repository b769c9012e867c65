"""
FastAPI dependencies for caller authentication and record stores.

Dependency chain for the transaction routes:

  get_current_caller (Bearer JWT -> caller subject)
  get_db (session per request)
      ├── get_transaction_store (session -> TransactionStore)
      └── get_account_store     (session -> AccountStore)

FastAPI caches a dependency within one request, so both stores share the
same session and therefore the same database transaction.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from card_ledger.database import get_db
from card_ledger.security import decode_access_token
from card_ledger.stores import AccountStore, TransactionStore


# auto_error=False so a missing header gets the same 401 as a bad token
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """
    Verify the bearer token and return the caller's subject.

    Raises:
        HTTPException 401: If the token is missing, expired, tampered with,
                           or has no subject.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise credentials_exception

    subject: str | None = payload.get("sub")
    if not subject:
        raise credentials_exception
    return subject


async def get_transaction_store(db: AsyncSession = Depends(get_db)) -> TransactionStore:
    return TransactionStore(db)


async def get_account_store(db: AsyncSession = Depends(get_db)) -> AccountStore:
    return AccountStore(db)
