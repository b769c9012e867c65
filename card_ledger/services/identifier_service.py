"""
Identifier service — allocates 16-character transaction identifiers.

Sequential path:
  Read the highest existing identifier and add one, zero-padded to 16
  digits. An empty ledger starts at "0000000000000001". Sequential calls
  therefore produce strictly increasing identifiers.

Random fallback:
  When the highest identifier is not a number, when incrementing it would
  overflow 16 digits, or when the store cannot be read, a random token of
  16 uppercase letters and digits is drawn instead. Each candidate is
  checked with store.exists() and redrawn on collision, up to the attempt
  budget, after which IdentifierConflictError is raised.

  Random tokens that contain a letter sort above every all-digit id, so
  once one is written the highest identifier is non-numeric and every
  later allocation is random too. That mixed state is permanent.

Race note:
  Read-then-increment is not atomic: two concurrent writers can compute
  the same next id. The primary key catches that at insert time, and the
  writer (transaction_service.add_transaction) regenerates and retries.
"""

import logging
import random
import string

from card_ledger.config import settings
from card_ledger.exceptions import IdentifierConflictError, StoreUnavailableError

logger = logging.getLogger(__name__)

TRANSACTION_ID_LENGTH = 16
SEED_TRANSACTION_ID = "0000000000000001"

_TOKEN_ALPHABET = string.ascii_uppercase + string.digits


def _generate_random_transaction_id() -> str:
    return "".join(random.choices(_TOKEN_ALPHABET, k=TRANSACTION_ID_LENGTH))


def increment_transaction_id(highest: str | None) -> str | None:
    """
    Next sequential identifier after `highest`.

    Returns:
        The seed id when `highest` is None, the incremented zero-padded id
        when `highest` is all digits, or None when there is no sequential
        successor (non-numeric id, or the increment needs a 17th digit).
    """
    if highest is None:
        return SEED_TRANSACTION_ID
    if not (highest.isascii() and highest.isdigit()):
        return None
    candidate = str(int(highest) + 1).zfill(TRANSACTION_ID_LENGTH)
    if len(candidate) > TRANSACTION_ID_LENGTH:
        return None
    return candidate


async def allocate_random_transaction_id(store, max_attempts: int) -> str:
    """
    Draw random identifiers until one is unused.

    Raises:
        IdentifierConflictError: If every attempt collided.
        StoreUnavailableError: If the existence check cannot reach the store.
    """
    for attempt in range(1, max_attempts + 1):
        candidate = _generate_random_transaction_id()
        if not await store.exists(candidate):
            break
        logger.warning(
            "Random transaction ID collided with an existing record",
            extra={"transaction_id": candidate, "attempt": attempt},
        )
    else:
        raise IdentifierConflictError(max_attempts)
    return candidate


async def next_transaction_id(
    store,
    max_attempts: int = settings.TRANSACTION_ID_MAX_ATTEMPTS,
) -> str:
    """
    Allocate the next transaction identifier.

    Args:
        store: Anything with async find_highest_identifier() and exists().
        max_attempts: Budget for random-fallback draws.

    Returns:
        A 16-character identifier not present in the store at read time.

    Raises:
        IdentifierConflictError: If the random fallback ran out of attempts.
    """
    try:
        highest = await store.find_highest_identifier()
    except StoreUnavailableError:
        logger.warning("Could not read the highest transaction ID; using a random ID")
        return await allocate_random_transaction_id(store, max_attempts)

    candidate = increment_transaction_id(highest)
    if candidate is not None:
        return candidate

    logger.warning(
        "Highest transaction ID has no sequential successor; using a random ID",
        extra={"transaction_id": highest},
    )
    return await allocate_random_transaction_id(store, max_attempts)
