import logging
import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

_LOGGER = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """The database failed while applying a transaction; nothing was committed."""


def retry_on_persistence_error(
    operation: Callable[[], T],
    name: str,
    max_retries: int = 3,
    delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run the operation, retrying PersistenceErrors with linearly growing delays.
    The last PersistenceError is re-raised once all attempts are used up.
    """
    attempts = max(max_retries, 1)
    last_error: Optional[PersistenceError] = None
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except PersistenceError as e:
            last_error = e
            if attempt < attempts:
                _LOGGER.warning(
                    f"Operation {name} failed, retrying ({attempt}/{attempts}): {e}"
                )
                sleep(delay * attempt)
    _LOGGER.error(f"Operation {name} failed after {attempts} attempts")
    raise last_error
