import logging
import threading

from ..db_models import TreasuryTransaction

_LOGGER = logging.getLogger(__name__)


class DuplicateGuard:
    """
    Remembers which transaction hashes have been applied.

    The in-process cache only short-cuts lookups: the unique constraint on
    TreasuryTransaction.tx_hash stays authoritative. When the cache grows past
    max_size it is dropped as a whole and refilled from the database lookups.
    """

    def __init__(self, max_size: int = 10_000):
        self.max_size = max_size
        self._recent = set()
        self._lock = threading.Lock()

    def is_duplicate(self, tx_hash: str) -> bool:
        if tx_hash in self._recent:
            return True
        exists = (
            TreasuryTransaction.select()
            .where(TreasuryTransaction.tx_hash == tx_hash)
            .exists()
        )
        if exists:
            self.mark_processed(tx_hash)
        return exists

    def mark_processed(self, tx_hash: str):
        with self._lock:
            if len(self._recent) >= self.max_size:
                _LOGGER.debug(f"Dropping {len(self._recent)} cached transaction hashes")
                self._recent = set()
            self._recent.add(tx_hash)

    def __len__(self):
        return len(self._recent)
