import logging
import threading
from typing import FrozenSet, Iterable, Optional

_LOGGER = logging.getLogger(__name__)


class AddressRegistry:
    """
    The payment addresses and script hashes the indexer watches: the treasury
    contract plus every vendor contract discovered so far.

    Lookups read an immutable snapshot and never block. register swaps in a
    new snapshot, writers are serialized among themselves only.
    """

    def __init__(self, treasury_address: str, treasury_script_hash: Optional[str]):
        self.treasury_address = treasury_address
        self.treasury_script_hash = treasury_script_hash
        self._addresses: FrozenSet[str] = frozenset([treasury_address])
        self._script_hashes: FrozenSet[str] = frozenset(
            [treasury_script_hash] if treasury_script_hash else []
        )
        self._write_lock = threading.Lock()

    def is_tracked(self, address: Optional[str]) -> bool:
        return address in self._addresses

    def is_tracked_script(self, script_hash: Optional[str]) -> bool:
        return script_hash in self._script_hashes

    def register(self, address: str, script_hash: Optional[str] = None) -> bool:
        """
        Start watching the address (and script hash).
        Returns False if both were already watched.
        """
        if self.is_tracked(address) and (
            script_hash is None or self.is_tracked_script(script_hash)
        ):
            return False
        with self._write_lock:
            added = address not in self._addresses
            if added:
                self._addresses = self._addresses | {address}
            if script_hash is not None and script_hash not in self._script_hashes:
                self._script_hashes = self._script_hashes | {script_hash}
                added = True
        if added:
            _LOGGER.debug(f"Tracking address {address}")
        return added

    def load(self, contracts: Iterable) -> int:
        """
        Register previously discovered vendor contracts, e.g. after a restart.
        """
        count = 0
        for contract in contracts:
            if self.register(contract.payment_address, contract.script_hash):
                count += 1
        return count

    @property
    def addresses(self) -> FrozenSet[str]:
        return self._addresses

    @property
    def script_hashes(self) -> FrozenSet[str]:
        return self._script_hashes
