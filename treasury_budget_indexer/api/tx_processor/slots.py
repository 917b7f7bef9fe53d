import logging
import threading
from typing import List, Optional

from ..db_models import Milestone, MilestoneStatus

_LOGGER = logging.getLogger(__name__)

PROGRESS_LOG_INTERVAL = 1000


class SlotTracker:
    """
    Tracks chain progress: the highest slot seen in a block header and the
    highest slot whose transactions have all been applied. Both only move forward.
    """

    def __init__(self, start_slot: int = 0):
        self.start_slot = start_slot
        self._current_slot = start_slot
        self._last_processed_slot = 0
        self._lock = threading.Lock()

    @property
    def current_slot(self) -> int:
        return self._current_slot

    @property
    def last_processed_slot(self) -> int:
        return self._last_processed_slot

    @property
    def slots_processed(self) -> int:
        return max(self._last_processed_slot - self.start_slot, 0)

    def update_current_slot(self, slot: Optional[int]) -> bool:
        """
        Returns True if the slot advanced the current slot.
        """
        if slot is None:
            return False
        with self._lock:
            if slot <= self._current_slot:
                return False
            self._current_slot = slot
            return True

    def mark_processed(self, slot: Optional[int]) -> bool:
        if slot is None:
            return False
        with self._lock:
            if slot <= self._last_processed_slot:
                return False
            previous = self._last_processed_slot
            self._last_processed_slot = slot
        if slot // PROGRESS_LOG_INTERVAL != previous // PROGRESS_LOG_INTERVAL:
            _LOGGER.info(
                f"Processed slot {slot} ({self.slots_processed} slots since start)"
            )
        return True


class MilestoneMaturityChecker:
    """
    Reports pending milestones whose maturity slot has been reached.
    Purely observational: withdrawal still requires a withdraw event.
    """

    def __init__(self, interval: int = 100):
        self.interval = interval
        self._last_checked_slot: Optional[int] = None
        self._lock = threading.Lock()

    def find_mature_milestones(self, current_slot: int) -> List[Milestone]:
        return list(
            Milestone.select()
            .where(
                (Milestone.status == MilestoneStatus.PENDING)
                & (Milestone.maturity_slot <= current_slot)
            )
            .order_by(Milestone.maturity_slot, Milestone.id)
        )

    def check_maturity(self, current_slot: Optional[int]) -> List[Milestone]:
        if current_slot is None:
            return []
        milestones = self.find_mature_milestones(current_slot)
        if milestones:
            _LOGGER.info(f"Found {len(milestones)} milestones that have reached maturity")
        for milestone in milestones:
            _LOGGER.debug(
                f"Milestone {milestone.project.identifier}:{milestone.identifier} "
                f"matured at slot {milestone.maturity_slot} <= {current_slot}"
            )
        return milestones

    def maybe_check(self, current_slot: int) -> Optional[List[Milestone]]:
        """
        Run check_maturity at most once every `interval` slots, measured from
        the last checked slot.
        """
        with self._lock:
            if (
                self._last_checked_slot is not None
                and current_slot - self._last_checked_slot < self.interval
            ):
                return None
            self._last_checked_slot = current_slot
        return self.check_maturity(current_slot)
