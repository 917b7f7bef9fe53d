"""
The per-transaction pipeline:

    relevance filter -> treasury document check -> duplicate check
        -> metadata decoding -> event application -> slot watermark

Every stage is isolated per transaction: a failing transaction is logged and
counted and never keeps the following ones from being processed. Only a
database that keeps failing is reported to the caller, which has to deliver
the transaction again.
"""
import logging
from typing import Optional

from .address_registry import AddressRegistry
from .dispatcher import EventDispatcher
from .duplicates import DuplicateGuard
from .retry import PersistenceError, retry_on_persistence_error
from .slots import MilestoneMaturityChecker, SlotTracker
from .treasury import InvalidEventError, TreasuryEventApplier
from .vendor_contracts import MilestoneAmountExtractor, VendorContractExtractor
from ..config import IndexerSettings
from ..db_models import VendorContract
from ..metadata import AnchorFetcher, MetadataParser
from ..metrics import IndexingMetrics
from ..util import ChainTransaction

_LOGGER = logging.getLogger(__name__)


class TransactionProcessor:
    def __init__(
        self,
        registry: AddressRegistry,
        duplicate_guard: DuplicateGuard,
        parser: MetadataParser,
        applier: TreasuryEventApplier,
        slot_tracker: SlotTracker,
        maturity_checker: MilestoneMaturityChecker,
        metrics: IndexingMetrics,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        self.registry = registry
        self.duplicate_guard = duplicate_guard
        self.parser = parser
        self.applier = applier
        self.slot_tracker = slot_tracker
        self.maturity_checker = maturity_checker
        self.metrics = metrics
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @classmethod
    def build(
        cls,
        settings: IndexerSettings,
        metrics: Optional[IndexingMetrics] = None,
        anchor_fetcher: Optional[AnchorFetcher] = None,
    ) -> "TransactionProcessor":
        """
        Wire up all components from the settings. Nothing is shared with other
        processors, so several can run side by side (e.g. in tests).
        """
        metrics = metrics or IndexingMetrics()
        registry = AddressRegistry(
            settings.treasury_payment_address, settings.treasury_script_hash
        )
        duplicate_guard = DuplicateGuard(settings.duplicate_cache_size)
        parser = MetadataParser(
            anchor_fetcher
            or AnchorFetcher(settings.anchor_fetch_timeout, settings.anchor_max_bytes),
            label=settings.metadata_label,
        )
        applier = TreasuryEventApplier(
            settings.treasury_script_hash,
            settings.treasury_payment_address,
            duplicate_guard,
            VendorContractExtractor(registry, metrics),
            metrics=metrics,
            metadata_label=settings.metadata_label,
        )
        return cls(
            registry=registry,
            duplicate_guard=duplicate_guard,
            parser=parser,
            applier=applier,
            slot_tracker=SlotTracker(settings.start_slot),
            maturity_checker=MilestoneMaturityChecker(settings.maturity_check_interval),
            metrics=metrics,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
        )

    def load_registry(self) -> int:
        """
        Watch all vendor contracts discovered in earlier runs.
        """
        count = self.registry.load(VendorContract.select())
        _LOGGER.info(f"Tracking {len(self.registry.addresses)} addresses ({count} restored)")
        return count

    def is_relevant(self, tx: ChainTransaction) -> bool:
        """
        Whether the transaction creates or spends an output at a watched address or script.
        """
        for output in tx.outputs:
            if self.registry.is_tracked(output.address):
                return True
            if output.script_hash and self.registry.is_tracked_script(output.script_hash):
                return True
        return any(self.registry.is_tracked(a) for a in tx.spent_addresses)

    def process_tx(self, tx: ChainTransaction) -> Optional[int]:
        """
        Run a transaction through the pipeline.
        Returns the id of the project the transaction was applied to, if any.

        Raises PersistenceError once the database failed on every retry. The
        transaction is then unrecorded and has to be delivered again.
        """
        if not self.is_relevant(tx):
            _LOGGER.debug(f"Transaction {tx.tx_hash} touches no watched address")
            return None
        if self.parser.label not in tx.metadata:
            return None
        if not self.parser.is_treasury_metadata(tx.metadata):
            _LOGGER.info(
                f"Transaction {tx.tx_hash} carries label {self.parser.label} "
                f"without a treasury document"
            )
            self.metrics.non_treasury_metadata.inc()
            return None
        try:
            if self.duplicate_guard.is_duplicate(tx.tx_hash):
                _LOGGER.debug(f"Skipping already processed transaction {tx.tx_hash}")
                self.metrics.duplicates_skipped.inc()
                return self.applier.recorded_project_id(tx.tx_hash)
        except Exception:
            # the applier re-checks against the unique transaction hash
            _LOGGER.exception(f"Duplicate lookup failed for {tx.tx_hash}")

        parsed = self.parser.parse_metadata(tx.metadata)
        if parsed is None:
            _LOGGER.warning(f"Dropping transaction {tx.tx_hash}: metadata could not be decoded")
            self.metrics.errors.labels(stage="decode").inc()
            return None
        if parsed.body is None:
            _LOGGER.debug(f"Transaction {tx.tx_hash} has no known event ({parsed.event})")
            return None

        try:
            project_id = retry_on_persistence_error(
                lambda: self.applier.apply(tx, parsed),
                name=f"apply {tx.tx_hash}",
                max_retries=self.max_retries,
                delay=self.retry_delay,
            )
        except PersistenceError as e:
            _LOGGER.error(f"Giving up on transaction {tx.tx_hash}: {e}")
            self.metrics.errors.labels(stage="persistence").inc()
            raise
        self.slot_tracker.mark_processed(tx.slot)
        return project_id

    def process_block_header(self, slot: int, height: Optional[int] = None):
        """
        Advance the current slot and scan for matured milestones when due.
        """
        self.slot_tracker.update_current_slot(slot)
        return self.maturity_checker.maybe_check(self.slot_tracker.current_slot)


__all__ = [
    "AddressRegistry",
    "DuplicateGuard",
    "EventDispatcher",
    "InvalidEventError",
    "MilestoneAmountExtractor",
    "MilestoneMaturityChecker",
    "PersistenceError",
    "SlotTracker",
    "TransactionProcessor",
    "TreasuryEventApplier",
    "VendorContractExtractor",
]
