"""
Applies decoded treasury events to the derived entities.

Every transaction is applied inside one database transaction: the
TreasuryTransaction row, the entity mutations and the TreasuryEvent log entry
are committed together or not at all. Recording the TreasuryTransaction first
makes the unique constraint on its hash reject a second application of the
same transaction, also across threads. The transaction takes the SQLite write
lock when it begins (IMMEDIATE), so concurrent appliers wait on the busy
timeout instead of failing to upgrade a read lock.

Milestone lifecycle:

    PENDING --complete--> COMPLETED
    PENDING | COMPLETED --pause--> PAUSED --resume--> COMPLETED if completed_at else PENDING
    PENDING | COMPLETED --withdraw--> WITHDRAWN

A resume restores COMPLETED only from the completion timestamp, there is no
further history. Events requesting any other transition are logged and skipped
for that milestone.
"""
import dataclasses
import logging
from typing import Callable, Dict, List, Optional, Tuple, Type

from peewee import IntegrityError, PeeweeException

from .duplicates import DuplicateGuard
from .retry import PersistenceError
from .to_db import (
    add_event,
    add_milestone,
    add_project,
    add_transaction,
    add_treasury_instance,
    find_milestone,
    find_project,
    update_treasury_instance,
)
from .vendor_contracts import MilestoneAmountExtractor, VendorContractExtractor
from ..config import TREASURY_METADATA_LABEL
from ..db_models import (
    Milestone,
    MilestoneStatus,
    Project,
    TreasuryInstance,
    TreasuryTransaction,
    VendorContract,
    sqlite_db,
)
from ..db_models.treasury import utcnow
from ..metadata.events import (
    CompleteEvent,
    DisburseEvent,
    FundEvent,
    MilestoneEvent,
    ModifyEvent,
    ParsedEvent,
    ParsedMetadata,
    PauseEvent,
    PublishEvent,
    ReorganizeEvent,
    ResumeEvent,
    SweepEvent,
    WithdrawEvent,
)
from ..metadata.values import to_json
from ..metrics import IndexingMetrics
from ..util import ChainTransaction

_LOGGER = logging.getLogger(__name__)


class InvalidEventError(ValueError):
    """A decoded event can not be applied, e.g. a fund event without identifier."""


# statuses a milestone may be in for the event to apply to it
ALLOWED_FROM: Dict[Type[MilestoneEvent], Tuple[str, ...]] = {
    CompleteEvent: (MilestoneStatus.PENDING,),
    WithdrawEvent: (MilestoneStatus.PENDING, MilestoneStatus.COMPLETED),
    PauseEvent: (MilestoneStatus.PENDING, MilestoneStatus.COMPLETED),
    ResumeEvent: (MilestoneStatus.PAUSED,),
}


def _complete(milestone: Milestone, entry):
    milestone.status = MilestoneStatus.COMPLETED
    milestone.completed_at = utcnow()


def _withdraw(milestone: Milestone, entry):
    milestone.status = MilestoneStatus.WITHDRAWN


def _pause(milestone: Milestone, entry):
    milestone.status = MilestoneStatus.PAUSED
    milestone.paused_at = utcnow()
    milestone.paused_reason = entry.reason


def _resume(milestone: Milestone, entry):
    milestone.status = (
        MilestoneStatus.COMPLETED
        if milestone.completed_at is not None
        else MilestoneStatus.PENDING
    )
    milestone.paused_at = None
    milestone.paused_reason = None


MILESTONE_TRANSITIONS: Dict[Type[MilestoneEvent], Callable] = {
    CompleteEvent: _complete,
    WithdrawEvent: _withdraw,
    PauseEvent: _pause,
    ResumeEvent: _resume,
}


@dataclasses.dataclass
class Applied:
    """
    What applying one event changed
    """

    project: Optional[Project] = None
    milestone: Optional[Milestone] = None
    reason: Optional[str] = None
    vendor_contracts: List[VendorContract] = dataclasses.field(default_factory=list)
    project_created: bool = False
    milestones_created: int = 0


class TreasuryEventApplier:
    def __init__(
        self,
        treasury_script_hash: str,
        treasury_address: str,
        duplicate_guard: DuplicateGuard,
        vendor_extractor: VendorContractExtractor,
        metrics: Optional[IndexingMetrics] = None,
        metadata_label: str = TREASURY_METADATA_LABEL,
    ):
        self.treasury_script_hash = treasury_script_hash
        self.treasury_address = treasury_address
        self.duplicate_guard = duplicate_guard
        self.vendor_extractor = vendor_extractor
        self.amount_extractor = MilestoneAmountExtractor(vendor_extractor)
        self.metrics = metrics or IndexingMetrics()
        self.metadata_label = metadata_label
        self.handlers: Dict[type, Callable[..., Applied]] = {
            PublishEvent: self._apply_publish,
            ReorganizeEvent: self._apply_reorganize,
            FundEvent: self._apply_fund,
            DisburseEvent: self._apply_logged_only,
            CompleteEvent: self._apply_milestone_event,
            WithdrawEvent: self._apply_milestone_event,
            PauseEvent: self._apply_milestone_event,
            ResumeEvent: self._apply_milestone_event,
            ModifyEvent: self._apply_modify,
            SweepEvent: self._apply_logged_only,
        }

    def recorded_project_id(self, tx_hash: str) -> Optional[int]:
        recorded = TreasuryTransaction.get_or_none(
            TreasuryTransaction.tx_hash == tx_hash
        )
        return recorded.project_id if recorded is not None else None

    def apply(self, tx: ChainTransaction, parsed: ParsedMetadata) -> Optional[int]:
        """
        Apply the event of a transaction at most once.
        Returns the id of the project the transaction belongs to, if any.
        A transaction that was applied before is not touched again and the
        previously recorded project id is returned.

        Raises PersistenceError if the database fails; nothing is committed in that case.
        Any other failure is logged and counted and leaves the transaction unrecorded.
        """
        if parsed.body is None:
            _LOGGER.debug(f"No typed event in {tx.tx_hash} ({parsed.event}), skipping")
            return None
        try:
            if self.duplicate_guard.is_duplicate(tx.tx_hash):
                return self._skip_duplicate(tx.tx_hash)
            with sqlite_db.atomic("IMMEDIATE"):
                applied = self._apply(tx, parsed)
        except IntegrityError as e:
            if self._is_recorded(tx.tx_hash):
                # another worker applied the same transaction concurrently
                return self._skip_duplicate(tx.tx_hash)
            raise PersistenceError(f"Failed to apply {tx.tx_hash}: {e}") from e
        except PeeweeException as e:
            raise PersistenceError(f"Failed to apply {tx.tx_hash}: {e}") from e
        except InvalidEventError as e:
            _LOGGER.warning(f"Ignoring invalid {parsed.event} event in {tx.tx_hash}: {e}")
            self.metrics.errors.labels(stage="apply").inc()
            return None
        except Exception:
            _LOGGER.exception(f"Error applying transaction {tx.tx_hash}")
            self.metrics.errors.labels(stage="apply").inc()
            return None

        self.duplicate_guard.mark_processed(tx.tx_hash)
        self.vendor_extractor.register(applied.vendor_contracts)
        self.metrics.transactions_processed.labels(event_type=parsed.event).inc()
        if applied.project_created:
            self.metrics.projects_created.inc()
        if applied.milestones_created:
            self.metrics.milestones_created.inc(applied.milestones_created)
        return applied.project.id if applied.project is not None else None

    def _is_recorded(self, tx_hash: str) -> bool:
        return (
            TreasuryTransaction.select()
            .where(TreasuryTransaction.tx_hash == tx_hash)
            .exists()
        )

    def _skip_duplicate(self, tx_hash: str) -> Optional[int]:
        _LOGGER.debug(f"Transaction {tx_hash} already processed")
        self.duplicate_guard.mark_processed(tx_hash)
        self.metrics.duplicates_skipped.inc()
        return self.recorded_project_id(tx_hash)

    def _apply(self, tx: ChainTransaction, parsed: ParsedMetadata) -> Applied:
        body = parsed.body
        instance, _ = add_treasury_instance(
            self.treasury_script_hash,
            self.treasury_address,
            body if isinstance(body, PublishEvent) else None,
        )
        transaction = add_transaction(tx, parsed, instance, self.metadata_label)

        handler = self.handlers[type(body)]
        applied = handler(tx, body, instance)

        if applied.project is not None:
            transaction.project = applied.project
            transaction.save()
        add_event(
            transaction,
            parsed,
            project=applied.project,
            milestone=applied.milestone,
            reason=applied.reason,
        )
        _LOGGER.debug(f"Applied {parsed.event} event of transaction {tx.tx_hash}")
        return applied

    def _resolve_project(
        self, tx: ChainTransaction, identifier: Optional[str] = None
    ) -> Optional[Project]:
        """
        The project an event refers to: by identifier if the event names one,
        otherwise through the vendor contract the transaction pays to.
        """
        project = find_project(identifier)
        if project is None:
            project = self.vendor_extractor.project_for_outputs(tx)
        return project

    def _apply_publish(
        self, tx: ChainTransaction, body: PublishEvent, instance: TreasuryInstance
    ) -> Applied:
        update_treasury_instance(instance, body)
        return Applied()

    def _apply_reorganize(
        self, tx: ChainTransaction, body: ReorganizeEvent, instance: TreasuryInstance
    ) -> Applied:
        return Applied(reason=body.reason)

    def _apply_logged_only(
        self, tx: ChainTransaction, body: ParsedEvent, instance: TreasuryInstance
    ) -> Applied:
        return Applied()

    def _apply_fund(
        self, tx: ChainTransaction, body: FundEvent, instance: TreasuryInstance
    ) -> Applied:
        if not body.identifier:
            raise InvalidEventError("fund event without project identifier")
        project, project_created = add_project(body.identifier, instance)
        project.label = body.label
        project.description = body.description
        project.vendor_label = body.vendor_label
        project.vendor_details = to_json(body.vendor_details)
        project.contract_url = body.contract_url
        project.contract_hash = body.contract_hash
        project.other_identifiers = (
            to_json(list(body.other_identifiers))
            if body.other_identifiers is not None
            else None
        )
        project.treasury_instance = instance
        project.updated_at = utcnow()
        project.save()

        milestones_created = 0
        for key, entry in body.milestones.items():
            milestone, created = add_milestone(project, key)
            # status is left alone on re-fund
            milestone.label = entry.label
            milestone.description = entry.description
            milestone.acceptance_criteria = entry.acceptance_criteria
            if entry.maturity is not None:
                milestone.maturity_slot = entry.maturity
            milestone.save()
            milestones_created += int(created)

        self.amount_extractor.extract_amounts(tx, project, list(body.milestones))
        vendor_contracts = self.vendor_extractor.extract(tx, project)
        return Applied(
            project=project,
            vendor_contracts=vendor_contracts,
            project_created=project_created,
            milestones_created=milestones_created,
        )

    def _apply_modify(
        self, tx: ChainTransaction, body: ModifyEvent, instance: TreasuryInstance
    ) -> Applied:
        project = self._resolve_project(tx, body.identifier)
        if project is None:
            _LOGGER.warning(
                f"{body.event} event in {tx.tx_hash} refers to an unknown project"
            )
            return Applied(reason=body.reason)
        if body.event == "modify":
            if body.label is not None:
                project.label = body.label
            if body.description is not None:
                project.description = body.description
            project.updated_at = utcnow()
            project.save()
        return Applied(project=project, reason=body.reason)

    def _apply_milestone_event(
        self, tx: ChainTransaction, body: MilestoneEvent, instance: TreasuryInstance
    ) -> Applied:
        project = self._resolve_project(tx, body.identifier)
        if project is None:
            _LOGGER.warning(
                f"{body.event} event in {tx.tx_hash} does not belong to a known project"
            )
            return Applied()
        transition = MILESTONE_TRANSITIONS[type(body)]
        allowed = ALLOWED_FROM[type(body)]
        touched = []
        for key, entry in body.milestones.items():
            milestone = find_milestone(project, key)
            if milestone is None:
                _LOGGER.warning(
                    f"Unknown milestone {key} of project {project.identifier} "
                    f"in {body.event} event {tx.tx_hash}"
                )
                continue
            if milestone.status not in allowed:
                _LOGGER.warning(
                    f"Can not {body.event} milestone {project.identifier}:{key} "
                    f"in status {milestone.status}"
                )
                continue
            transition(milestone, entry)
            milestone.save()
            _LOGGER.info(
                f"Milestone {project.identifier}:{key} is now {milestone.status}"
            )
            touched.append(milestone)
        return Applied(
            project=project, milestone=touched[0] if len(touched) == 1 else None
        )
