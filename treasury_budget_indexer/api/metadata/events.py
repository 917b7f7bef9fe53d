"""
Typed treasury events.

Each event kind of the treasury oversight metadata has its own dataclass that
carries only the fields that kind defines. ``ParsedEvent`` is the closed union
of all of them; code dispatching on events is expected to handle every member.
Fields absent from the metadata stay ``None`` (or empty for collections).
"""
import dataclasses
from typing import Dict, Optional, Tuple, Union

from .values import MetadataValue


@dataclasses.dataclass(frozen=True)
class PublishEvent:
    event: str = "publish"
    label: Optional[str] = None
    description: Optional[str] = None
    expiration: Optional[int] = None
    payout_upperbound: Optional[int] = None
    vendor_expiration: Optional[int] = None
    permissions: MetadataValue = None


@dataclasses.dataclass(frozen=True)
class ReorganizeEvent:
    """Also used for ``initialize``."""

    event: str = "reorganize"
    reason: Optional[str] = None
    outputs: Dict[str, MetadataValue] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class FundMilestone:
    identifier: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    maturity: Optional[int] = None


@dataclasses.dataclass(frozen=True)
class FundEvent:
    event: str = "fund"
    identifier: Optional[str] = None
    other_identifiers: Optional[Tuple[str, ...]] = None
    label: Optional[str] = None
    description: Optional[str] = None
    vendor_label: Optional[str] = None
    vendor_details: MetadataValue = None
    contract_url: Optional[str] = None
    contract_hash: Optional[str] = None
    milestones: Dict[str, FundMilestone] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class ModifyEvent:
    """Also used for ``cancel``. Same shape as a fund event plus a reason."""

    event: str = "modify"
    identifier: Optional[str] = None
    other_identifiers: Optional[Tuple[str, ...]] = None
    label: Optional[str] = None
    description: Optional[str] = None
    vendor_label: Optional[str] = None
    vendor_details: MetadataValue = None
    contract_url: Optional[str] = None
    contract_hash: Optional[str] = None
    milestones: Dict[str, FundMilestone] = dataclasses.field(default_factory=dict)
    reason: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class DisburseEvent:
    event: str = "disburse"
    label: Optional[str] = None
    description: Optional[str] = None
    justification: Optional[str] = None
    estimated_return: Optional[int] = None


@dataclasses.dataclass(frozen=True)
class Evidence:
    label: Optional[str] = None
    anchor_url: Optional[str] = None
    anchor_data_hash: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class CompletedMilestone:
    description: Optional[str] = None
    evidence: Optional[Tuple[Evidence, ...]] = None


@dataclasses.dataclass(frozen=True)
class CompleteEvent:
    event: str = "complete"
    identifier: Optional[str] = None
    milestones: Dict[str, CompletedMilestone] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class WithdrawnMilestone:
    comment: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class WithdrawEvent:
    event: str = "withdraw"
    identifier: Optional[str] = None
    milestones: Dict[str, WithdrawnMilestone] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class PausedMilestone:
    reason: Optional[str] = None
    resolution: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class PauseEvent:
    event: str = "pause"
    identifier: Optional[str] = None
    milestones: Dict[str, PausedMilestone] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class ResumedMilestone:
    reason: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class ResumeEvent:
    event: str = "resume"
    identifier: Optional[str] = None
    milestones: Dict[str, ResumedMilestone] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class SweepEvent:
    event: str = "sweep"
    comment: Optional[str] = None


ParsedEvent = Union[
    PublishEvent,
    ReorganizeEvent,
    FundEvent,
    DisburseEvent,
    CompleteEvent,
    WithdrawEvent,
    PauseEvent,
    ResumeEvent,
    ModifyEvent,
    SweepEvent,
]

# events that mutate the status of individual milestones
MilestoneEvent = Union[CompleteEvent, WithdrawEvent, PauseEvent, ResumeEvent]


@dataclasses.dataclass(frozen=True)
class ParsedMetadata:
    """
    The decoded treasury metadata document of one transaction.
    body is None when the event kind is not known.
    """

    event: str
    body: Optional[ParsedEvent]
    context: Optional[str] = None
    hash_algorithm: Optional[str] = None
    tx_author: Optional[str] = None
    instance: Optional[str] = None
    anchor_url: Optional[str] = None
    anchor_data_hash: Optional[str] = None

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)
