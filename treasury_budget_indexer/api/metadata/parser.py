import logging
from typing import Any, Callable, Dict, Mapping, Optional

import orjson

from .anchor import AnchorFetcher
from .events import (
    CompletedMilestone,
    CompleteEvent,
    DisburseEvent,
    Evidence,
    FundEvent,
    FundMilestone,
    ModifyEvent,
    ParsedEvent,
    ParsedMetadata,
    PausedMilestone,
    PauseEvent,
    PublishEvent,
    ReorganizeEvent,
    ResumedMilestone,
    ResumeEvent,
    SweepEvent,
    WithdrawEvent,
    WithdrawnMilestone,
)
from .exceptions import MetadataDecodeError
from .values import (
    MetadataValue,
    as_int,
    as_mapping,
    as_mapping_list,
    as_text,
    as_text_list,
    normalize,
    to_json,
)
from ..config import TREASURY_METADATA_LABEL

_LOGGER = logging.getLogger(__name__)

Body = Dict[str, MetadataValue]


def _milestone_map(body: Body, parse: Callable[[Body], Any]) -> dict:
    milestones = as_mapping(body.get("milestones")) or {}
    return {
        key: parse(as_mapping(value) or {}) for key, value in milestones.items()
    }


def _other_identifiers(body: Body):
    identifiers = as_text_list(body.get("otherIdentifiers"))
    return tuple(identifiers) if identifiers is not None else None


def _parse_publish(event: str, body: Body) -> PublishEvent:
    return PublishEvent(
        event=event,
        label=as_text(body.get("label")),
        description=as_text(body.get("description")),
        expiration=as_int(body.get("expiration")),
        payout_upperbound=as_int(body.get("payoutUpperbound")),
        vendor_expiration=as_int(body.get("vendorExpiration")),
        permissions=body.get("permissions"),
    )


def _parse_reorganize(event: str, body: Body) -> ReorganizeEvent:
    return ReorganizeEvent(
        event=event,
        reason=as_text(body.get("reason")),
        outputs=dict(as_mapping(body.get("outputs")) or {}),
    )


def _parse_fund_milestone(milestone: Body) -> FundMilestone:
    return FundMilestone(
        identifier=as_text(milestone.get("identifier")),
        label=as_text(milestone.get("label")),
        description=as_text(milestone.get("description")),
        acceptance_criteria=as_text(milestone.get("acceptanceCriteria")),
        maturity=as_int(milestone.get("maturity")),
    )


def _project_fields(body: Body) -> dict:
    vendor = as_mapping(body.get("vendor")) or {}
    contract = as_mapping(body.get("contract")) or {}
    return dict(
        identifier=as_text(body.get("identifier")),
        other_identifiers=_other_identifiers(body),
        label=as_text(body.get("label")),
        description=as_text(body.get("description")),
        vendor_label=as_text(vendor.get("label")),
        vendor_details=vendor.get("details"),
        contract_url=as_text(contract.get("anchorUrl")),
        contract_hash=as_text(contract.get("anchorDataHash")),
        milestones=_milestone_map(body, _parse_fund_milestone),
    )


def _parse_fund(event: str, body: Body) -> FundEvent:
    return FundEvent(event=event, **_project_fields(body))


def _parse_modify(event: str, body: Body) -> ModifyEvent:
    return ModifyEvent(
        event=event, reason=as_text(body.get("reason")), **_project_fields(body)
    )


def _parse_disburse(event: str, body: Body) -> DisburseEvent:
    return DisburseEvent(
        event=event,
        label=as_text(body.get("label")),
        description=as_text(body.get("description")),
        justification=as_text(body.get("justification")),
        estimated_return=as_int(body.get("estimatedReturn")),
    )


def _parse_evidence(evidence: Body) -> Evidence:
    return Evidence(
        label=as_text(evidence.get("label")),
        anchor_url=as_text(evidence.get("anchorUrl")),
        anchor_data_hash=as_text(evidence.get("anchorDataHash")),
    )


def _parse_completed_milestone(milestone: Body) -> CompletedMilestone:
    evidence = as_mapping_list(milestone.get("evidence"))
    return CompletedMilestone(
        description=as_text(milestone.get("description")),
        evidence=tuple(_parse_evidence(e) for e in evidence)
        if evidence is not None
        else None,
    )


def _parse_complete(event: str, body: Body) -> CompleteEvent:
    return CompleteEvent(
        event=event,
        identifier=as_text(body.get("identifier")),
        milestones=_milestone_map(body, _parse_completed_milestone),
    )


def _parse_withdraw(event: str, body: Body) -> WithdrawEvent:
    return WithdrawEvent(
        event=event,
        identifier=as_text(body.get("identifier")),
        milestones=_milestone_map(
            body, lambda m: WithdrawnMilestone(comment=as_text(m.get("comment")))
        ),
    )


def _parse_pause(event: str, body: Body) -> PauseEvent:
    return PauseEvent(
        event=event,
        identifier=as_text(body.get("identifier")),
        milestones=_milestone_map(
            body,
            lambda m: PausedMilestone(
                reason=as_text(m.get("reason")),
                resolution=as_text(m.get("resolution")),
            ),
        ),
    )


def _parse_resume(event: str, body: Body) -> ResumeEvent:
    return ResumeEvent(
        event=event,
        identifier=as_text(body.get("identifier")),
        milestones=_milestone_map(
            body, lambda m: ResumedMilestone(reason=as_text(m.get("reason")))
        ),
    )


def _parse_sweep(event: str, body: Body) -> SweepEvent:
    return SweepEvent(event=event, comment=as_text(body.get("comment")))


BODY_PARSERS: Dict[str, Callable[[str, Body], ParsedEvent]] = {
    "publish": _parse_publish,
    "initialize": _parse_reorganize,
    "reorganize": _parse_reorganize,
    "fund": _parse_fund,
    "disburse": _parse_disburse,
    "complete": _parse_complete,
    "withdraw": _parse_withdraw,
    "pause": _parse_pause,
    "resume": _parse_resume,
    "modify": _parse_modify,
    "cancel": _parse_modify,
    "sweep": _parse_sweep,
}

EVENT_TYPES = frozenset(BODY_PARSERS)


class MetadataParser:
    """
    Decodes the treasury metadata of a transaction into a ParsedMetadata.
    The metadata either contains the document inline, or a remote anchor
    (anchorUrl + anchorDataHash) pointing to it.
    """

    def __init__(
        self,
        anchor_fetcher: AnchorFetcher,
        label: str = TREASURY_METADATA_LABEL,
    ):
        self.anchor_fetcher = anchor_fetcher
        self.label = label

    def parse_metadata(
        self, metadata: Optional[Mapping[str, Any]]
    ) -> Optional[ParsedMetadata]:
        """
        Decode the metadata of a transaction.
        Returns None if it carries no treasury metadata or the metadata can not be decoded.
        """
        if not metadata:
            return None
        value = metadata.get(self.label)
        if value is None:
            return None
        try:
            return self.decode(value)
        except MetadataDecodeError as e:
            _LOGGER.warning(f"Could not decode treasury metadata: {e}")
            return None

    def decode(self, value: Any) -> ParsedMetadata:
        """
        Decode the value stored under the treasury label.
        Raises MetadataDecodeError if it does not resolve to a treasury document.
        """
        document = self._as_document(value)
        anchor_url = anchor_data_hash = None
        if "anchorUrl" in document:
            anchor_url = as_text(document["anchorUrl"])
            if not anchor_url:
                raise MetadataDecodeError("Anchor reference without a valid anchorUrl")
            anchor_data_hash = as_text(document.get("anchorDataHash"))
            content = self.anchor_fetcher.fetch_and_verify(
                anchor_url,
                anchor_data_hash,
                as_text(document.get("hashAlgorithm")),
            )
            document = self._as_document(content)
        return self._parse_document(document, anchor_url, anchor_data_hash)

    def is_treasury_metadata(self, metadata: Optional[Mapping[str, Any]]) -> bool:
        """
        Cheap structural check without resolving anchors.
        """
        if not metadata or metadata.get(self.label) is None:
            return False
        try:
            document = self._as_document(metadata[self.label])
        except MetadataDecodeError:
            return False
        if "anchorUrl" in document:
            return True
        body = as_mapping(document.get("body"))
        return body is not None and as_text(body.get("event")) in EVENT_TYPES

    @staticmethod
    def _as_document(value: Any) -> Dict[str, MetadataValue]:
        if isinstance(value, (bytes, bytearray, str)):
            try:
                value = orjson.loads(value)
            except orjson.JSONDecodeError as e:
                raise MetadataDecodeError(f"Metadata is not valid JSON: {e}") from e
        try:
            value = normalize(value)
        except TypeError as e:
            raise MetadataDecodeError(str(e)) from e
        document = as_mapping(value)
        if document is None:
            raise MetadataDecodeError(
                f"Expected a metadata object, got {type(value).__name__}"
            )
        return document

    @staticmethod
    def _parse_document(
        document: Dict[str, MetadataValue],
        anchor_url: Optional[str],
        anchor_data_hash: Optional[str],
    ) -> ParsedMetadata:
        body = as_mapping(document.get("body"))
        if body is None:
            raise MetadataDecodeError("Treasury metadata has no body")
        event = as_text(body.get("event"))
        if not event:
            raise MetadataDecodeError("Treasury metadata body has no event")

        context = document.get("@context")
        parse_body = BODY_PARSERS.get(event)
        if parse_body is None:
            _LOGGER.warning(f"Unknown treasury event type: {event}")
        return ParsedMetadata(
            event=event,
            body=parse_body(event, body) if parse_body is not None else None,
            context=context if isinstance(context, str) else to_json(context),
            hash_algorithm=as_text(document.get("hashAlgorithm")),
            tx_author=as_text(document.get("txAuthor")),
            instance=as_text(document.get("instance")),
            anchor_url=anchor_url,
            anchor_data_hash=anchor_data_hash,
        )
