from typing import Optional, Tuple

from ..db_models import (
    Milestone,
    Project,
    TreasuryEvent,
    TreasuryInstance,
    TreasuryTransaction,
    VendorContract,
)
from ..db_models.treasury import utcnow
from ..metadata.events import ParsedMetadata, PublishEvent
from ..metadata.values import to_json
from ..util import ChainTransaction


def add_treasury_instance(
    script_hash: str, payment_address: str, publish: Optional[PublishEvent] = None
) -> Tuple[TreasuryInstance, bool]:
    """
    Get the treasury instance for the script hash, creating it on first sight.
    """
    defaults = dict(payment_address=payment_address)
    if publish is not None:
        defaults.update(
            label=publish.label,
            description=publish.description,
            expiration=publish.expiration,
            permissions=to_json(publish.permissions),
        )
    return TreasuryInstance.get_or_create(script_hash=script_hash, defaults=defaults)


def update_treasury_instance(instance: TreasuryInstance, publish: PublishEvent):
    """
    Overwrite the instance with the fields set in the publish event.
    """
    if publish.label is not None:
        instance.label = publish.label
    if publish.description is not None:
        instance.description = publish.description
    if publish.expiration is not None:
        instance.expiration = publish.expiration
    if publish.permissions is not None:
        instance.permissions = to_json(publish.permissions)
    instance.updated_at = utcnow()
    instance.save()


def add_project(identifier: str, instance: TreasuryInstance) -> Tuple[Project, bool]:
    return Project.get_or_create(
        identifier=identifier, defaults=dict(treasury_instance=instance)
    )


def find_project(identifier: Optional[str]) -> Optional[Project]:
    if identifier is None:
        return None
    return Project.get_or_none(Project.identifier == identifier)


def add_milestone(project: Project, identifier: str) -> Tuple[Milestone, bool]:
    return Milestone.get_or_create(project=project, identifier=identifier)


def find_milestone(project: Project, identifier: str) -> Optional[Milestone]:
    return Milestone.get_or_none(
        (Milestone.project == project) & (Milestone.identifier == identifier)
    )


def add_transaction(
    tx: ChainTransaction,
    parsed: ParsedMetadata,
    instance: TreasuryInstance,
    metadata_label: str,
) -> TreasuryTransaction:
    """
    Record the transaction. Fails with an IntegrityError if the hash was recorded before.
    """
    return TreasuryTransaction.create(
        tx_hash=tx.tx_hash,
        slot=tx.slot,
        block_height=tx.block_height,
        event_type=parsed.event,
        instance=instance,
        tx_author=parsed.tx_author,
        metadata=to_json(tx.metadata.get(metadata_label)),
        metadata_anchor_url=parsed.anchor_url,
        metadata_anchor_hash=parsed.anchor_data_hash,
    )


def add_event(
    transaction: TreasuryTransaction,
    parsed: ParsedMetadata,
    project: Optional[Project] = None,
    milestone: Optional[Milestone] = None,
    reason: Optional[str] = None,
) -> TreasuryEvent:
    return TreasuryEvent.create(
        transaction=transaction,
        event_type=parsed.event,
        project=project,
        milestone=milestone,
        reason=reason,
        event_data=to_json(parsed.to_dict()),
    )


def add_vendor_contract(
    payment_address: str,
    script_hash: Optional[str],
    project: Project,
    tx_hash: str,
) -> Tuple[VendorContract, bool]:
    """
    Store the vendor contract unless the address is known already.
    Existing records are never modified.
    """
    return VendorContract.get_or_create(
        payment_address=payment_address,
        defaults=dict(
            script_hash=script_hash,
            project=project,
            discovered_from_tx_hash=tx_hash,
        ),
    )


def find_vendor_contract(payment_address: str) -> Optional[VendorContract]:
    return VendorContract.get_or_none(VendorContract.payment_address == payment_address)
