from ..db_models import (
    Milestone,
    MilestoneStatus,
    Project,
    TreasuryEvent,
    TreasuryInstance,
    TreasuryTransaction,
    VendorContract,
)
from ..metadata.values import from_json

MAX_PAGE_SIZE = 500


def paginate(query, limit: int = 100, offset: int = 0):
    """
    Apply limit and offset to a query
    :param query: The peewee select query
    :param limit: Maximal number of rows, capped at MAX_PAGE_SIZE
    :param offset: Number of rows to skip
    :return: The limited query
    """
    limit = max(0, min(limit, MAX_PAGE_SIZE))
    return query.limit(limit).offset(max(offset, 0))


def status_summary(milestones) -> dict:
    """
    Count milestones per status, every status is present in the result
    :param milestones: The milestones to count
    :return: A mapping from status to count
    """
    summary = {status: 0 for status in MilestoneStatus.ALL}
    for milestone in milestones:
        summary[milestone.status] = summary.get(milestone.status, 0) + 1
    return summary


def instance_to_dict(instance: TreasuryInstance) -> dict:
    return {
        "script_hash": instance.script_hash,
        "payment_address": instance.payment_address,
        "label": instance.label,
        "description": instance.description,
        "expiration": instance.expiration,
        "permissions": from_json(instance.permissions),
        "created_at": instance.created_at,
        "updated_at": instance.updated_at,
    }


def project_to_dict(project: Project) -> dict:
    return {
        "identifier": project.identifier,
        "other_identifiers": from_json(project.other_identifiers) or [],
        "label": project.label,
        "description": project.description,
        "vendor": {
            "label": project.vendor_label,
            "details": from_json(project.vendor_details),
        },
        "contract": {
            "url": project.contract_url,
            "hash": project.contract_hash,
        },
        "treasury": project.treasury_instance.script_hash,
        "created_at": project.created_at,
        "updated_at": project.updated_at,
    }


def milestone_to_dict(milestone: Milestone) -> dict:
    return {
        "project": milestone.project.identifier,
        "identifier": milestone.identifier,
        "label": milestone.label,
        "description": milestone.description,
        "acceptance_criteria": milestone.acceptance_criteria,
        "amount_lovelace": milestone.amount_lovelace,
        "maturity_slot": milestone.maturity_slot,
        "status": milestone.status,
        "paused_at": milestone.paused_at,
        "paused_reason": milestone.paused_reason,
        "completed_at": milestone.completed_at,
    }


def vendor_contract_to_dict(contract: VendorContract) -> dict:
    return {
        "payment_address": contract.payment_address,
        "script_hash": contract.script_hash,
        "project": contract.project.identifier,
        "discovered_from_tx_hash": contract.discovered_from_tx_hash,
        "created_at": contract.created_at,
    }


def transaction_to_dict(transaction: TreasuryTransaction) -> dict:
    return {
        "tx_hash": transaction.tx_hash,
        "slot": transaction.slot,
        "block_height": transaction.block_height,
        "event_type": transaction.event_type,
        "project": transaction.project.identifier if transaction.project else None,
        "tx_author": transaction.tx_author,
        "metadata": from_json(transaction.metadata),
        "anchor": {
            "url": transaction.metadata_anchor_url,
            "hash": transaction.metadata_anchor_hash,
        }
        if transaction.metadata_anchor_url
        else None,
    }


def event_to_dict(event: TreasuryEvent) -> dict:
    return {
        "tx_hash": event.transaction.tx_hash,
        "slot": event.transaction.slot,
        "event_type": event.event_type,
        "project": event.project.identifier if event.project else None,
        "milestone": event.milestone.identifier if event.milestone else None,
        "reason": event.reason,
        "data": from_json(event.event_data),
        "created_at": event.created_at,
    }
