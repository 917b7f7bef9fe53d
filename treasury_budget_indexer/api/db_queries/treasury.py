from typing import Optional

from .util import (
    event_to_dict,
    instance_to_dict,
    milestone_to_dict,
    paginate,
    project_to_dict,
    status_summary,
    transaction_to_dict,
    vendor_contract_to_dict,
)
from ..db_models import (
    Milestone,
    Project,
    TreasuryEvent,
    TreasuryInstance,
    TreasuryTransaction,
    VendorContract,
    sqlite_db,
)
from ..tx_processor.slots import MilestoneMaturityChecker


def query_treasury_instances():
    """
    Query the indexed treasury instances
    :return: A list of treasury instances
    """
    return [
        instance_to_dict(instance)
        for instance in TreasuryInstance.select().order_by(TreasuryInstance.id)
    ]


def query_projects(limit: int = 100, offset: int = 0):
    """
    Query the funded projects
    :return: A list of projects in order of funding
    """
    query = (
        Project.select(Project, TreasuryInstance)
        .join(TreasuryInstance)
        .order_by(Project.id)
    )
    return [project_to_dict(project) for project in paginate(query, limit, offset)]


def query_project(identifier: str) -> Optional[dict]:
    """
    Query a project with its milestones and vendor contracts
    :param identifier: The protocol identifier of the project
    :return: The project or None if it is unknown
    """
    project = Project.get_or_none(Project.identifier == identifier)
    if project is None:
        return None
    milestones = list(project.milestones.order_by(Milestone.id))
    result = project_to_dict(project)
    result["milestones"] = [milestone_to_dict(m) for m in milestones]
    result["milestone_status"] = status_summary(milestones)
    result["total_amount_lovelace"] = sum(m.amount_lovelace for m in milestones)
    result["vendor_contracts"] = [
        vendor_contract_to_dict(c)
        for c in project.vendor_contracts.order_by(VendorContract.id)
    ]
    return result


def query_milestones(
    status: Optional[str] = None,
    project: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
):
    """
    Query milestones, optionally only those in a status or of a project
    :return: A list of milestones
    """
    query = Milestone.select(Milestone, Project).join(Project)
    if status is not None:
        query = query.where(Milestone.status == status)
    if project is not None:
        query = query.where(Project.identifier == project)
    query = query.order_by(Milestone.id)
    return [milestone_to_dict(m) for m in paginate(query, limit, offset)]


def query_mature_milestones(current_slot: int):
    """
    Query the pending milestones whose maturity slot is reached at the given slot
    :return: A list of milestones ordered by maturity
    """
    checker = MilestoneMaturityChecker()
    return [milestone_to_dict(m) for m in checker.find_mature_milestones(current_slot)]


def query_vendor_contracts(project: Optional[str] = None):
    """
    Query the discovered vendor contracts
    :return: A list of vendor contracts in order of discovery
    """
    query = VendorContract.select(VendorContract, Project).join(Project)
    if project is not None:
        query = query.where(Project.identifier == project)
    return [vendor_contract_to_dict(c) for c in query.order_by(VendorContract.id)]


def query_events(
    event_type: Optional[str] = None,
    project: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
):
    """
    Query the event log, newest first
    :return: A list of events
    """
    query = TreasuryEvent.select(TreasuryEvent, TreasuryTransaction).join(
        TreasuryTransaction
    )
    if event_type is not None:
        query = query.where(TreasuryEvent.event_type == event_type)
    if project is not None:
        query = query.switch(TreasuryEvent).join(Project).where(
            Project.identifier == project
        )
    query = query.order_by(TreasuryTransaction.slot.desc(), TreasuryEvent.id.desc())
    return [event_to_dict(e) for e in paginate(query, limit, offset)]


def query_transaction(tx_hash: str) -> Optional[dict]:
    """
    Query a processed treasury transaction with its events
    :return: The transaction or None if it was not processed
    """
    transaction = TreasuryTransaction.get_or_none(
        TreasuryTransaction.tx_hash == tx_hash
    )
    if transaction is None:
        return None
    result = transaction_to_dict(transaction)
    result["events"] = [
        event_to_dict(e) for e in transaction.events.order_by(TreasuryEvent.id)
    ]
    return result


def query_statistics():
    """
    Aggregate counts over all indexed entities
    :return: Counts of projects, milestones per status, vendor contracts and events per type
    """
    cursor = sqlite_db.execute_sql(
        """
        select
        (select count(*) from treasuryinstance),
        (select count(*) from project),
        (select count(*) from vendorcontract),
        (select count(*) from treasurytransaction),
        (select coalesce(sum(amount_lovelace), 0) from milestone),
        (select max(slot) from treasurytransaction)
        """
    )
    row = cursor.fetchone()
    milestones = sqlite_db.execute_sql(
        "select status, count(*) from milestone group by status"
    ).fetchall()
    events = sqlite_db.execute_sql(
        "select event_type, count(*) from treasuryevent group by event_type order by event_type"
    ).fetchall()
    return {
        "treasury_instances": row[0],
        "projects": row[1],
        "vendor_contracts": row[2],
        "transactions": row[3],
        "allocated_lovelace": row[4],
        "last_slot": row[5],
        "milestones": status_summary_from_rows(milestones),
        "events": {event_type: count for event_type, count in events},
    }


def status_summary_from_rows(rows):
    summary = status_summary([])
    for status, count in rows:
        summary[status] = count
    return summary


if __name__ == "__main__":
    print(query_projects())
    print(query_statistics())
