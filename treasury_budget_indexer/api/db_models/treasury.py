import datetime

from .db import *


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class MilestoneStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    PAUSED = "PAUSED"
    WITHDRAWN = "WITHDRAWN"

    ALL = (PENDING, COMPLETED, PAUSED, WITHDRAWN)


class TreasuryInstance(BaseModel):
    """
    The treasury contract being indexed, created lazily on the first treasury event
    """

    script_hash = ScriptHash(unique=True)
    payment_address = CharField(max_length=128, unique=True)
    label = TextField(null=True)
    description = TextField(null=True)
    expiration = IntegerField(null=True)
    permissions = JSONField(null=True)
    created_at = DateTimeField(default=utcnow)
    updated_at = DateTimeField(default=utcnow)


class Project(BaseModel):
    """
    A funded project, keyed by its protocol level identifier
    """

    identifier = CharField(unique=True)
    other_identifiers = JSONField(null=True)
    label = TextField(null=True)
    description = TextField(null=True)
    vendor_label = TextField(null=True)
    vendor_details = JSONField(null=True)
    contract_url = TextField(null=True)
    contract_hash = CharField(max_length=64, null=True)
    treasury_instance = ForeignKeyField(
        TreasuryInstance, backref="projects", on_delete="CASCADE"
    )
    created_at = DateTimeField(default=utcnow)
    updated_at = DateTimeField(default=utcnow)


class Milestone(BaseModel):
    project = ForeignKeyField(Project, backref="milestones", on_delete="CASCADE")
    identifier = CharField()
    label = TextField(null=True)
    description = TextField(null=True)
    acceptance_criteria = TextField(null=True)
    amount_lovelace = IntegerField(default=0)
    maturity_slot = IntegerField(null=True)
    status = CharField(
        max_length=16,
        default=MilestoneStatus.PENDING,
        choices=[(s, s) for s in MilestoneStatus.ALL],
    )
    paused_at = DateTimeField(null=True)
    paused_reason = TextField(null=True)
    completed_at = DateTimeField(null=True)
    created_at = DateTimeField(default=utcnow)

    class Meta:
        indexes = (
            (("project", "identifier"), True),
            # maturity scans
            (("status", "maturity_slot"), False),
        )


class VendorContract(BaseModel):
    """
    Append-only record of a vendor contract address discovered in a fund transaction
    """

    payment_address = CharField(max_length=128, unique=True)
    script_hash = ScriptHash(null=True)
    project = ForeignKeyField(Project, backref="vendor_contracts", on_delete="CASCADE")
    discovered_from_tx_hash = TxHash()
    created_at = DateTimeField(default=utcnow)


class TreasuryTransaction(BaseModel):
    """
    One row per applied transaction, its presence marks the hash as processed
    """

    tx_hash = TxHash(unique=True)
    slot = IntegerField(index=True)
    block_height = IntegerField(null=True)
    event_type = CharField(max_length=32)
    instance = ForeignKeyField(
        TreasuryInstance, backref="transactions", on_delete="CASCADE"
    )
    project = ForeignKeyField(
        Project, backref="transactions", null=True, on_delete="SET NULL"
    )
    tx_author = CharField(max_length=64, null=True)
    metadata = JSONField(null=True)
    metadata_anchor_url = TextField(null=True)
    metadata_anchor_hash = CharField(max_length=64, null=True)
    created_at = DateTimeField(default=utcnow)


class TreasuryEvent(BaseModel):
    """
    Immutable audit log of applied events
    """

    transaction = ForeignKeyField(
        TreasuryTransaction, backref="events", on_delete="CASCADE"
    )
    event_type = CharField(max_length=32, index=True)
    project = ForeignKeyField(
        Project, backref="events", null=True, on_delete="SET NULL"
    )
    milestone = ForeignKeyField(
        Milestone, backref="events", null=True, on_delete="SET NULL"
    )
    reason = TextField(null=True)
    event_data = JSONField(null=True)
    created_at = DateTimeField(default=utcnow)


ALL_MODELS = [
    TreasuryInstance,
    Project,
    Milestone,
    VendorContract,
    TreasuryTransaction,
    TreasuryEvent,
]
