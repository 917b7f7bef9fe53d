from .db import Block, BaseModel, sqlite_db, init_db, create_tables
from .treasury import (
    ALL_MODELS,
    Milestone,
    MilestoneStatus,
    Project,
    TreasuryEvent,
    TreasuryInstance,
    TreasuryTransaction,
    VendorContract,
)
