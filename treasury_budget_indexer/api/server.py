import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from fastapi_cache import FastAPICache
from fastapi_cache.backends.inmemory import InMemoryBackend
from fastapi_cache.decorator import cache

from .config import get_settings
from .db_models import Block, MilestoneStatus, init_db, sqlite_db
from .db_queries import treasury

# logger setup
_LOGGER = logging.getLogger(__name__)


def DashingQuery(convert_underscores=True, **kwargs) -> Query:
    """
    This class enables "convert underscores" by default, allowing parameter names
    with underscores to be accessed via hypehenated versions
    """
    query = Query(**kwargs)
    query.convert_underscores = convert_underscores
    return query


@asynccontextmanager
async def lifespan(app: FastAPI):
    if sqlite_db.obj is None:
        init_db(get_settings().database_path)
    # For now in memory, but we can use redis or other backends later
    FastAPICache.init(InMemoryBackend(), expire=20)
    yield


app = FastAPI(
    default_response_class=ORJSONResponse,
    title="Treasury Budget Indexer API.",
    description="Provides access to the treasury instances, projects, milestones and vendor contracts derived from on-chain treasury metadata.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


#################################################################################################
#                                            Endpoints                                          #
#################################################################################################

LimitQuery = DashingQuery(
    default=100,
    ge=0,
    le=500,
    description="Maximal number of results",
)
OffsetQuery = DashingQuery(
    default=0,
    ge=0,
    description="Number of results to skip",
)
ProjectQuery = DashingQuery(
    default=None,
    description="Identifier of a project",
    examples=["PO123"],
)
StatusQuery = DashingQuery(
    default=None,
    description="Milestone status",
    examples=list(MilestoneStatus.ALL),
)
EventTypeQuery = DashingQuery(
    default=None,
    description="Treasury event type",
    examples=["fund", "complete", "pause"],
)
CurrentSlotQuery = DashingQuery(
    description="Slot to evaluate milestone maturity at",
    examples=[160964954],
)


@app.get("/api/v1/health")
def health():
    last_block = Block.select().order_by(Block.slot.desc()).first()
    return ORJSONResponse(
        {
            "status": "ok" if last_block else "nok",
            "last_block": {
                "slot": last_block.slot,
                "height": last_block.height,
                "hash": last_block.hash,
            }
            if last_block
            else None,
        }
    )


@app.get("/api/v1/treasury")
def treasury_instances():
    """
    Get the indexed treasury instances
    """
    return ORJSONResponse(treasury.query_treasury_instances())


@app.get("/api/v1/projects")
def projects(limit: int = LimitQuery, offset: int = OffsetQuery):
    """
    Get all funded projects
    """
    return ORJSONResponse(treasury.query_projects(limit, offset))


@app.get("/api/v1/projects/{identifier}")
def project_detail(identifier: str):
    """
    Get a project with its milestones and vendor contracts
    """
    project = treasury.query_project(identifier)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Unknown project {identifier}")
    return ORJSONResponse(project)


@app.get("/api/v1/milestones")
def milestones(
    status: Optional[str] = StatusQuery,
    project: Optional[str] = ProjectQuery,
    limit: int = LimitQuery,
    offset: int = OffsetQuery,
):
    """
    Get milestones, optionally filtered by status and project
    """
    if status is not None and status not in MilestoneStatus.ALL:
        raise HTTPException(status_code=400, detail=f"Unknown milestone status {status}")
    return ORJSONResponse(treasury.query_milestones(status, project, limit, offset))


@app.get("/api/v1/milestones/mature")
def mature_milestones(current_slot: int = CurrentSlotQuery):
    """
    Get the pending milestones whose maturity slot has been reached
    """
    return ORJSONResponse(treasury.query_mature_milestones(current_slot))


@app.get("/api/v1/vendor_contracts")
def vendor_contracts(project: Optional[str] = ProjectQuery):
    """
    Get the discovered vendor contracts
    """
    return ORJSONResponse(treasury.query_vendor_contracts(project))


@app.get("/api/v1/events")
def events(
    event_type: Optional[str] = EventTypeQuery,
    project: Optional[str] = ProjectQuery,
    limit: int = LimitQuery,
    offset: int = OffsetQuery,
):
    """
    Get the treasury event log, newest first
    """
    return ORJSONResponse(treasury.query_events(event_type, project, limit, offset))


@app.get("/api/v1/transactions/{tx_hash}")
def transaction_detail(tx_hash: str):
    """
    Get a processed treasury transaction with its events
    """
    transaction = treasury.query_transaction(tx_hash)
    if transaction is None:
        raise HTTPException(status_code=404, detail=f"Unknown transaction {tx_hash}")
    return ORJSONResponse(transaction)


@app.get("/api/v1/statistics")
@cache(expire=20)
def statistics():
    """
    Get aggregate counts over the indexed entities
    """
    return treasury.query_statistics()
