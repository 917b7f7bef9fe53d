import pytest
from fastapi.testclient import TestClient

from treasury_budget_indexer.api.db_models import Block
from treasury_budget_indexer.api.server import app

from .util import TREASURY_ADDRESS, TREASURY_SCRIPT_HASH, fund_body, make_tx, milestone_body, tx_hash

FUND_OUTPUTS = [
    ("addr_vendor1", None, 5_000_000),
    (TREASURY_ADDRESS, TREASURY_SCRIPT_HASH, 100_000_000),
]


@pytest.fixture
def client(processor):
    processor.process_tx(
        make_tx(
            tx_hash(1),
            fund_body("PO123", {"M1": {"label": "Design", "maturity": 150}, "M2": {}}),
            outputs=FUND_OUTPUTS,
            slot=100,
        )
    )
    processor.process_tx(
        make_tx(
            tx_hash(2),
            milestone_body("complete", "PO123", M2={"description": "Done"}),
            outputs=[(TREASURY_ADDRESS, None, 1)],
            slot=200,
        )
    )
    with TestClient(app) as client:
        yield client


def test_health(client):
    assert client.get("/api/v1/health").json() == {"status": "nok", "last_block": None}
    Block.create(hash="ab" * 32, slot=300, height=15)
    assert client.get("/api/v1/health").json() == {
        "status": "ok",
        "last_block": {"slot": 300, "height": 15, "hash": "ab" * 32},
    }


def test_treasury(client):
    [instance] = client.get("/api/v1/treasury").json()
    assert instance["script_hash"] == TREASURY_SCRIPT_HASH
    assert instance["payment_address"] == TREASURY_ADDRESS


def test_projects(client):
    [project] = client.get("/api/v1/projects").json()
    assert project["identifier"] == "PO123"
    assert project["treasury"] == TREASURY_SCRIPT_HASH
    assert client.get("/api/v1/projects", params={"offset": 1}).json() == []


def test_project_detail(client):
    project = client.get("/api/v1/projects/PO123").json()
    assert [m["identifier"] for m in project["milestones"]] == ["M1", "M2"]
    assert project["milestone_status"] == {
        "PENDING": 1,
        "COMPLETED": 1,
        "PAUSED": 0,
        "WITHDRAWN": 0,
    }
    assert project["total_amount_lovelace"] == 5_000_000
    assert [c["payment_address"] for c in project["vendor_contracts"]] == ["addr_vendor1"]
    assert client.get("/api/v1/projects/PO999").status_code == 404


def test_milestones(client):
    assert len(client.get("/api/v1/milestones").json()) == 2
    [completed] = client.get("/api/v1/milestones", params={"status": "COMPLETED"}).json()
    assert completed["identifier"] == "M2"
    assert client.get("/api/v1/milestones", params={"project": "PO999"}).json() == []
    assert client.get("/api/v1/milestones", params={"status": "DONE"}).status_code == 400


def test_mature_milestones(client):
    assert client.get("/api/v1/milestones/mature", params={"current_slot": 100}).json() == []
    [mature] = client.get("/api/v1/milestones/mature", params={"current_slot": 150}).json()
    assert mature["identifier"] == "M1"
    assert client.get("/api/v1/milestones/mature").status_code == 422


def test_vendor_contracts(client):
    [contract] = client.get("/api/v1/vendor_contracts").json()
    assert contract["project"] == "PO123"
    assert contract["discovered_from_tx_hash"] == tx_hash(1)
    assert client.get("/api/v1/vendor_contracts", params={"project": "PO999"}).json() == []


def test_events(client):
    events = client.get("/api/v1/events").json()
    assert [e["event_type"] for e in events] == ["complete", "fund"]
    [fund] = client.get("/api/v1/events", params={"event_type": "fund"}).json()
    assert fund["data"]["body"]["identifier"] == "PO123"
    assert len(client.get("/api/v1/events", params={"project": "PO123"}).json()) == 2
    assert client.get("/api/v1/events", params={"limit": 1}).json()[0]["event_type"] == "complete"


def test_transaction(client):
    transaction = client.get(f"/api/v1/transactions/{tx_hash(2)}").json()
    assert transaction["event_type"] == "complete"
    assert transaction["project"] == "PO123"
    assert [e["milestone"] for e in transaction["events"]] == ["M2"]
    assert client.get(f"/api/v1/transactions/{tx_hash(3)}").status_code == 404


def test_statistics(client):
    statistics = client.get("/api/v1/statistics").json()
    assert statistics["projects"] == 1
    assert statistics["transactions"] == 2
    assert statistics["vendor_contracts"] == 1
    assert statistics["allocated_lovelace"] == 5_000_000
    assert statistics["last_slot"] == 200
    assert statistics["milestones"]["COMPLETED"] == 1
    assert statistics["events"] == {"complete": 1, "fund": 1}
