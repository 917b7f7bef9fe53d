import pytest

from treasury_budget_indexer.api.config import IndexerSettings
from treasury_budget_indexer.api.db_models import create_tables, init_db, sqlite_db
from treasury_budget_indexer.api.metrics import IndexingMetrics
from treasury_budget_indexer.api.tx_processor import (
    AddressRegistry,
    DuplicateGuard,
    TransactionProcessor,
    TreasuryEventApplier,
    VendorContractExtractor,
)

from .api.util import FakeSession, TREASURY_ADDRESS, TREASURY_SCRIPT_HASH


@pytest.fixture
def db(tmp_path):
    database = init_db(str(tmp_path / "test.db"))
    create_tables()
    yield database
    sqlite_db.close()


@pytest.fixture
def settings(tmp_path):
    return IndexerSettings(
        treasury_payment_address=TREASURY_ADDRESS,
        treasury_script_hash=TREASURY_SCRIPT_HASH,
        database_path=str(tmp_path / "test.db"),
        retry_delay=0,
        start_slot=0,
        maturity_check_interval=10,
    )


@pytest.fixture
def metrics():
    return IndexingMetrics()


@pytest.fixture
def registry():
    return AddressRegistry(TREASURY_ADDRESS, TREASURY_SCRIPT_HASH)


@pytest.fixture
def applier(db, registry, metrics):
    return TreasuryEventApplier(
        TREASURY_SCRIPT_HASH,
        TREASURY_ADDRESS,
        DuplicateGuard(),
        VendorContractExtractor(registry, metrics),
        metrics=metrics,
    )


@pytest.fixture
def anchor_session():
    return FakeSession()


@pytest.fixture
def processor(db, settings, metrics, anchor_session):
    from treasury_budget_indexer.api.metadata import AnchorFetcher

    return TransactionProcessor.build(
        settings,
        metrics=metrics,
        anchor_fetcher=AnchorFetcher(timeout=1, max_bytes=1024, session=anchor_session),
    )
