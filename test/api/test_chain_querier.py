from unittest import mock

import pycardano
import pytest

from treasury_budget_indexer.api import chain_querier, ogmios
from treasury_budget_indexer.api.db_models import Block
from treasury_budget_indexer.api.tx_processor import EventDispatcher, PersistenceError
from treasury_budget_indexer.api.util import chain_transaction_from

from .util import make_tx, tx_hash

SCRIPT_HASH = "5c" * 28


def pycardano_transaction(metadata=None) -> pycardano.Transaction:
    vendor = pycardano.Address(
        payment_part=pycardano.ScriptHash(bytes.fromhex(SCRIPT_HASH)),
        network=pycardano.Network.TESTNET,
    )
    wallet = pycardano.Address(
        payment_part=pycardano.VerificationKeyHash(bytes(28)),
        network=pycardano.Network.TESTNET,
    )
    body = pycardano.TransactionBody(
        inputs=[pycardano.TransactionInput(pycardano.TransactionId(bytes(32)), 0)],
        outputs=[
            pycardano.TransactionOutput(vendor, 5_000_000),
            pycardano.TransactionOutput(wallet, 2_000_000),
        ],
        fee=200_000,
    )
    auxiliary_data = None
    if metadata is not None:
        auxiliary_data = pycardano.AuxiliaryData(
            pycardano.AlonzoMetadata(metadata=pycardano.Metadata(metadata))
        )
    return pycardano.Transaction(
        body, pycardano.TransactionWitnessSet(), auxiliary_data=auxiliary_data
    )


def block(slot=1000, height=50, transactions=(), type_="praos"):
    return {
        "type": type_,
        "id": f"{slot:064x}",
        "slot": slot,
        "height": height,
        "transactions": list(transactions),
    }


def test_tip_from_block():
    assert ogmios.tip_from_block(block(1000, 50)) == ogmios.Tip(
        slot=1000, id=f"{1000:064x}", height=50
    )
    # byron epoch boundary blocks carry no slot
    assert ogmios.tip_from_block({"id": "ab", "height": 7}).slot == 7


def test_chain_transactions_from_block():
    tx = pycardano_transaction({1694: {"body": {"event": "sweep", "comment": "x"}}})
    [chain_tx] = ogmios.chain_transactions_from_block(
        block(transactions=[{"id": tx_hash(1), "cbor": tx.to_cbor_hex()}])
    )
    assert chain_tx.tx_hash == tx_hash(1)
    assert chain_tx.slot == 1000
    assert chain_tx.block_height == 50
    assert chain_tx.metadata == {"1694": {"body": {"event": "sweep", "comment": "x"}}}
    assert chain_tx.outputs[0].script_hash == SCRIPT_HASH
    assert chain_tx.outputs[0].amount == 5_000_000
    assert chain_tx.outputs[1].script_hash is None
    assert chain_tx.outputs[1].address.startswith("addr_test")


def test_transaction_without_metadata():
    fixed = ogmios.FixedTxHashTransaction(pycardano_transaction(), tx_hash(1))
    chain_tx = chain_transaction_from(fixed, 10, 1)
    assert chain_tx.metadata == {}
    assert len(chain_tx.outputs) == 2


def test_ebb_has_no_transactions():
    ebb = block(type_="ebb", transactions=[{"id": "x"}])
    assert ogmios.chain_transactions_from_block(ebb) == []


def test_missing_cbor_is_reported():
    with pytest.raises(ValueError, match="include-cbor"):
        ogmios.chain_transactions_from_block(block(transactions=[{"id": tx_hash(1)}]))


def test_undecodable_transaction_is_skipped():
    good = pycardano_transaction({1694: {"body": {"event": "sweep"}}})
    errors = []
    transactions = ogmios.chain_transactions_from_block(
        block(
            transactions=[
                {"id": tx_hash(1), "cbor": "00"},
                {"id": tx_hash(2), "cbor": good.to_cbor_hex()},
            ]
        ),
        errors.append,
    )
    assert [tx.tx_hash for tx in transactions] == [tx_hash(2)]
    assert [e.tx_id for e in errors] == [tx_hash(1)]
    assert isinstance(errors[0], ValueError)


def test_rollback_truncates_sync_cursor(db):
    for slot in (10, 20, 30):
        Block.create(hash=f"{slot:064x}", slot=slot, height=slot)
    chain_querier.handle_rollback(ogmios.Rollback(tip=ogmios.Point(slot=20, id=f"{20:064x}")))
    assert [b.slot for b in Block.select().order_by(Block.slot)] == [10, 20]
    assert [p.slot for p in chain_querier.sync_points()] == [20, 10]
    chain_querier.handle_rollback(ogmios.Rollback(tip=ogmios.Origin()))
    assert Block.select().count() == 0
    assert chain_querier.sync_points() == []


def test_handle_block_waits_for_transactions(db, processor, metrics):
    txs = [
        make_tx(tx_hash(i), outputs=[(f"addr_other{i}", None, 1)], slot=1000)
        for i in range(5)
    ]
    processed = []
    with mock.patch.object(
        ogmios, "chain_transactions_from_block", return_value=txs
    ), mock.patch.object(
        processor, "process_tx", side_effect=lambda tx: processed.append(tx.tx_hash)
    ), EventDispatcher(workers=2, queue_size=2, metrics=metrics) as dispatcher:
        chain_querier.handle_block(block(1000, 50), processor, dispatcher)
        assert sorted(processed) == sorted(tx.tx_hash for tx in txs)
        assert Block.get().slot == 1000
    assert processor.slot_tracker.last_processed_slot == 1000


def test_handle_block_is_idempotent(db, processor, metrics):
    with mock.patch.object(ogmios, "chain_transactions_from_block", return_value=[]):
        with EventDispatcher(workers=1, queue_size=1, metrics=metrics) as dispatcher:
            chain_querier.handle_block(block(1000, 50), processor, dispatcher)
            chain_querier.handle_block(block(1000, 50), processor, dispatcher)
    assert Block.select().count() == 1


def test_handle_block_continues_after_undecodable_transaction(db, processor, metrics):
    good = pycardano_transaction({1694: {"body": {"event": "sweep"}}})
    raw_block = block(
        1000,
        50,
        transactions=[
            {"id": tx_hash(1), "cbor": "00"},
            {"id": tx_hash(2), "cbor": good.to_cbor_hex()},
        ],
    )
    processed = []
    with mock.patch.object(
        processor, "process_tx", side_effect=lambda tx: processed.append(tx.tx_hash)
    ), EventDispatcher(workers=2, metrics=metrics) as dispatcher:
        chain_querier.handle_block(raw_block, processor, dispatcher)
    assert processed == [tx_hash(2)]
    assert metrics.value("errors", stage="decode") == 1
    assert Block.get().slot == 1000


def test_unstored_transaction_holds_the_block_back(db, processor, metrics):
    txs = [make_tx(tx_hash(i), slot=1000) for i in range(3)]

    def process_tx(tx):
        if tx.tx_hash == tx_hash(1):
            raise PersistenceError("database is locked")

    with mock.patch.object(
        ogmios, "chain_transactions_from_block", return_value=txs
    ), mock.patch.object(
        processor, "process_tx", side_effect=process_tx
    ), EventDispatcher(workers=2, metrics=metrics) as dispatcher:
        with pytest.raises(chain_querier.BlockNotApplied):
            chain_querier.handle_block(block(1000, 50), processor, dispatcher)
    assert Block.select().count() == 0
    assert processor.slot_tracker.last_processed_slot == 0
    assert metrics.value("errors", stage="dispatch") == 0


def test_run_syncs_again_after_unstored_block(db, settings):
    with mock.patch.object(
        chain_querier,
        "sync",
        side_effect=[chain_querier.BlockNotApplied("1 transactions"), KeyboardInterrupt],
    ) as sync:
        with pytest.raises(KeyboardInterrupt):
            chain_querier.run(settings, workers=1)
    assert sync.call_count == 2
