"""
The main file containing the logic for starting the querier.
The querier syncs with the blockchain, listening for new blocks and feeding
their transactions through the transaction processor.
"""
import logging
import time
from concurrent.futures import wait
from typing import Optional

import fire

from . import ogmios
from .config import IndexerSettings, get_settings
from .db_models import Block, create_tables, init_db
from .tx_processor import EventDispatcher, TransactionProcessor

_LOGGER = logging.getLogger(__name__)


def sync_points():
    """
    The most recent stored blocks, with fallbacks further back in case the
    latest ones were rolled back while the querier was down.
    """
    sync_blocks = [
        Block.select().order_by(Block.slot.desc()).first(),
        Block.select().order_by(Block.slot.desc()).offset(1).first(),
        Block.select().order_by(Block.slot.desc()).offset(5).first(),
        Block.select().order_by(Block.slot.desc()).offset(50).first(),
        Block.select().order_by(Block.slot.desc()).offset(1000).first(),
    ]
    return [
        ogmios.Point(slot=block.slot, id=block.hash)
        for block in sync_blocks
        if block is not None
    ]


def handle_rollback(operation: ogmios.Rollback):
    """
    Move the sync cursor back. Derived entities are kept, replayed
    transactions are recognized as duplicates.
    """
    if isinstance(operation.tip, ogmios.Origin):
        _LOGGER.info("Rollback to origin")
        Block.delete().execute()
    else:
        _LOGGER.info(f"Rollback to slot {operation.tip.slot} ({operation.tip.id})")
        Block.delete().where(Block.slot > operation.tip.slot).execute()


class BlockNotApplied(RuntimeError):
    """Transactions of a block could not be stored, the block has to be synced again."""


def handle_block(
    block: dict,
    processor: TransactionProcessor,
    dispatcher: EventDispatcher,
):
    """
    Process all transactions of a block, then store the block as sync cursor.
    The cursor is only stored once every transaction of the block was handled.
    """
    tip = ogmios.tip_from_block(block)

    def count_undecodable(error: ogmios.UndecodableTransaction):
        processor.metrics.errors.labels(stage="decode").inc()

    dispatcher.submit("block", processor.process_block_header, tip.slot, tip.height)
    futures = [
        dispatcher.submit("transaction", processor.process_tx, tx)
        for tx in ogmios.chain_transactions_from_block(block, count_undecodable)
    ]
    wait(futures)
    failed = sum(1 for future in futures if future.exception() is not None)
    if failed:
        raise BlockNotApplied(
            f"{failed} transactions of block {tip.id} (slot {tip.slot}) were not stored"
        )
    Block.get_or_create(hash=tip.id, defaults=dict(slot=tip.slot, height=tip.height))
    processor.slot_tracker.mark_processed(tip.slot)


def sync(
    ogmios_url: str,
    start_point: ogmios.Point,
    processor: TransactionProcessor,
    dispatcher: EventDispatcher,
):
    """
    Follow the chain from the last stored block.
    """
    iterator = ogmios.OgmiosIterator(ogmios_url, start_point)
    try:
        for operation in iterator.iterate_blocks(sync_points()):
            if isinstance(operation, ogmios.Rollback):
                handle_rollback(operation)
            else:
                handle_block(operation.block, processor, dispatcher)
    finally:
        iterator.close()


def run(settings: IndexerSettings, workers: Optional[int] = None):
    processor = TransactionProcessor.build(settings)
    processor.load_registry()
    start_point = ogmios.Point(slot=settings.start_slot, id=settings.start_block_hash)
    with EventDispatcher(
        workers or settings.workers, settings.queue_size, processor.metrics
    ) as dispatcher:
        while True:
            try:
                sync(settings.ogmios_url, start_point, processor, dispatcher)
            except BlockNotApplied as e:
                # redelivers the block from the stored cursor
                _LOGGER.warning(f"{e}, syncing again from the last stored block")
                time.sleep(settings.retry_delay)


def main(
    database_path: Optional[str] = None,
    debug_sql: bool = False,
    workers: Optional[int] = None,
):
    """
    Start the querier.
    """
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    if debug_sql:
        logger = logging.getLogger("peewee")
        logger.addHandler(logging.StreamHandler())
        logger.setLevel(logging.DEBUG)

    settings = get_settings()
    init_db(database_path or settings.database_path)
    create_tables()
    _LOGGER.info("Starting the querier")
    run(settings, workers)


def cli():
    fire.Fire(main)


if __name__ == "__main__":
    cli()
