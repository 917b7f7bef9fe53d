import json
import logging
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Union

import pycardano
import websocket

from .util import ChainTransaction, FixedTxHashTransaction, chain_transaction_from

_LOGGER = logging.getLogger(__name__)

# this is the v6 format
TEMPLATE = {
    "jsonrpc": "2.0",
}

NEXT_BLOCK = TEMPLATE.copy()
NEXT_BLOCK["method"] = "nextBlock"
NEXT_BLOCK = json.dumps(NEXT_BLOCK)

# requests kept in flight to avoid waiting for the node
PIPELINE_DEPTH = 100


@dataclass
class Point:
    slot: int
    id: str


@dataclass
class Tip:
    slot: int
    id: str
    height: int


class Origin:
    pass


@dataclass
class Rollforward:
    tip: Tip
    block: dict


@dataclass
class Rollback:
    tip: Union[Point, Origin]


NextBlockResult = Union[Rollforward, Rollback]


class OgmiosIterator:
    def __init__(self, ogmios_url: str, start_point: Optional[Point] = None):
        self.ogmios_url = ogmios_url
        self.start_point = start_point
        self.ws = websocket.WebSocket()
        self.ws.connect(self.ogmios_url)

    def _init_connection(self, start_points: List[Point]):
        points = [{"slot": p.slot, "id": p.id} for p in start_points]
        if self.start_point is not None and self.start_point.id is not None:
            points.append({"slot": self.start_point.slot, "id": self.start_point.id})
        data = TEMPLATE.copy()
        data["method"] = "findIntersection"
        # we send the origin so we will always find an intersection
        data["params"] = {"points": points + ["origin"]}

        self.ws.send(json.dumps(data))
        _LOGGER.info(f"Intersection: {self.ws.recv()}")

    def iterate_blocks(self, start_points: List[Point]) -> Iterator[NextBlockResult]:
        self._init_connection(start_points)
        for _ in range(PIPELINE_DEPTH):
            self.ws.send(NEXT_BLOCK)
        while True:
            resp = json.loads(self.ws.recv())
            result = resp["result"]
            if result["direction"] == "forward":
                yield Rollforward(
                    tip=Tip(**result["tip"]),
                    block=result["block"],
                )
            else:
                yield Rollback(
                    tip=Point(**result["point"])
                    if "origin" != result["point"]
                    else Origin(),
                )
            self.ws.send(NEXT_BLOCK)

    def close(self):
        self.ws.close()


def tip_from_block(block: dict) -> Tip:
    return Tip(
        slot=block.get("slot", block["height"]),
        id=block["id"],
        height=block["height"],
    )


class UndecodableTransaction(ValueError):
    """A transaction of a block that could not be decoded."""

    def __init__(self, tx_id: Optional[str], reason: Exception):
        super().__init__(f"Could not decode transaction {tx_id}: {reason}")
        self.tx_id = tx_id


# deserialization errors of transactions using features pycardano does not support
UNSUPPORTED_FEATURES = {
    "pycardano.certificate": "a certificate type not supported by pycardano",
    "2 is not a valid Network": "a Byron address, not supported by pycardano",
}


def decode_transaction(tx: dict, tip: Tip) -> Optional[ChainTransaction]:
    """
    Decode one transaction of a block.
    Returns None for transactions using features pycardano does not support,
    raises UndecodableTransaction for every other failure.
    """
    if "cbor" not in tx:
        raise ValueError(
            "Error parsing transactions in block: missing cbor, make sure that --include-cbor is set as flag when running ogmios"
        )
    try:
        transaction = FixedTxHashTransaction(
            transaction=pycardano.Transaction.from_cbor(tx["cbor"]),
            hash=tx["id"],
        )
        return chain_transaction_from(transaction, tip.slot, tip.height)
    except Exception as e:
        for marker, feature in UNSUPPORTED_FEATURES.items():
            if marker in str(e):
                _LOGGER.info(f"Ignoring transaction {tx.get('id')} with {feature}")
                return None
        raise UndecodableTransaction(tx.get("id"), e) from e


def chain_transactions_from_block(
    block: dict,
    on_undecodable: Optional[Callable[[UndecodableTransaction], None]] = None,
) -> List[ChainTransaction]:
    """
    The transactions of a block in the shape the transaction processor consumes.
    Transactions that can not be decoded are logged, handed to on_undecodable
    and skipped.
    """
    if block.get("type") == "ebb":
        return []
    tip = tip_from_block(block)
    transactions = []
    for tx in block["transactions"]:
        try:
            decoded = decode_transaction(tx, tip)
        except UndecodableTransaction as e:
            _LOGGER.error(f"Skipping transaction in block {tip.id}: {e}")
            if on_undecodable is not None:
                on_undecodable(e)
            continue
        if decoded is not None:
            transactions.append(decoded)
    return transactions
