import time
from typing import Dict, Optional

import requests

from treasury_budget_indexer.api.config import TREASURY_METADATA_LABEL
from treasury_budget_indexer.api.metadata import MetadataParser
from treasury_budget_indexer.api.util import ChainOutput, ChainTransaction

TREASURY_ADDRESS = "addr_treasury"
TREASURY_SCRIPT_HASH = "a1" * 28
CONTEXT = "https://github.com/SundaeSwap-finance/treasury-contracts/blob/main/offchain/src/metadata/context.jsonld"


def treasury_document(body: dict, **fields) -> dict:
    document = {
        "@context": CONTEXT,
        "hashAlgorithm": "blake2b-256",
        "txAuthor": "b2" * 28,
        "instance": TREASURY_SCRIPT_HASH,
        "body": body,
    }
    document.update(fields)
    return document


def fund_body(
    identifier: str = "PO123", milestones: Optional[Dict[str, dict]] = None, **fields
) -> dict:
    body = {
        "event": "fund",
        "identifier": identifier,
        "label": "Project",
        "milestones": milestones
        if milestones is not None
        else {"M1": {"label": "Design"}},
    }
    body.update(fields)
    return body


def milestone_body(event: str, identifier: Optional[str] = None, **milestones) -> dict:
    body = {"event": event, "milestones": milestones}
    if identifier is not None:
        body["identifier"] = identifier
    return body


def make_tx(
    tx_hash: str,
    body: Optional[dict] = None,
    outputs=(),
    slot: int = 100,
    metadata: Optional[dict] = None,
    spent_addresses=(),
) -> ChainTransaction:
    if metadata is None:
        metadata = (
            {TREASURY_METADATA_LABEL: treasury_document(body)}
            if body is not None
            else {}
        )
    return ChainTransaction(
        tx_hash=tx_hash,
        slot=slot,
        block_height=slot // 20,
        metadata=metadata,
        outputs=tuple(
            o if isinstance(o, ChainOutput) else ChainOutput(*o) for o in outputs
        ),
        spent_addresses=tuple(spent_addresses),
    )


def parse(tx: ChainTransaction, parser: Optional[MetadataParser] = None):
    parser = parser or MetadataParser(anchor_fetcher=None)
    return parser.parse_metadata(tx.metadata)


def tx_hash(n: int) -> str:
    return f"{n:064x}"


class FakeRaw:
    """
    Body stream handing out at most read_size bytes per read, optionally
    pausing before each read
    """

    def __init__(self, content: bytes, read_size: Optional[int] = None, delay: float = 0.0):
        self.content = content
        self.read_size = read_size
        self.delay = delay
        self.offset = 0
        self.reads = 0

    def read1(self, amt=-1, decode_content=None):
        if self.delay:
            time.sleep(self.delay)
        self.reads += 1
        size = min(amt, self.read_size or amt)
        chunk = self.content[self.offset : self.offset + size]
        self.offset += len(chunk)
        return chunk


class FakeResponse:
    def __init__(
        self,
        content: bytes = b"",
        status_code: int = 200,
        read_size: Optional[int] = None,
        delay: float = 0.0,
    ):
        self.content = content
        self.status_code = status_code
        self.raw = FakeRaw(content, read_size, delay)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """
    Serves canned responses per url and records the requested urls
    """

    def __init__(self, responses: Optional[dict] = None):
        self.responses = responses or {}
        self.requested = []

    def get(self, url, timeout=None, stream=False):
        self.requested.append(url)
        response = self.responses.get(url)
        if isinstance(response, Exception):
            raise response
        if response is None:
            return FakeResponse(status_code=404)
        if isinstance(response, FakeResponse):
            return response
        return FakeResponse(response)
