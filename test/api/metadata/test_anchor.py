import hashlib
import time
from unittest import mock

import orjson
import pytest
import requests
import urllib3
from hypothesis import given
from hypothesis import strategies as st

from treasury_budget_indexer.api.metadata import (
    AnchorFetcher,
    AnchorFetchError,
    AnchorHashMismatch,
    MetadataParser,
    UnsupportedHashAlgorithm,
    compute_anchor_hash,
)
from treasury_budget_indexer.api.metadata.events import SweepEvent

from ..util import FakeResponse, FakeSession, treasury_document

URL = "https://example.com/treasury/sweep.json"
DOCUMENT = orjson.dumps(treasury_document({"event": "sweep", "comment": "Expired"}))


def blake2b_256(content: bytes) -> str:
    return hashlib.blake2b(content, digest_size=32).hexdigest()


def anchor_parser(session: FakeSession, max_bytes: int = 1024) -> MetadataParser:
    return MetadataParser(AnchorFetcher(timeout=1, max_bytes=max_bytes, session=session))


def anchor_reference(data_hash=None, **fields):
    reference = {"anchorUrl": URL}
    if data_hash is not None:
        reference["anchorDataHash"] = data_hash
    reference.update(fields)
    return {"1694": reference}


def test_compute_anchor_hash():
    assert compute_anchor_hash(b"") == blake2b_256(b"")
    with pytest.raises(UnsupportedHashAlgorithm):
        compute_anchor_hash(b"", "md5")


def test_verified_anchor_is_decoded():
    parser = anchor_parser(FakeSession({URL: DOCUMENT}))
    parsed = parser.parse_metadata(anchor_reference(blake2b_256(DOCUMENT)))
    assert parsed.body == SweepEvent(comment="Expired")
    assert parsed.anchor_url == URL
    assert parsed.anchor_data_hash == blake2b_256(DOCUMENT)


def test_anchor_without_hash_is_not_verified():
    parser = anchor_parser(FakeSession({URL: DOCUMENT}))
    parsed = parser.parse_metadata(anchor_reference())
    assert parsed.body == SweepEvent(comment="Expired")
    assert parsed.anchor_data_hash is None


@given(st.binary(min_size=1, max_size=64))
def test_tampered_anchor_is_rejected(tampering):
    tampered = DOCUMENT + tampering
    session = FakeSession({URL: tampered})
    parser = anchor_parser(session)
    assert parser.parse_metadata(anchor_reference(blake2b_256(DOCUMENT))) is None
    assert session.requested == [URL]


def test_hash_mismatch_error():
    fetcher = AnchorFetcher(session=FakeSession({URL: b"other"}))
    with pytest.raises(AnchorHashMismatch) as e:
        fetcher.fetch_and_verify(URL, blake2b_256(DOCUMENT))
    assert e.value.expected == blake2b_256(DOCUMENT)
    assert e.value.computed == blake2b_256(b"other")


def test_hash_comparison_is_exact():
    parser = anchor_parser(FakeSession({URL: DOCUMENT}))
    assert parser.parse_metadata(anchor_reference(blake2b_256(DOCUMENT).upper())) is None


def test_unsupported_hash_algorithm_is_a_decode_failure():
    session = FakeSession({URL: DOCUMENT})
    parser = anchor_parser(session)
    reference = anchor_reference(blake2b_256(DOCUMENT), hashAlgorithm="sha-1")
    assert parser.parse_metadata(reference) is None
    # rejected before any network access
    assert session.requested == []


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(status_code=404),
        FakeResponse(status_code=500),
        requests.Timeout("timed out"),
        requests.ConnectionError("refused"),
    ],
)
def test_fetch_failures(response):
    fetcher = AnchorFetcher(session=FakeSession({URL: response}))
    with pytest.raises(AnchorFetchError):
        fetcher.fetch(URL)
    parser = anchor_parser(FakeSession({URL: response}))
    assert parser.parse_metadata(anchor_reference(blake2b_256(DOCUMENT))) is None


def test_oversized_anchor_is_rejected():
    fetcher = AnchorFetcher(max_bytes=16, session=FakeSession({URL: b"x" * 17}))
    with pytest.raises(AnchorFetchError):
        fetcher.fetch(URL)
    assert AnchorFetcher(
        max_bytes=16, session=FakeSession({URL: b"x" * 16})
    ).fetch(URL) == b"x" * 16


def test_anchor_must_resolve_to_a_document():
    content = b"[1, 2]"
    parser = anchor_parser(FakeSession({URL: content}))
    assert parser.parse_metadata(anchor_reference(blake2b_256(content))) is None


def test_empty_anchor_url_is_a_decode_failure():
    session = FakeSession()
    parser = anchor_parser(session)
    assert parser.parse_metadata({"1694": {"anchorUrl": ""}}) is None
    assert session.requested == []


def test_slowly_dripping_anchor_times_out():
    response = FakeResponse(b"x" * 40, read_size=1, delay=0.05)
    fetcher = AnchorFetcher(timeout=0.2, session=FakeSession({URL: response}))
    started = time.monotonic()
    with pytest.raises(AnchorFetchError, match="longer than"):
        fetcher.fetch(URL)
    assert time.monotonic() - started < 1.0
    assert response.raw.reads < 40


def test_read_timeout_while_streaming():
    response = FakeResponse(DOCUMENT)
    response.raw.read1 = mock.Mock(
        side_effect=urllib3.exceptions.ReadTimeoutError(None, URL, "read timed out")
    )
    parser = anchor_parser(FakeSession({URL: response}))
    assert parser.parse_metadata(anchor_reference(blake2b_256(DOCUMENT))) is None
    with pytest.raises(AnchorFetchError, match="Timed out"):
        AnchorFetcher(session=FakeSession({URL: response})).fetch(URL)
