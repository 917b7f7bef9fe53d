import hashlib
import logging
import time
from typing import Callable, Dict, Iterator, Optional

import requests
import urllib3

from .exceptions import AnchorFetchError, AnchorHashMismatch, UnsupportedHashAlgorithm

_LOGGER = logging.getLogger(__name__)

DEFAULT_HASH_ALGORITHM = "blake2b-256"

HASH_ALGORITHMS: Dict[str, Callable[[bytes], str]] = {
    "blake2b-256": lambda content: hashlib.blake2b(content, digest_size=32).hexdigest(),
}


def compute_anchor_hash(content: bytes, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """
    Hash the raw bytes of an anchored document with the given algorithm.
    """
    try:
        hash_fn = HASH_ALGORITHMS[algorithm]
    except KeyError:
        raise UnsupportedHashAlgorithm(algorithm) from None
    return hash_fn(content)


class AnchorFetcher:
    """
    Retrieves documents referenced by anchors (url + data hash).
    Bodies are read in chunks and the download is aborted once max_bytes is
    exceeded or the whole fetch took longer than timeout seconds.
    """

    CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        timeout: float = 10.0,
        max_bytes: int = 10 * 1024 * 1024,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.session = session or requests.Session()

    def fetch(self, url: str) -> bytes:
        deadline = time.monotonic() + self.timeout
        try:
            with self.session.get(url, timeout=self.timeout, stream=True) as response:
                response.raise_for_status()
                content = bytearray()
                for chunk in self._chunks(response):
                    content.extend(chunk)
                    if time.monotonic() > deadline:
                        raise AnchorFetchError(
                            f"Fetching anchor {url} took longer than {self.timeout}s"
                        )
                    if len(content) > self.max_bytes:
                        raise AnchorFetchError(
                            f"Anchor {url} exceeds the limit of {self.max_bytes} bytes"
                        )
                return bytes(content)
        except (requests.Timeout, urllib3.exceptions.TimeoutError) as e:
            raise AnchorFetchError(f"Timed out fetching anchor {url}") from e
        except (requests.RequestException, urllib3.exceptions.HTTPError) as e:
            raise AnchorFetchError(f"Failed to fetch anchor {url}: {e}") from e

    def _chunks(self, response: requests.Response) -> Iterator[bytes]:
        # one socket read per chunk, a dripping server can not stretch a read
        while True:
            chunk = response.raw.read1(self.CHUNK_SIZE, decode_content=True)
            if not chunk:
                return
            yield chunk

    def fetch_and_verify(
        self,
        url: str,
        expected_hash: Optional[str] = None,
        hash_algorithm: Optional[str] = None,
    ) -> bytes:
        """
        Fetch the anchored document. When a data hash is declared, the hash of
        the fetched bytes must match it exactly.
        """
        algorithm = hash_algorithm or DEFAULT_HASH_ALGORITHM
        if expected_hash and algorithm not in HASH_ALGORITHMS:
            raise UnsupportedHashAlgorithm(algorithm)
        content = self.fetch(url)
        if expected_hash:
            computed = compute_anchor_hash(content, algorithm)
            if computed != expected_hash:
                raise AnchorHashMismatch(url, expected_hash, computed)
            _LOGGER.debug(f"Verified anchor {url} ({algorithm})")
        return content
