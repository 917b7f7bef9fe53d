from .anchor import AnchorFetcher, compute_anchor_hash
from .events import ParsedEvent, ParsedMetadata
from .exceptions import (
    AnchorFetchError,
    AnchorHashMismatch,
    MetadataDecodeError,
    UnsupportedHashAlgorithm,
)
from .parser import EVENT_TYPES, MetadataParser
