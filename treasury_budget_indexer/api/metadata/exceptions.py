class MetadataDecodeError(ValueError):
    """The treasury metadata of a transaction could not be decoded."""


class AnchorFetchError(MetadataDecodeError):
    """The document behind a remote anchor could not be retrieved."""


class AnchorHashMismatch(AnchorFetchError):
    def __init__(self, url: str, expected: str, computed: str):
        super().__init__(
            f"Hash mismatch for anchor {url}: expected {expected}, got {computed}"
        )
        self.url = url
        self.expected = expected
        self.computed = computed


class UnsupportedHashAlgorithm(MetadataDecodeError):
    def __init__(self, algorithm: str):
        super().__init__(f"Unsupported anchor hash algorithm: {algorithm}")
        self.algorithm = algorithm
