from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# metadata label registered for treasury oversight metadata (CIP-1694 range)
TREASURY_METADATA_LABEL = "1694"

# default: start from the block the treasury contract was deployed in
start_block_slot = 160964954
start_block_hash = None


class IndexerSettings(BaseSettings):
    """
    Read-only inputs of the indexer, loaded from TREASURY_INDEXER_* environment variables.
    """

    model_config = SettingsConfigDict(
        env_prefix="TREASURY_INDEXER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # treasury contract
    treasury_payment_address: str
    treasury_script_hash: str
    metadata_label: str = TREASURY_METADATA_LABEL

    # storage
    database_path: str = "treasury_budget_indexer.db"

    # chain sync
    ogmios_url: str = "ws://localhost:1337"
    start_slot: int = start_block_slot
    start_block_hash: Optional[str] = start_block_hash

    # remote anchors
    anchor_fetch_timeout: float = 10.0
    anchor_max_bytes: int = 10 * 1024 * 1024

    # processing
    max_retries: int = 3
    retry_delay: float = 1.0
    duplicate_cache_size: int = 10_000
    maturity_check_interval: int = 100
    workers: int = 4
    queue_size: int = 1000


@lru_cache
def get_settings() -> IndexerSettings:
    return IndexerSettings()
