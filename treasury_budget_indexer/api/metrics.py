"""Prometheus counters describing indexing progress."""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter

ERROR_STAGES = ("decode", "apply", "persistence", "dispatch")


class IndexingMetrics:
    """
    Counters of one indexer. Each instance registers into its own registry
    so several indexers (or tests) can live in one process.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.transactions_processed = Counter(
            "treasury_indexer_transactions_processed",
            "Treasury transactions applied",
            ["event_type"],
            registry=self.registry,
        )
        self.duplicates_skipped = Counter(
            "treasury_indexer_duplicates_skipped",
            "Transactions skipped because they were already applied",
            registry=self.registry,
        )
        self.projects_created = Counter(
            "treasury_indexer_projects_created",
            "Projects created by fund events",
            registry=self.registry,
        )
        self.milestones_created = Counter(
            "treasury_indexer_milestones_created",
            "Milestones created by fund events",
            registry=self.registry,
        )
        self.non_treasury_metadata = Counter(
            "treasury_indexer_non_treasury_metadata",
            "Transactions carrying the treasury label without a treasury document",
            registry=self.registry,
        )
        self.vendor_contracts_discovered = Counter(
            "treasury_indexer_vendor_contracts_discovered",
            "Vendor contract addresses discovered in fund transactions",
            registry=self.registry,
        )
        self.errors = Counter(
            "treasury_indexer_errors",
            "Events that failed to process",
            ["stage"],
            registry=self.registry,
        )

    def value(self, name: str, **labels) -> float:
        """
        Current value of a counter, e.g. value("errors", stage="decode").
        """
        sample = self.registry.get_sample_value(
            f"treasury_indexer_{name}_total", labels or None
        )
        return sample or 0.0
