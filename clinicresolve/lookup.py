"""
Two-tier record lookup.

1. primary:   resolve by id only, then aggregate
2. secondary: if that produced no records, resolve by code/name, then aggregate
3. catalog:   if still nothing, filter a bulk catalog by partial name/code
              (lowest confidence, flagged on the result)

Every run carries a request generation so that a caller who re-triggers a
lookup only ever applies the latest result.
"""

import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .aggregator import MultiSourceAggregator
from .logger import StructuredLogger, get_logger
from .models import AggregatedView, EntityReference, ResolutionOutcome, ResolutionStrategy, SourceFetcher
from .resolver import FallbackResolver

PRIMARY = "primary"
SECONDARY = "secondary"
CATALOG = "catalog"
NONE = "none"


class RequestGenerations:
    """Monotonically increasing request counter; only the latest generation is current."""

    def __init__(self):
        self._lock = threading.Lock()
        self._latest = 0

    def issue(self) -> int:
        with self._lock:
            self._latest += 1
            return self._latest

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._latest

    @property
    def latest(self) -> int:
        return self._latest


@dataclass
class LookupResult:
    reference: EntityReference
    generation: int
    tier: str
    view: AggregatedView
    outcomes: List[ResolutionOutcome] = field(default_factory=list)

    @property
    def outcome(self) -> Optional[ResolutionOutcome]:
        """The last resolution attempted (the one whose record was aggregated)."""
        return self.outcomes[-1] if self.outcomes else None

    @property
    def low_confidence(self) -> bool:
        return self.view.low_confidence

    @property
    def fetch_path(self) -> List[str]:
        path = []
        for outcome in self.outcomes:
            path.extend(outcome.attempted)
        return path


class RecordLookup:
    def __init__(
        self,
        resolver: FallbackResolver,
        aggregator: MultiSourceAggregator,
        strategies: Sequence[ResolutionStrategy],
        sources: Sequence[SourceFetcher],
        catalog: Optional[SourceFetcher] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.resolver = resolver
        self.aggregator = aggregator
        self.strategies = list(strategies)
        self.sources = list(sources)
        self.catalog = catalog
        self.logger = logger or get_logger()
        self.generations = RequestGenerations()

    def run(self, ref: EntityReference) -> LookupResult:
        generation = self.generations.issue()
        outcomes: List[ResolutionOutcome] = []
        view = AggregatedView()

        for tier, tier_ref in ((PRIMARY, ref.id_only()), (SECONDARY, ref.without_id())):
            if tier_ref is None:
                continue
            outcome = self.resolver.resolve(tier_ref, self.strategies)
            outcomes.append(outcome)
            if not outcome.found:
                continue
            view = self.aggregator.aggregate(outcome.record, self.sources)
            if view.records:
                return LookupResult(ref, generation, tier, view, outcomes)
            self.logger.info("No records for resolved entity", tier=tier, kind=ref.kind)

        if self.catalog is not None:
            catalog_view = self.aggregator.aggregate(ref.as_record(), [self.catalog])
            if catalog_view.records:
                catalog_view.low_confidence = True
                self.logger.warning(
                    "Falling back to heuristic catalog match",
                    kind=ref.kind,
                    records=len(catalog_view.records),
                )
                return LookupResult(ref, generation, CATALOG, catalog_view, outcomes)

        return LookupResult(ref, generation, NONE, view, outcomes)

    def deliver(self, ref: EntityReference, apply: Callable[[LookupResult], None]) -> bool:
        """Run a lookup and hand it to ``apply`` unless a newer run was issued meanwhile."""
        result = self.run(ref)
        if not self.generations.is_current(result.generation):
            self.logger.info(
                "Discarding stale lookup result",
                generation=result.generation,
                latest=self.generations.latest,
            )
            return False
        apply(result)
        return True
