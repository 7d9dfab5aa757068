"""
Fallback Resolver.

Runs an ordered list of resolution strategies one at a time until one yields
a candidate. Each probe is bounded by its own timeout; a probe that raises,
times out or comes back empty only ends that attempt. Exhausting every
strategy is a normal "not found" outcome, never an exception.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .cache import hint_keys
from .errors import FetchError, NotFoundError, ProbeTimeout
from .identity import display_name, filter_candidates, pick_candidate, record_id
from .logger import StructuredLogger, get_logger
from .models import (
    CACHED_HINT,
    EXACT_CODE,
    EXACT_ID,
    FULL_SCAN_FILTER,
    EntityReference,
    ResolutionOutcome,
    ResolutionStrategy,
)
from .schema import as_candidates

Candidates = List[Dict[str, Any]]


class FallbackResolver:
    def __init__(self, cache=None, logger: Optional[StructuredLogger] = None):
        """
        Args:
            cache: Optional hint cache (see cache.py); never the sole source of truth
            logger: Logger for diagnostics (default: global logger)
        """
        self.cache = cache
        self.logger = logger or get_logger()

    def resolve(
        self,
        ref: EntityReference,
        strategies: Sequence[ResolutionStrategy],
        deadline_ms: Optional[int] = None,
    ) -> ResolutionOutcome:
        """Resolve ``ref`` by trying ``strategies`` in the given order.

        Each call gets its own probe threads, one per possible probe, so a
        timed-out probe that keeps running never delays a later strategy.

        Args:
            ref: What is known about the entity
            strategies: Strategies in priority order
            deadline_ms: Optional overall budget; each probe gets the smaller of
                its own timeout and what is left of this budget

        Returns:
            ResolutionOutcome; ``record`` is None when nothing matched
        """
        executor = ThreadPoolExecutor(max_workers=len(strategies) + 1, thread_name_prefix="probe")
        try:
            return self._resolve(ref, strategies, deadline_ms, executor)
        finally:
            executor.shutdown(wait=False)

    def _resolve(self, ref, strategies, deadline_ms, executor) -> ResolutionOutcome:
        deadline = time.monotonic() + deadline_ms / 1000 if deadline_ms else None
        attempted: List[str] = []

        outcome = self._try_cached_hint(ref, strategies, attempted, deadline, executor)
        if outcome is not None:
            return outcome

        for strategy in strategies:
            if not strategy.applies_to(ref):
                continue
            if deadline is not None and deadline - time.monotonic() <= 0:
                self.logger.warning("Resolution deadline exhausted", kind=ref.kind, attempted=attempted)
                break

            attempted.append(strategy.match_kind)
            candidates, _ = self._run_probe(executor, strategy, ref, deadline)
            if strategy.match_kind == FULL_SCAN_FILTER:
                candidates = filter_candidates(ref, candidates, strategy.name_of or display_name, strategy.owner_of)
            if not candidates:
                continue

            record = pick_candidate(candidates, ref, strategy.name_of or display_name)
            if strategy.cacheable and strategy.match_kind in (EXACT_ID, EXACT_CODE):
                self._remember(ref, record)
            self.logger.info(
                "Entity resolved",
                kind=ref.kind,
                strategy=strategy.match_kind,
                record_id=record_id(record),
                fetch_path=attempted,
            )
            return ResolutionOutcome(
                record=record,
                strategy_used=strategy.match_kind,
                attempted=attempted,
                candidates=candidates,
            )

        self.logger.info("Entity not found", kind=ref.kind, fetch_path=attempted)
        return ResolutionOutcome(record=None, strategy_used=None, attempted=attempted)

    def _try_cached_hint(self, ref, strategies, attempted, deadline, executor) -> Optional[ResolutionOutcome]:
        # An explicit id is authoritative; hints only stand in for a missing one
        if self.cache is None or ref.id:
            return None
        exact_id = next((s for s in strategies if s.match_kind == EXACT_ID), None)
        if exact_id is None:
            return None

        keys = hint_keys(ref)
        hinted_id = None
        for key in keys:
            hinted_id = self.cache.get(key)
            if hinted_id:
                break
        if not hinted_id:
            return None

        self.logger.record_cache_hit()
        attempted.append(CACHED_HINT)
        candidates, error = self._run_probe(executor, exact_id, ref.with_id(hinted_id), deadline)
        if candidates:
            record = pick_candidate(candidates, ref, exact_id.name_of or display_name)
            if exact_id.cacheable:
                self._remember(ref, record)
            self.logger.info("Entity resolved from cached hint", kind=ref.kind, record_id=record_id(record))
            return ResolutionOutcome(
                record=record,
                strategy_used=EXACT_ID,
                attempted=attempted,
                candidates=candidates,
                from_cache=True,
            )

        # Confirmed gone: evict. Transport failures leave the hint alone.
        if exact_id.cacheable and (error is None or isinstance(error, NotFoundError)):
            for key in keys:
                if self.cache.get(key) == hinted_id:
                    self.cache.delete(key)
            self.logger.warning("Evicted stale resolution hint", kind=ref.kind, hinted_id=hinted_id)
        return None

    def _run_probe(
        self,
        executor: ThreadPoolExecutor,
        strategy: ResolutionStrategy,
        ref: EntityReference,
        deadline: Optional[float],
    ) -> Tuple[Candidates, Optional[Exception]]:
        budget = strategy.timeout_ms / 1000
        if deadline is not None:
            budget = max(0.0, min(budget, deadline - time.monotonic()))
        channel = strategy.label or strategy.match_kind

        future = executor.submit(strategy.probe, ref, budget)
        try:
            payload = future.result(timeout=budget)
            return as_candidates(payload), None
        except FutureTimeout:
            future.cancel()
            error: Exception = ProbeTimeout(f"{channel} probe exceeded {strategy.timeout_ms} ms")
            self.logger.warning("Probe timed out", channel=channel, timeout_ms=strategy.timeout_ms)
        except FetchError as e:
            error = e
            self.logger.warning("Probe failed", channel=channel, error_type=e.error_type, error=str(e))
        except Exception as e:
            error = e
            self.logger.error("Probe raised unexpectedly", channel=channel, error_type=type(e).__name__, error=str(e))
        return [], error

    def _remember(self, ref: EntityReference, record: Dict[str, Any]) -> None:
        if self.cache is None:
            return
        resolved = record_id(record)
        if not resolved:
            return
        for key in hint_keys(ref):
            self.cache.set(key, resolved)


def resolve(
    ref: EntityReference,
    strategies: Sequence[ResolutionStrategy],
    cache=None,
    deadline_ms: Optional[int] = None,
) -> ResolutionOutcome:
    """One-shot convenience wrapper around FallbackResolver."""
    return FallbackResolver(cache=cache).resolve(ref, strategies, deadline_ms=deadline_ms)
