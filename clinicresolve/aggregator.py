"""
Multi-Source Aggregator.

Fans out to every record source of a resolved entity at once and waits for
all of them to settle. A failing source contributes nothing and never
affects the others. Results are concatenated in source order and
deduplicated by ``source:id``; the aggregator never re-sorts.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Iterable, List, Optional, Sequence

from .dates import is_valid
from .errors import FetchError, MalformedResponse
from .logger import StructuredLogger, get_logger
from .models import AggregatedView, CanonicalRecord, SourceFetcher, SourceRecord
from .schema import unwrap_collection


def dedupe(records: Iterable[SourceRecord]) -> List[SourceRecord]:
    """Drop later records whose ``source:id`` was already seen."""
    seen = set()
    result = []
    for record in records:
        if record.key not in seen:
            seen.add(record.key)
            result.append(record)
    return result


def sort_by_recency(records: Iterable[SourceRecord]) -> List[SourceRecord]:
    """Newest first; records with invalid timestamps go last in their original order."""
    records = list(records)
    dated = [r for r in records if is_valid(r.timestamp)]
    undated = [r for r in records if not is_valid(r.timestamp)]
    dated.sort(key=lambda r: r.timestamp, reverse=True)
    return dated + undated


class MultiSourceAggregator:
    def __init__(self, logger: Optional[StructuredLogger] = None, max_workers: int = 8):
        self.logger = logger or get_logger()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="source")

    def close(self):
        self._executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def aggregate(self, resolved: CanonicalRecord, sources: Sequence[SourceFetcher]) -> AggregatedView:
        started = time.monotonic()
        futures = [
            (source, self._executor.submit(self._collect, source, resolved, source.timeout_ms / 1000))
            for source in sources
        ]

        view = AggregatedView()
        collected: List[SourceRecord] = []
        for source, future in futures:
            remaining = max(0.0, started + source.timeout_ms / 1000 - time.monotonic())
            try:
                records = future.result(timeout=remaining)
            except FutureTimeout:
                future.cancel()
                self.logger.warning("Source timed out", source=source.source, timeout_ms=source.timeout_ms)
                view.failed_sources.append(source.source)
                continue
            except FetchError as e:
                self.logger.warning("Source failed", source=source.source, error_type=e.error_type, error=str(e))
                view.failed_sources.append(source.source)
                continue
            except Exception as e:
                self.logger.error("Source raised unexpectedly", source=source.source, error_type=type(e).__name__, error=str(e))
                view.failed_sources.append(source.source)
                continue
            view.succeeded_sources.append(source.source)
            collected.extend(records)

        view.records = dedupe(collected)
        if view.partial:
            self.logger.warning(
                "Partial aggregation",
                failed=view.failed_sources,
                succeeded=view.succeeded_sources,
                records=len(view.records),
            )
        else:
            self.logger.info("Aggregation complete", sources=len(sources), records=len(view.records))
        return view

    @staticmethod
    def _collect(source: SourceFetcher, resolved: CanonicalRecord, timeout: float) -> List[SourceRecord]:
        payload = source.fetch(resolved, timeout)
        records = []
        for item in unwrap_collection(payload, source.envelope_keys):
            if not isinstance(item, dict):
                raise MalformedResponse(f"{source.source} item is not a JSON object")
            if source.accept is not None and not source.accept(item, resolved):
                continue
            try:
                records.append(source.normalize(item))
            except (KeyError, TypeError) as e:
                raise MalformedResponse(f"{source.source} item has unexpected shape: {e}")
        return records


def aggregate(resolved: CanonicalRecord, sources: Sequence[SourceFetcher]) -> AggregatedView:
    """One-shot convenience wrapper around MultiSourceAggregator."""
    with MultiSourceAggregator() as aggregator:
        return aggregator.aggregate(resolved, sources)
