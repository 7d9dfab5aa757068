"""
Data-shape contracts shared by the resolver and the aggregator.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterator, List, Optional

from .dates import DateOrInvalid, INVALID_DATE

PATIENT = "patient"
DOCTOR = "doctor"
APPOINTMENT_SUBJECT = "appointment-subject"
ENTITY_KINDS = (PATIENT, DOCTOR, APPOINTMENT_SUBJECT)

EXACT_ID = "exact-id"
EXACT_CODE = "exact-code"
LOOSE_NAME = "loose-name"
FULL_SCAN_FILTER = "full-scan-filter"
MATCH_KINDS = (EXACT_ID, EXACT_CODE, LOOSE_NAME, FULL_SCAN_FILTER)

# Diagnostic-only entry in the attempted trail for a cached-hint probe
CACHED_HINT = "cached-hint"

CanonicalRecord = Dict[str, Any]


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class EntityReference:
    kind: str
    id: Optional[str] = None
    code: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self):
        if self.kind not in ENTITY_KINDS:
            raise ValueError(f"Unknown entity kind: {self.kind!r}")
        object.__setattr__(self, "id", _clean(self.id))
        object.__setattr__(self, "code", _clean(self.code))
        object.__setattr__(self, "name", _clean(self.name))
        if not (self.id or self.code or self.name):
            raise ValueError("EntityReference needs at least one of id, code or name")

    def with_id(self, resolved_id: str) -> "EntityReference":
        return replace(self, id=resolved_id)

    def without_id(self) -> Optional["EntityReference"]:
        """The secondary hints only, or None when there are none."""
        if not (self.code or self.name):
            return None
        return replace(self, id=None)

    def id_only(self) -> Optional["EntityReference"]:
        if not self.id:
            return None
        return EntityReference(kind=self.kind, id=self.id)

    def as_record(self) -> CanonicalRecord:
        """Pseudo-record built from the reference hints (catalog fallback)."""
        return {"_id": self.id, "code": self.code, "name": self.name}


Probe = Callable[[EntityReference, float], Any]


@dataclass
class ResolutionStrategy:
    match_kind: str
    probe: Probe
    timeout_ms: int = 6000
    name_of: Optional[Callable[[Dict[str, Any]], str]] = None
    label: Optional[str] = None
    # Maps a full-scan item to the entity owning it (e.g. an appointment to its doctor)
    owner_of: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None
    # False when candidates are not the referenced entity itself (e.g. its appointments)
    cacheable: bool = True

    def __post_init__(self):
        if self.match_kind not in MATCH_KINDS:
            raise ValueError(f"Unknown match kind: {self.match_kind!r}")

    def applies_to(self, ref: EntityReference) -> bool:
        """Whether the reference carries the field this strategy needs."""
        if self.match_kind == EXACT_ID:
            return bool(ref.id)
        if self.match_kind == EXACT_CODE:
            return bool(ref.code)
        if self.match_kind == LOOSE_NAME:
            return bool(ref.name)
        return bool(ref.id or ref.code or ref.name)


@dataclass
class ResolutionOutcome:
    record: Optional[CanonicalRecord]
    strategy_used: Optional[str]
    attempted: List[str]
    candidates: List[CanonicalRecord] = field(default_factory=list)
    from_cache: bool = False

    @property
    def found(self) -> bool:
        return self.record is not None

    @property
    def fetch_path(self) -> str:
        """Human readable trail, e.g. ``exact-id > loose-name``."""
        return " > ".join(self.attempted) if self.attempted else "-"


@dataclass
class SourceRecord:
    id: str
    source: str
    type: str
    status: str
    priority: str
    actor_name: str
    timestamp: DateOrInvalid = INVALID_DATE
    attachment_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def key(self) -> str:
        return f"{self.source}:{self.id}"


@dataclass
class SourceFetcher:
    """One independent record source for an already resolved entity.

    ``fetch(resolved, timeout_seconds)`` returns the raw payload, which may be
    an array or an envelope keyed by one of ``envelope_keys``. ``accept``
    filters raw items before ``normalize`` maps them to SourceRecords.
    """

    source: str
    fetch: Callable[[CanonicalRecord, float], Any]
    normalize: Callable[[Dict[str, Any]], SourceRecord]
    timeout_ms: int = 7000
    envelope_keys: tuple = ("data",)
    accept: Optional[Callable[[Dict[str, Any], CanonicalRecord], bool]] = None


@dataclass
class AggregatedView:
    records: List[SourceRecord] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)
    succeeded_sources: List[str] = field(default_factory=list)
    low_confidence: bool = False

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[SourceRecord]:
        return iter(self.records)

    @property
    def partial(self) -> bool:
        """Some, but not all, sources failed."""
        return bool(self.failed_sources) and bool(self.succeeded_sources)

    @property
    def total_failure(self) -> bool:
        return bool(self.failed_sources) and not self.succeeded_sources

    def keys(self) -> List[str]:
        return [r.key for r in self.records]
