"""
Endpoint catalogue for the clinic backend.

Builds the ordered resolution strategies for each entity kind and the record
sources aggregated for a resolved patient. Every source documents the
defaults it applies to fields its payload may omit.
"""

from typing import Any, Dict, List, Optional

from .dates import parse_date
from .errors import MalformedResponse
from .http import ClinicApi, segment
from .identity import (
    appointment_doctor,
    appointment_doctor_name,
    identity_hints,
    loose_equals,
    normalize_code,
    owned_by,
    record_code,
    record_id,
)
from .models import (
    APPOINTMENT_SUBJECT,
    DOCTOR,
    EXACT_CODE,
    EXACT_ID,
    FULL_SCAN_FILTER,
    LOOSE_NAME,
    PATIENT,
    CanonicalRecord,
    EntityReference,
    ResolutionStrategy,
    SourceFetcher,
    SourceRecord,
)

COLLECTIONS = {
    PATIENT: "/patients",
    DOCTOR: "/doctors",
    APPOINTMENT_SUBJECT: "/appointments",
}

WIDE_START = "2020-01-01"
WIDE_END = "2099-12-31"


def entity_strategies(api: ClinicApi, kind: str, timeout_ms: int = 6000) -> List[ResolutionStrategy]:
    """exact-id, exact-code, loose-name and full-scan-filter for one collection."""
    coll = COLLECTIONS[kind]

    def by_id(ref: EntityReference, timeout: float):
        return api.get_json(f"{coll}/id/{segment(ref.id)}", EXACT_ID, timeout)

    def by_code(ref: EntityReference, timeout: float):
        return api.get_json(f"{coll}/code/{segment(ref.code)}", EXACT_CODE, timeout)

    def by_name(ref: EntityReference, timeout: float):
        return api.get_json(f"{coll}/by-name/{segment(ref.name)}", LOOSE_NAME, timeout, params={"loose": 1})

    def full_scan(ref: EntityReference, timeout: float):
        return api.get_json(f"{coll}/", FULL_SCAN_FILTER, timeout)

    return [
        ResolutionStrategy(EXACT_ID, by_id, timeout_ms),
        ResolutionStrategy(EXACT_CODE, by_code, timeout_ms),
        ResolutionStrategy(LOOSE_NAME, by_name, timeout_ms),
        ResolutionStrategy(FULL_SCAN_FILTER, full_scan, timeout_ms),
    ]


def doctor_appointment_strategies(
    api: ClinicApi,
    start: str = WIDE_START,
    end: str = WIDE_END,
    timeout_ms: int = 6000,
) -> List[ResolutionStrategy]:
    """Resolve the appointment list of a doctor known by id and/or display name.

    The winning strategy's ``candidates`` are the appointments.
    """
    window = {"start": start, "end": end}

    def by_doctor_id(ref: EntityReference, timeout: float):
        return api.get_json(f"/appointments/by-doctor/{segment(ref.id)}", "appointments-by-id", timeout, params=window)

    def by_doctor_name(ref: EntityReference, timeout: float):
        return api.get_json(
            f"/appointments/by-doctor-name/{segment(ref.name)}",
            "appointments-by-name",
            timeout,
            params={**window, "loose": 1},
        )

    def all_appointments(ref: EntityReference, timeout: float):
        return api.get_json("/appointments/", "appointments-all", timeout)

    return [
        ResolutionStrategy(EXACT_ID, by_doctor_id, timeout_ms, label="appointments-by-id", cacheable=False),
        ResolutionStrategy(LOOSE_NAME, by_doctor_name, timeout_ms, label="appointments-by-name",
                           name_of=appointment_doctor_name),
        ResolutionStrategy(FULL_SCAN_FILTER, all_appointments, timeout_ms, label="appointments-all",
                           name_of=appointment_doctor_name, owner_of=appointment_doctor, cacheable=False),
    ]


def _required_id(item: Dict[str, Any], source: str) -> str:
    found = record_id(item)
    if not found:
        raise MalformedResponse(f"{source} record without _id")
    return found


def _person(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("name") or value.get("fullName")
    if isinstance(value, str) and value.strip():
        return value
    return None


def normalize_lab_test(item: Dict[str, Any], day_first: bool = True) -> SourceRecord:
    """lab-test: status "Pending", priority "-", actor "-" when absent."""
    return SourceRecord(
        id=_required_id(item, "lab-test"),
        source="lab-test",
        type=str(item.get("type") or item.get("testType") or "Lab Test"),
        status=str(item.get("status") or "Pending"),
        priority=str(item.get("priorityLevel") or item.get("priority") or "-"),
        actor_name=_person(item.get("doctor")) or _person(item.get("requestedBy")) or "-",
        timestamp=parse_date(item.get("createdAt"), day_first=day_first),
        attachment_url=item.get("reportUrl") or None,
        raw=item,
    )


def normalize_lab_history(item: Dict[str, Any], day_first: bool = True) -> SourceRecord:
    """lab-history: status "Completed", priority "-", timestamp completedAt then updatedAt."""
    return SourceRecord(
        id=_required_id(item, "lab-history"),
        source="lab-history",
        type=str(item.get("testType") or item.get("type") or item.get("title") or "Lab Task"),
        status=str(item.get("status") or "Completed"),
        priority=str(item.get("priority") or "-"),
        actor_name=_person(item.get("assignedTo")) or _person(item.get("performedBy")) or "-",
        timestamp=parse_date(item.get("completedAt") or item.get("updatedAt"), day_first=day_first),
        attachment_url=None,
        raw=item,
    )


def normalize_test_result(item: Dict[str, Any], day_first: bool = True) -> SourceRecord:
    """test-result: status "Completed", priority "-", attachment from the first uploaded file."""
    files = item.get("files") if isinstance(item.get("files"), list) else []
    attachment = next((f.get("url") for f in files if isinstance(f, dict) and f.get("url")), None)
    return SourceRecord(
        id=_required_id(item, "test-result"),
        source="test-result",
        type=str(item.get("testType") or item.get("type") or "Test Result"),
        status=str(item.get("status") or "Completed"),
        priority="-",
        actor_name=_person(item.get("validatedBy")) or _person(item.get("technician")) or "-",
        timestamp=parse_date(item.get("resultDate") or item.get("createdAt"), day_first=day_first),
        attachment_url=attachment or item.get("fileUrl") or None,
        raw=item,
    )


def normalize_prescription(item: Dict[str, Any], day_first: bool = True) -> SourceRecord:
    """prescription: type from Diagnosis, status "Issued", priority "-"."""
    return SourceRecord(
        id=_required_id(item, "prescription"),
        source="prescription",
        type=str(item.get("Diagnosis") or "Prescription"),
        status=str(item.get("status") or "Issued"),
        priority="-",
        actor_name=str(item.get("doctor_Name") or "-"),
        timestamp=parse_date(item.get("Date"), day_first=day_first),
        attachment_url=None,
        raw=item,
    )


def normalize_appointment(item: Dict[str, Any], day_first: bool = True) -> SourceRecord:
    """appointment: status "Scheduled", actor is the patient ("Unknown" when absent)."""
    return SourceRecord(
        id=_required_id(item, "appointment"),
        source="appointment",
        type=str(item.get("appointment_type") or "Consultation"),
        status=str(item.get("status") or "Scheduled"),
        priority="-",
        actor_name=str(item.get("patient_name") or "Unknown"),
        timestamp=parse_date(item.get("appointment_date") or item.get("date"), day_first=day_first),
        attachment_url=None,
        raw=item,
    )


def patient_sources(api: ClinicApi, timeout_ms: int = 7000, day_first: bool = True) -> List[SourceFetcher]:
    """Record sources for a resolved patient.

    lab-test and lab-history are keyed by the patient's record id,
    test-result and prescription by the human-readable patient code. A source
    whose key is missing from the resolved record fails on its own.
    """

    def patient_id(resolved: CanonicalRecord) -> str:
        found = record_id(resolved)
        if not found:
            raise MalformedResponse("Resolved patient has no id")
        return segment(found)

    def patient_code(resolved: CanonicalRecord) -> str:
        found = record_code(resolved)
        if not found:
            raise MalformedResponse("Resolved patient has no code")
        return segment(found)

    return [
        SourceFetcher(
            source="lab-test",
            fetch=lambda r, t: api.get_json(f"/api/labtests/patient/{patient_id(r)}", "lab-test", t),
            normalize=lambda item: normalize_lab_test(item, day_first),
            timeout_ms=timeout_ms,
            envelope_keys=("labTests", "data"),
        ),
        SourceFetcher(
            source="lab-history",
            fetch=lambda r, t: api.get_json(f"/api/labtasks/patient/{patient_id(r)}/history", "lab-history", t),
            normalize=lambda item: normalize_lab_history(item, day_first),
            timeout_ms=timeout_ms,
            envelope_keys=("history", "data"),
        ),
        SourceFetcher(
            source="test-result",
            fetch=lambda r, t: api.get_json(f"/test-results/patient-code/{patient_code(r)}", "test-result", t),
            normalize=lambda item: normalize_test_result(item, day_first),
            timeout_ms=timeout_ms,
            envelope_keys=("results", "data"),
        ),
        SourceFetcher(
            source="prescription",
            fetch=lambda r, t: api.get_json(f"/prescriptions/by-patient-code/{patient_code(r)}", "prescription", t),
            normalize=lambda item: normalize_prescription(item, day_first),
            timeout_ms=timeout_ms,
            envelope_keys=("items", "data"),
        ),
    ]


def lab_test_matches_hints(item: Dict[str, Any], hints: CanonicalRecord) -> bool:
    """Heuristic catalog filter: owner id/code, or partial patient code or name."""
    if owned_by(item, identity_hints(hints)):
        return True
    patient = item.get("patient") if isinstance(item.get("patient"), dict) else {}
    code = hints.get("code")
    if code:
        item_code = record_code(patient) or item.get("patientCode") or item.get("patient_code")
        if item_code and normalize_code(code) in normalize_code(item_code):
            return True
    name = hints.get("name")
    if name:
        item_name = _person(patient) or item.get("patientName") or item.get("patient_name")
        if item_name and loose_equals(item_name, name):
            return True
    return False


def lab_catalog(api: ClinicApi, timeout_ms: int = 7000, day_first: bool = True) -> SourceFetcher:
    """Bulk lab-test listing filtered client-side; lowest-confidence fallback only."""
    return SourceFetcher(
        source="lab-test",
        fetch=lambda r, t: api.get_json("/api/labtests/", "lab-catalog", t),
        normalize=lambda item: normalize_lab_test(item, day_first),
        timeout_ms=timeout_ms,
        envelope_keys=("labTests", "data"),
        accept=lab_test_matches_hints,
    )
