import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from .models import EntityReference

_HONORIFIC = re.compile(r"^dr(?:\.\s*|\s+)")

NAME_FIELDS = ("name", "fullName", "full_name", "doctor_name", "patient_name", "username")
CODE_FIELDS = ("code", "patient_ID", "patient_code", "doctor_code", "patientCode")
ID_FIELDS = ("_id", "id")
OWNER_FIELDS = ("patient_id", "patient", "patient_code", "patientId")


def normalize_text(s: Any) -> str:
    if s is None:
        return ""
    return " ".join(str(s).strip().lower().split())


def normalize_name(s: Any) -> str:
    """Lowercase, collapse whitespace and drop a leading "Dr."/"Dr " prefix."""
    return _HONORIFIC.sub("", normalize_text(s), count=1).strip()


def loose_equals(a: Any, b: Any) -> bool:
    na, nb = normalize_name(a), normalize_name(b)
    if not na or not nb:
        return False
    return na == nb or na in nb or nb in na


def normalize_code(code: Any) -> str:
    return str(code).strip().lower() if code is not None else ""


def coerce_ref_id(value: Any) -> Optional[str]:
    """Loosely-typed foreign key to a string id.

    Accepts a raw id (str/int) or an embedded object carrying ``_id``/``id``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (str, int)):
        text = str(value).strip()
        return text or None
    if isinstance(value, dict):
        for key in ID_FIELDS:
            if value.get(key) is not None:
                return coerce_ref_id(value[key])
    return None


def record_id(record: Optional[Dict[str, Any]]) -> Optional[str]:
    if not record:
        return None
    for key in ID_FIELDS:
        found = coerce_ref_id(record.get(key))
        if found:
            return found
    return None


def record_code(record: Optional[Dict[str, Any]]) -> Optional[str]:
    if not record:
        return None
    for key in CODE_FIELDS:
        value = record.get(key)
        if isinstance(value, (str, int)) and str(value).strip():
            return str(value).strip()
    return None


def display_name(record: Optional[Dict[str, Any]]) -> str:
    if not record:
        return ""
    for key in NAME_FIELDS:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return ""


def appointment_doctor_name(appointment: Dict[str, Any]) -> str:
    doctor = appointment.get("doctor")
    if isinstance(doctor, dict) and doctor.get("name"):
        return str(doctor["name"])
    return str(appointment.get("doctor_name") or "")


def appointment_doctor(appointment: Dict[str, Any]) -> Dict[str, Any]:
    """The doctor owning an appointment, as a pseudo-record.

    ``doctor_id`` and ``doctor`` may each be a raw id or an embedded object.
    """
    owner_id = coerce_ref_id(appointment.get("doctor_id")) or coerce_ref_id(appointment.get("doctor"))
    embedded = next(
        (v for v in (appointment.get("doctor_id"), appointment.get("doctor")) if isinstance(v, dict)),
        None,
    )
    code = record_code(embedded) or appointment.get("doctor_code")
    return {"_id": owner_id, "code": code}


def pick_candidate(
    candidates: Sequence[Dict[str, Any]],
    ref: EntityReference,
    name_of: Callable[[Dict[str, Any]], str] = display_name,
) -> Optional[Dict[str, Any]]:
    """Choose one candidate: exact code, then exact normalized name, then first."""
    if not candidates:
        return None
    if ref.code:
        wanted = normalize_code(ref.code)
        for c in candidates:
            if normalize_code(record_code(c)) == wanted:
                return c
    if ref.name:
        wanted = normalize_name(ref.name)
        for c in candidates:
            if normalize_name(name_of(c)) == wanted:
                return c
    return candidates[0]


def matches_reference(
    item: Dict[str, Any],
    ref: EntityReference,
    name_of: Callable[[Dict[str, Any]], str] = display_name,
    owner_of: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
) -> bool:
    """Whether ``item`` is the referenced entity, or is owned by it when ``owner_of`` is given."""
    subject = owner_of(item) if owner_of else item
    if ref.id and record_id(subject) == ref.id:
        return True
    if ref.code and normalize_code(record_code(subject)) == normalize_code(ref.code):
        return True
    if ref.name and loose_equals(name_of(item), ref.name):
        return True
    return False


def filter_candidates(
    ref: EntityReference,
    items: Iterable[Dict[str, Any]],
    name_of: Callable[[Dict[str, Any]], str] = display_name,
    owner_of: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
) -> List[Dict[str, Any]]:
    """Client-side filter over a full collection."""
    return [item for item in items if matches_reference(item, ref, name_of, owner_of)]


def identity_hints(record: Optional[Dict[str, Any]]) -> Set[str]:
    """Every string that may identify ``record`` as the owner of another item."""
    return {h for h in (record_id(record), record_code(record)) if h}


def owned_by(item: Dict[str, Any], hints: Set[str], fields: Sequence[str] = OWNER_FIELDS) -> bool:
    """Whether any owner field of ``item`` (raw id or embedded object) is in ``hints``."""
    if not hints:
        return False
    for key in fields:
        value = item.get(key)
        owner = coerce_ref_id(value)
        if owner and owner in hints:
            return True
        if isinstance(value, dict):
            code = record_code(value)
            if code and code in hints:
                return True
    return False
