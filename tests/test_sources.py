"""
Tests for the endpoint catalogue: normalizer defaults and source wiring.
"""

from datetime import datetime

import pytest

from clinicresolve.aggregator import MultiSourceAggregator
from clinicresolve.dates import INVALID_DATE
from clinicresolve.http import ClinicApi
from clinicresolve.models import DOCTOR, EXACT_ID, FULL_SCAN_FILTER, LOOSE_NAME, EntityReference
from clinicresolve.sources import (
    doctor_appointment_strategies,
    entity_strategies,
    lab_catalog,
    lab_test_matches_hints,
    normalize_appointment,
    normalize_lab_history,
    normalize_lab_test,
    normalize_prescription,
    normalize_test_result,
    patient_sources,
)
from clinicresolve.errors import MalformedResponse

from conftest import FakeResponse, FakeSession

BASE = "http://localhost:5000"


class TestNormalizers:
    """Each source documents the defaults it applies."""

    def test_lab_test_defaults(self):
        record = normalize_lab_test({"_id": "lt-1"})
        assert record.key == "lab-test:lt-1"
        assert record.status == "Pending"
        assert record.priority == "-"
        assert record.actor_name == "-"
        assert record.timestamp is INVALID_DATE
        assert record.attachment_url is None

    def test_lab_test_fields(self):
        record = normalize_lab_test({
            "_id": "lt-1",
            "testType": "CBC",
            "priorityLevel": "Urgent",
            "doctor": {"_id": "d-2", "name": "Dr. Robert Chen"},
            "createdAt": "2024-03-05T10:15:00.000Z",
            "reportUrl": "/files/lt-1.pdf",
        })
        assert record.type == "CBC"
        assert record.priority == "Urgent"
        assert record.actor_name == "Dr. Robert Chen"
        assert record.attachment_url == "/files/lt-1.pdf"
        assert record.timestamp != INVALID_DATE

    def test_lab_history_defaults(self):
        record = normalize_lab_history({"_id": "h-1", "updatedAt": "2024-02-01", "performedBy": "Tech A"})
        assert record.status == "Completed"
        assert record.priority == "-"
        assert record.actor_name == "Tech A"
        assert record.timestamp == datetime(2024, 2, 1)

    def test_test_result_attachment(self):
        record = normalize_test_result({
            "_id": "r-1",
            "files": [{"name": "scan"}, {"url": "/uploads/r-1.png"}],
            "fileUrl": "/legacy.png",
            "resultDate": "10/02/2024",
        })
        assert record.status == "Completed"
        assert record.attachment_url == "/uploads/r-1.png"
        assert record.timestamp == datetime(2024, 2, 10)

    def test_test_result_month_first(self):
        record = normalize_test_result({"_id": "r-1", "resultDate": "10/02/2024"}, day_first=False)
        assert record.timestamp == datetime(2024, 10, 2)

    def test_prescription(self):
        record = normalize_prescription({
            "_id": "rx-1",
            "Diagnosis": "Hypertension",
            "doctor_Name": "Dr. Sarah Okafor",
            "Date": "2024-01-15",
        })
        assert record.type == "Hypertension"
        assert record.status == "Issued"
        assert record.actor_name == "Dr. Sarah Okafor"
        assert record.timestamp == datetime(2024, 1, 15)

    def test_appointment_defaults(self):
        record = normalize_appointment({"_id": "a-1", "appointment_date": "2024-03-05"})
        assert record.status == "Scheduled"
        assert record.actor_name == "Unknown"
        assert record.type == "Consultation"

    def test_missing_id_is_malformed(self):
        with pytest.raises(MalformedResponse):
            normalize_prescription({"Diagnosis": "x"})


class TestCatalogFilter:
    """Heuristic owner matching for the bulk lab catalog."""

    HINTS = {"_id": None, "code": "PAT-0042", "name": "Amina Yusuf"}

    @pytest.mark.parametrize("item", [
        {"_id": "1", "patient": {"_id": "p-1", "patient_ID": "PAT-0042"}},
        {"_id": "2", "patient_code": "pat-0042"},
        {"_id": "3", "patientCode": "CLINIC-PAT-0042"},
        {"_id": "4", "patient": {"_id": "p-1", "name": "amina yusuf"}},
        {"_id": "5", "patientName": "Dr. Amina Yusuf"},
    ])
    def test_matches(self, item):
        assert lab_test_matches_hints(item, self.HINTS)

    @pytest.mark.parametrize("item", [
        {"_id": "6"},
        {"_id": "7", "patient": {"_id": "p-9", "name": "Someone Else"}},
        {"_id": "8", "patientCode": "PAT-0043"},
    ])
    def test_rejects(self, item):
        assert not lab_test_matches_hints(item, self.HINTS)

    def test_owner_id(self):
        assert lab_test_matches_hints({"_id": "1", "patientId": "p-1"}, {"_id": "p-1"})


class TestStrategies:
    """Endpoint shapes used by the resolution strategies."""

    def test_entity_strategy_order(self, quiet_logger):
        api = ClinicApi([BASE], session=FakeSession(), logger=quiet_logger)
        kinds = [s.match_kind for s in entity_strategies(api, DOCTOR)]
        assert kinds == [EXACT_ID, "exact-code", LOOSE_NAME, FULL_SCAN_FILTER]

    def test_doctor_appointments_by_name(self, resolver, quiet_logger):
        """Appointments by doctor name go through the loose endpoint with the date window."""
        url = f"{BASE}/appointments/by-doctor-name/Robert%20Chen"
        session = FakeSession({url: FakeResponse(200, {"data": [
            {"_id": "a-1", "doctor_name": "Dr. Robert Chen", "appointment_date": "2024-03-05"},
        ]})})
        api = ClinicApi([BASE], session=session, logger=quiet_logger)

        outcome = resolver.resolve(
            EntityReference(kind=DOCTOR, name="Robert Chen"),
            doctor_appointment_strategies(api, timeout_ms=1000),
        )

        assert outcome.attempted == [LOOSE_NAME]
        assert [a["_id"] for a in outcome.candidates] == ["a-1"]
        assert session.calls[0]["params"] == {"start": "2020-01-01", "end": "2099-12-31", "loose": 1}

    def test_appointments_by_id_are_not_cached(self, resolver, hint_cache, quiet_logger):
        """Appointment ids must never be remembered as doctor ids."""
        session = FakeSession({
            f"{BASE}/appointments/by-doctor/d-2": FakeResponse(200, [{"_id": "a-1"}]),
        })
        api = ClinicApi([BASE], session=session, logger=quiet_logger)

        outcome = resolver.resolve(
            EntityReference(kind=DOCTOR, id="d-2", name="Robert Chen"),
            doctor_appointment_strategies(api, timeout_ms=1000),
        )

        assert outcome.strategy_used == EXACT_ID
        assert hint_cache.items() == []

    def test_full_appointment_scan_filters_by_doctor(self, resolver, quiet_logger):
        session = FakeSession({
            f"{BASE}/appointments/": FakeResponse(200, [
                {"_id": "a-1", "doctor": {"_id": "d-2", "name": "Dr. Robert Chen"}},
                {"_id": "a-2", "doctor_name": "Sarah Okafor"},
            ]),
        })
        api = ClinicApi([BASE], session=session, logger=quiet_logger)

        outcome = resolver.resolve(
            EntityReference(kind=DOCTOR, name="Robert Chen"),
            doctor_appointment_strategies(api, timeout_ms=1000),
        )

        assert outcome.attempted == [LOOSE_NAME, FULL_SCAN_FILTER]
        assert [a["_id"] for a in outcome.candidates] == ["a-1"]

    def test_full_appointment_scan_by_doctor_id(self, resolver, quiet_logger):
        """With the by-doctor endpoint down, the owner key picks the doctor's appointments."""
        session = FakeSession({
            f"{BASE}/appointments/by-doctor/d-2": FakeResponse(503, text="<title>Unavailable</title>", content_type="text/html"),
            f"{BASE}/appointments/": FakeResponse(200, [
                {"_id": "a-1", "doctor_id": "d-2"},
                {"_id": "a-2", "doctor": {"_id": "d-2", "name": "Dr. Robert Chen"}},
                {"_id": "a-3", "doctor_id": {"_id": "d-2"}},
                {"_id": "d-2", "doctor_id": "d-9"},
                {"_id": "a-4", "doctor_id": "d-1"},
            ]),
        })
        api = ClinicApi([BASE], session=session, logger=quiet_logger)

        outcome = resolver.resolve(
            EntityReference(kind=DOCTOR, id="d-2"),
            doctor_appointment_strategies(api, timeout_ms=1000),
        )

        assert outcome.attempted == [EXACT_ID, FULL_SCAN_FILTER]
        assert [a["_id"] for a in outcome.candidates] == ["a-1", "a-2", "a-3"]

    def test_appointment_id_is_not_a_doctor_id(self, resolver, quiet_logger):
        """An appointment whose own _id equals the doctor id is not the doctor's."""
        session = FakeSession({
            f"{BASE}/appointments/": FakeResponse(200, [{"_id": "x-7", "doctor_id": "d-9"}]),
        })
        api = ClinicApi([BASE], session=session, logger=quiet_logger)

        outcome = resolver.resolve(
            EntityReference(kind=DOCTOR, id="x-7"),
            doctor_appointment_strategies(api, timeout_ms=1000),
        )

        assert not outcome.found
        assert outcome.candidates == []


class TestPatientSources:
    """All four patient sources against a fake backend."""

    def test_aggregate_patient_records(self, quiet_logger, patient_record):
        pid = patient_record["_id"]
        session = FakeSession({
            f"{BASE}/api/labtests/patient/{pid}": FakeResponse(200, {"labTests": [{"_id": "lt-1"}]}),
            f"{BASE}/api/labtasks/patient/{pid}/history": FakeResponse(500, {"error": "boom"}),
            f"{BASE}/test-results/patient-code/PAT-0042": FakeResponse(200, {"results": [{"_id": "r-1"}]}),
            f"{BASE}/prescriptions/by-patient-code/PAT-0042": FakeResponse(200, {"items": [{"_id": "rx-1"}]}),
        })
        api = ClinicApi([BASE], session=session, logger=quiet_logger)

        with MultiSourceAggregator(logger=quiet_logger) as aggregator:
            view = aggregator.aggregate(patient_record, patient_sources(api, timeout_ms=1000))

        assert view.keys() == ["lab-test:lt-1", "test-result:r-1", "prescription:rx-1"]
        assert view.failed_sources == ["lab-history"]
        assert view.partial

    def test_missing_code_fails_only_code_sources(self, quiet_logger):
        session = FakeSession({
            f"{BASE}/api/labtests/patient/p-1": FakeResponse(200, []),
            f"{BASE}/api/labtasks/patient/p-1/history": FakeResponse(200, {"history": []}),
        })
        api = ClinicApi([BASE], session=session, logger=quiet_logger)

        with MultiSourceAggregator(logger=quiet_logger) as aggregator:
            view = aggregator.aggregate({"_id": "p-1"}, patient_sources(api, timeout_ms=1000))

        assert view.succeeded_sources == ["lab-test", "lab-history"]
        assert view.failed_sources == ["test-result", "prescription"]

    def test_lab_catalog_filters(self, quiet_logger):
        session = FakeSession({
            f"{BASE}/api/labtests/": FakeResponse(200, {"data": [
                {"_id": "lt-1", "patient": {"_id": "p-1", "name": "Amina Yusuf"}},
                {"_id": "lt-2", "patient": {"_id": "p-2", "name": "Someone Else"}},
            ]}),
        })
        api = ClinicApi([BASE], session=session, logger=quiet_logger)

        with MultiSourceAggregator(logger=quiet_logger) as aggregator:
            view = aggregator.aggregate({"_id": None, "code": None, "name": "Amina"}, [lab_catalog(api, 1000)])

        assert view.keys() == ["lab-test:lt-1"]
