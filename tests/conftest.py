"""
Pytest configuration and shared fixtures.
"""

import os

# Keep test runs from writing daily log files.
os.environ.setdefault("CLINIC_LOG_FILE", "0")

import pytest
from typing import Any, Dict, List

from clinicresolve.aggregator import MultiSourceAggregator
from clinicresolve.cache import MemoryHintCache
from clinicresolve.logger import StructuredLogger
from clinicresolve.resolver import FallbackResolver


class FakeResponse:
    """Just enough of requests.Response for ClinicApi."""

    def __init__(self, status_code: int = 200, payload: Any = None, text: str = "",
                 content_type: str = "application/json; charset=utf-8"):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.headers = {"Content-Type": content_type} if content_type else {}

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    """Routes full URLs to canned responses or exceptions and records calls."""

    def __init__(self, routes: Dict[str, Any] = None):
        self.routes = dict(routes or {})
        self.calls: List[Dict[str, Any]] = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        outcome = self.routes.get(url)
        if outcome is None:
            return FakeResponse(404, {"message": "Not found"})
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    @property
    def urls(self) -> List[str]:
        return [c["url"] for c in self.calls]


@pytest.fixture
def quiet_logger() -> StructuredLogger:
    """Logger with no handlers so metrics can be asserted per test."""
    return StructuredLogger(name="clinicresolve_test", enable_file=False, enable_console=False)


@pytest.fixture
def hint_cache() -> MemoryHintCache:
    return MemoryHintCache()


@pytest.fixture
def resolver(hint_cache, quiet_logger) -> FallbackResolver:
    return FallbackResolver(cache=hint_cache, logger=quiet_logger)


@pytest.fixture
def aggregator(quiet_logger):
    with MultiSourceAggregator(logger=quiet_logger) as a:
        yield a


@pytest.fixture
def patient_record() -> Dict[str, Any]:
    """Patient as returned by /patients/id/<id>."""
    return {
        "_id": "64f1a2b3c4d5e6f708091011",
        "patient_ID": "PAT-0042",
        "name": "Amina Yusuf",
        "gender": "female",
    }


@pytest.fixture
def doctor_list() -> List[Dict[str, Any]]:
    """Full /doctors/ listing."""
    return [
        {"_id": "d-1", "code": "DOC-1", "name": "Dr. Sarah Okafor"},
        {"_id": "d-2", "code": "DOC-2", "name": "Dr. Robert Chen"},
        {"_id": "d-3", "code": "DOC-3", "name": "Robert Chenwick"},
    ]

