"""JSON transport over the clinic REST backend with mirror fallback."""

import time
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests
from bs4 import BeautifulSoup

from .errors import BackendError, FetchError, MalformedResponse, NetworkError, NotFoundError, ProbeTimeout
from .logger import StructuredLogger, get_logger


def segment(value: Any) -> str:
    """Quote a value for use as a single URL path segment."""
    return quote(str(value), safe="")


def _html_summary(text: str) -> str:
    soup = BeautifulSoup(text or "", "html.parser")
    title = soup.find("title")
    if title and title.get_text(strip=True):
        return title.get_text(strip=True)
    h1 = soup.find("h1")
    if h1 and h1.get_text(strip=True):
        return h1.get_text(strip=True)
    return soup.get_text(" ", strip=True)[:120]


class ClinicApi:
    """Thin GET-only JSON client.

    ``base_urls`` are mirrors of the same backend (for example localhost and
    127.0.0.1); each request tries them in order within one time budget.
    """

    def __init__(
        self,
        base_urls: Sequence[str],
        session: Optional[requests.Session] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        if not base_urls:
            raise ValueError("At least one backend base URL is required")
        self.base_urls = [u.rstrip("/") for u in base_urls]
        self.session = session or requests.Session()
        self.logger = logger or get_logger()

    def get_json(self, path: str, channel: str, timeout: float, params: Optional[Dict[str, Any]] = None) -> Any:
        """Fetch ``path`` and return decoded JSON.

        Args:
            path: Path starting with "/", already quoted
            channel: Strategy or source name for logging and metrics
            timeout: Total seconds available across all mirrors
            params: Optional query parameters

        Raises:
            NotFoundError: every mirror answered 404
            FetchError: any other failure (the last one seen)
        """
        deadline = time.monotonic() + timeout
        errors: List[FetchError] = []
        self.logger.record_probe_attempt(channel)

        for base in self.base_urls:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                errors.append(ProbeTimeout(f"{channel} request timed out before trying {base}", url=base + path))
                break
            url = base + path
            try:
                data = self._get_once(url, channel, remaining, params)
            except FetchError as e:
                errors.append(e)
                self.logger.debug(f"{channel} mirror failed", url=url, error=str(e), error_type=e.error_type)
                continue
            self.logger.record_probe_success(channel)
            return data

        if errors and all(isinstance(e, NotFoundError) for e in errors):
            final: FetchError = errors[0]
        else:
            final = [e for e in errors if not isinstance(e, NotFoundError)][-1]
        self.logger.record_probe_failure(channel, final.error_type)
        raise final

    def _get_once(self, url: str, channel: str, timeout: float, params: Optional[Dict[str, Any]]) -> Any:
        try:
            resp = self.session.get(url, params=params, timeout=timeout)
        except requests.exceptions.Timeout:
            self.logger.warning(f"{channel} request timed out", url=url)
            raise ProbeTimeout(f"{channel} request timed out: {url}", url=url)
        except requests.exceptions.ConnectionError as e:
            self.logger.warning(f"{channel} backend unreachable", url=url, error=str(e))
            raise NetworkError(f"{channel} backend unreachable: {url}", url=url)
        except requests.exceptions.RequestException as e:
            self.logger.error(f"{channel} request error", url=url, error=str(e))
            raise NetworkError(f"{channel} request error: {e}", url=url)

        status = resp.status_code
        if status == 404:
            raise NotFoundError(f"{channel} not found (404): {url}", url=url)

        content_type = resp.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            summary = _html_summary(resp.text) if "html" in content_type else content_type or "no content type"
            self.logger.error(f"{channel} returned non-JSON response", url=url, status=status, summary=summary)
            raise MalformedResponse(f"{channel} returned non-JSON response ({status}): {summary}", url=url)

        if status >= 400:
            self.logger.error(f"{channel} request failed", url=url, status=status)
            raise BackendError(f"{channel} request failed ({status}): {url}", url=url, status=status)

        try:
            return resp.json()
        except ValueError as e:
            raise MalformedResponse(f"{channel} returned undecodable JSON: {e}", url=url)
