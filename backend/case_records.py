"""
Case Record Source — Client for the external court case database.

The source of record is authoritative for a case's title, court, judge,
status and next hearing date. Case sync compares what it returns with
what we have stored.
"""
from __future__ import annotations

import abc
import structlog
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential

from config.settings import CaseApiConfig
from models.schemas import CaseSnapshot, CaseStatus

logger = structlog.get_logger()


class CaseRecordSource(abc.ABC):
    """Abstract base for external case record lookups."""

    @abc.abstractmethod
    async def fetch_case(self, case_number: str) -> Optional[CaseSnapshot]:
        """Latest snapshot for a case number, or None when the source has no such case."""
        ...

    async def close(self):
        pass

    def normalize_snapshot(self, raw: dict[str, Any]) -> CaseSnapshot:
        """
        Convert a raw API record into a CaseSnapshot.
        Accepts both camelCase and snake_case field names.
        """
        status = str(raw.get("status") or CaseStatus.ONGOING.value).upper()
        if status not in CaseStatus.__members__:
            status = CaseStatus.ONGOING.value
        return CaseSnapshot(
            case_number=str(raw.get("caseNumber") or raw.get("case_number")),
            title=raw.get("title", ""),
            court=raw.get("court", ""),
            judge=raw.get("judge"),
            status=CaseStatus(status),
            next_hearing=raw.get("nextHearing") or raw.get("next_hearing"),
        )


class RESTCaseRecordSource(CaseRecordSource):
    """
    REST client for the case database.
    Endpoint paths come from settings (``get_case`` with a ``{case_number}`` placeholder).
    """

    def __init__(self, config: CaseApiConfig):
        self.config = config
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            headers = {}
            if self.config.auth_type == "bearer":
                token = self.config.auth_credentials.get("token", "")
                headers["Authorization"] = f"Bearer {token}"
            elif self.config.auth_type == "api_key":
                key_name = self.config.auth_credentials.get("header_name", "X-API-Key")
                headers[key_name] = self.config.auth_credentials.get("api_key", "")

            self.client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers=headers,
                timeout=self.config.timeout,
            )
        return self.client

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, max=10), reraise=True)
    async def _request(self, method: str, endpoint: str, **kwargs) -> Optional[dict[str, Any]]:
        client = await self._get_client()
        url = self.config.endpoints.get(endpoint, endpoint)
        for k, v in kwargs.pop("path_params", {}).items():
            url = url.replace(f"{{{k}}}", str(v))

        response = await client.request(method, url, **kwargs)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    async def fetch_case(self, case_number: str) -> Optional[CaseSnapshot]:
        raw = await self._request("GET", "get_case", path_params={"case_number": case_number})
        if not raw:
            logger.warning("case_record_missing", case_number=case_number)
            return None
        if "data" in raw and isinstance(raw["data"], dict):
            raw = raw["data"]
        return self.normalize_snapshot({"case_number": case_number, **raw})

    async def close(self):
        if self.client:
            await self.client.aclose()


class MockCaseRecordSource(CaseRecordSource):
    """
    Mock source for development and testing.

    Returns registered snapshots. Unregistered case numbers get a generated
    ONGOING record with a hearing 30 days out, unless ``generate_missing``
    is off, in which case they are reported missing.
    """

    def __init__(self, snapshots: dict[str, CaseSnapshot] = None, generate_missing: bool = True):
        self._snapshots: dict[str, CaseSnapshot] = dict(snapshots or {})
        self.generate_missing = generate_missing
        self.calls: list[str] = []

    def set_snapshot(self, snapshot: CaseSnapshot):
        self._snapshots[snapshot.case_number] = snapshot

    async def fetch_case(self, case_number: str) -> Optional[CaseSnapshot]:
        self.calls.append(case_number)
        if case_number in self._snapshots:
            return self._snapshots[case_number].model_copy()
        if not self.generate_missing:
            return None
        hearing = datetime.now(timezone.utc).replace(hour=10, minute=0, second=0, microsecond=0)
        return CaseSnapshot(
            case_number=case_number,
            title=f"Legal Case {case_number}",
            court="District Court",
            status=CaseStatus.ONGOING,
            next_hearing=hearing + timedelta(days=30),
        )


def create_case_record_source(config: CaseApiConfig) -> CaseRecordSource:
    if config.type == "rest" and config.base_url:
        return RESTCaseRecordSource(config)
    return MockCaseRecordSource()
