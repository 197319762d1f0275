"""
Emergency Gateway — Notifies emergency services about an SOS incident.

One call per service. A call either succeeds (returns a reference) or
raises DispatchError; the SOS handler decides what to do about it.
"""
from __future__ import annotations

import abc
import random
import uuid
import structlog
from typing import Any, Optional

import httpx
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import EmergencyConfig
from job_queue.errors import DispatchError
from models.schemas import Location, SosPriority, UserContact

logger = structlog.get_logger()


class DispatchRequest(BaseModel):
    incident_id: str
    location: Location
    description: str
    priority: SosPriority
    contact: UserContact


class EmergencyGateway(abc.ABC):

    @abc.abstractmethod
    async def notify(self, service: str, request: DispatchRequest) -> str:
        """Notify ``service``. Returns the service's reference for the dispatch."""
        ...

    async def close(self):
        pass


class RESTEmergencyGateway(EmergencyGateway):
    """POSTs the dispatch request to a per-service endpoint."""

    def __init__(self, config: EmergencyConfig):
        self.config = config
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            headers = {}
            if self.config.api_key:
                headers["X-API-Key"] = self.config.api_key
            self.client = httpx.AsyncClient(headers=headers, timeout=self.config.timeout)
        return self.client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        response = await client.post(url, json=body)
        response.raise_for_status()
        return response.json() if response.content else {}

    async def notify(self, service: str, request: DispatchRequest) -> str:
        url = self.config.endpoints.get(service)
        if not url:
            raise DispatchError(service, request.incident_id, "no endpoint configured")
        try:
            data = await self._post(url, request.model_dump(mode="json"))
        except httpx.HTTPError as e:
            raise DispatchError(service, request.incident_id, str(e)) from e
        return str(data.get("reference") or data.get("id") or "")

    async def close(self):
        if self.client:
            await self.client.aclose()


class MockEmergencyGateway(EmergencyGateway):
    """
    Simulated gateway for development and testing.

    ``failure_rate`` is the probability of a call failing; ``fail_services``
    always fail. Successful calls are recorded in ``calls``.
    """

    def __init__(self, failure_rate: float = 0.0, rng: random.Random = None,
                 fail_services: set[str] = None):
        self.failure_rate = failure_rate
        self.fail_services: set[str] = set(fail_services or ())
        self._rng = rng or random.Random()
        self.calls: list[tuple[str, str]] = []       # (service, incident_id)

    async def notify(self, service: str, request: DispatchRequest) -> str:
        if service in self.fail_services or self._rng.random() < self.failure_rate:
            raise DispatchError(service, request.incident_id)
        self.calls.append((service, request.incident_id))
        reference = f"{service[:3].upper()}-{uuid.uuid4().hex[:8]}"
        logger.info("emergency_service_simulated", service=service,
                    incident_id=request.incident_id, reference=reference)
        return reference


def create_emergency_gateway(config: EmergencyConfig) -> EmergencyGateway:
    if config.type == "rest":
        return RESTEmergencyGateway(config)
    return MockEmergencyGateway(failure_rate=config.failure_rate)
