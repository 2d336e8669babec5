"""HTTP adapter exposing a remote verification service as an agent.

The remote service receives a JSON POST per request:

    {"content": ..., "contentType": ..., "metadata": {...},
     "priority": ..., "timestamp": <epoch ms>}

and answers with at least ``verdict`` (string) and ``confidence`` (number),
optionally ``reasoning``, ``evidence`` (list) and ``modelVersion``.
Availability is checked with ``GET {endpoint}/health``.
"""

import time
from typing import Any, Dict, Iterable, List, Optional

import httpx

from veda_orchestration.agents.base_agent import SpecializedAgent
from veda_orchestration.config.routing import AGENT_PROFILES
from veda_orchestration.config.settings import Settings, settings as default_settings
from veda_orchestration.errors import AgentInvocationError
from veda_orchestration.schemas.request import ContentKind, VerificationRequest
from veda_orchestration.schemas.response import AgentResponse, Evidence, EvidenceType, Verdict

VERDICT_MAP: Dict[str, Verdict] = {
    "true": Verdict.VERIFIED_TRUE,
    "verified_true": Verdict.VERIFIED_TRUE,
    "false": Verdict.VERIFIED_FALSE,
    "verified_false": Verdict.VERIFIED_FALSE,
    "misleading": Verdict.MISLEADING,
    "unverified": Verdict.UNVERIFIED,
    "insufficient_evidence": Verdict.INSUFFICIENT_EVIDENCE,
    "error": Verdict.ERROR,
}


def map_verdict(raw: str) -> Verdict:
    """Map a remote verdict string, unknown values become unverified."""
    return VERDICT_MAP.get(str(raw).lower(), Verdict.UNVERIFIED)


def map_evidence(items: Iterable[Dict[str, Any]]) -> List[Evidence]:
    """
    Convert remote evidence items, defaulting unknown types and reliability.

    Raises:
        ValueError: If the list or one of its items is malformed
    """
    if not isinstance(items, list):
        raise ValueError(f"evidence must be a list, got {type(items).__name__}")

    evidence = []
    for item in items:
        if not isinstance(item, dict):
            raise ValueError(f"evidence item must be an object, got {type(item).__name__}")
        try:
            evidence_type = EvidenceType(item.get("type"))
        except ValueError:
            evidence_type = EvidenceType.EXPERT_OPINION

        reliability = item.get("reliability")
        if not isinstance(reliability, (int, float)) or not 0.0 <= reliability <= 1.0:
            reliability = 0.5

        evidence.append(
            Evidence(
                type=evidence_type,
                title=item.get("title") or "Evidence",
                description=item.get("description") or "",
                url=item.get("url"),
                reliability=reliability,
                timestamp=item.get("timestamp"),
            )
        )
    return evidence


class HttpAgent(SpecializedAgent):
    """
    Agent backed by a remote HTTP verification endpoint.

    Supported content kinds and max_processing_time default to the
    known profile of agent_id. Each POST is bounded by max_processing_time;
    the workflow manager applies its own per-attempt timeout on top.

    Attributes:
        endpoint: Analysis endpoint URL
        api_key: Bearer token sent with every call
        health_timeout: Seconds allowed for the /health check
    """

    def __init__(
        self,
        agent_id: str,
        endpoint: str,
        api_key: Optional[str] = None,
        name: Optional[str] = None,
        supported_content_kinds: Optional[Iterable[ContentKind]] = None,
        max_processing_time: Optional[int] = None,
        health_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        profile = AGENT_PROFILES.get(agent_id, {})
        super().__init__(
            agent_id=agent_id,
            name=name or profile.get("name", agent_id),
            supported_content_kinds=supported_content_kinds or profile.get("supported_content_kinds"),
            max_processing_time=max_processing_time or profile.get("max_processing_time", 15_000),
        )
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.health_timeout = health_timeout
        self._client = client
        self._owns_client = client is None

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    @staticmethod
    def build_payload(request: VerificationRequest) -> Dict[str, Any]:
        return {
            "content": request.content,
            "contentType": request.content_kind.value,
            "metadata": request.metadata.model_dump(mode="json", exclude_none=True),
            "priority": request.priority.value,
            "timestamp": int(request.created_at.timestamp() * 1000),
        }

    async def _call_remote(self, request: VerificationRequest) -> Dict[str, Any]:
        response = await self._get_client().post(
            self.endpoint,
            json=self.build_payload(request),
            headers=self.headers,
            timeout=self.max_processing_time / 1000,
        )
        if response.status_code >= 400:
            raise AgentInvocationError(
                self.agent_id,
                f"Agent API call failed: {response.status_code} {response.reason_phrase}",
            )

        result = response.json()
        if (
            not isinstance(result, dict)
            or not result.get("verdict")
            or isinstance(result.get("confidence"), bool)
            or not isinstance(result.get("confidence"), (int, float))
        ):
            raise AgentInvocationError(self.agent_id, f"Invalid response format from {self.name}")
        return result

    async def analyze(self, request: VerificationRequest) -> AgentResponse:
        start = time.perf_counter()
        try:
            result = await self._call_remote(request)
            # ValidationError is a ValueError
            evidence = map_evidence(result.get("evidence") or [])
        except (httpx.HTTPError, ValueError, TypeError) as e:
            raise AgentInvocationError(self.agent_id, f"{self.name} failed: {e}") from e

        return AgentResponse(
            agent_id=self.agent_id,
            agent_name=self.name,
            verdict=map_verdict(result["verdict"]),
            confidence=min(1.0, max(0.0, float(result["confidence"]))),
            reasoning=result.get("reasoning") or "",
            evidence=evidence,
            processing_time=(time.perf_counter() - start) * 1000,
            metadata={
                "content_kind": request.content_kind.value,
                "language": request.metadata.language or "unknown",
                "model_version": result.get("modelVersion", "v1.0"),
            },
        )

    async def is_available(self) -> bool:
        try:
            response = await self._get_client().get(
                f"{self.endpoint}/health",
                headers=self.headers,
                timeout=self.health_timeout,
            )
        except httpx.HTTPError as e:
            self.logger.warning(f"{self.name} health check failed: {e}")
            return False
        return response.is_success

    async def shutdown(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()


def build_http_agents(
    config: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> List[HttpAgent]:
    """Create one HttpAgent per configured endpoint in settings."""
    config = config or default_settings
    return [
        HttpAgent(
            agent_id=agent_id,
            endpoint=endpoint,
            api_key=config.agent_api_keys.get(agent_id),
            health_timeout=config.http_timeout,
            client=client,
        )
        for agent_id, endpoint in config.agent_endpoints.items()
    ]
