"""
Capability Advisor integration.

The advisor is an external, non-deterministic service (usually backed by a
language model) that returns loosely-typed hint payloads. Everything in
this module exists to keep those payloads at the boundary: responses are
converted into typed, frozen hint models and every failure mode collapses
into ``None`` for the caller, which then falls back to deterministic
behaviour.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from stellar_collab.core.exceptions import AdvisorUnavailableError
from stellar_collab.core.logging import get_logger, get_performance_logger

logger = get_logger(__name__)


class AdviceKind(str, Enum):
    """Request kinds the engine sends to the advisor."""
    COLLABORATION_STRUCTURE = "collaboration_structure"
    CONFLICT_ACTIONS = "conflict_actions"
    NEGOTIATION_ALTERNATIVES = "negotiation_alternatives"


@runtime_checkable
class Advisor(Protocol):
    """Anything that can answer a structured advice request."""

    async def advise(self, request_kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...


def _string_list(value: Any) -> List[str]:
    """Coerce an advisor value into a list of non-empty strings."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _optional_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class StructureHint(BaseModel):
    """Structural recommendation for a collaboration plan."""
    model_config = ConfigDict(frozen=True)

    topology: Optional[str] = None
    protocols: List[str] = Field(default_factory=list)
    coordination_mechanisms: List[str] = Field(default_factory=list)
    success_metrics: List[str] = Field(default_factory=list)
    rationale: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StructureHint":
        topology = _optional_string(payload.get("collaboration_structure") or payload.get("topology"))
        return cls(
            topology=topology.lower() if topology else None,
            protocols=_string_list(payload.get("communication_protocols")),
            coordination_mechanisms=_string_list(payload.get("coordination_mechanisms")),
            success_metrics=_string_list(payload.get("success_metrics")),
            rationale=_optional_string(payload.get("rationale")),
        )


class ConflictActionHint(BaseModel):
    """Human-readable elaboration for generated resolution actions."""
    model_config = ConfigDict(frozen=True)

    action_notes: List[str] = Field(default_factory=list)
    follow_up: List[str] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ConflictActionHint":
        notes = payload.get("implementation_steps") or payload.get("action_notes")
        return cls(
            action_notes=_string_list(notes),
            follow_up=_string_list(payload.get("follow_up") or payload.get("compromise_proposals")),
        )


class AlternativeSolution(BaseModel):
    """An alternative allocation suggested after a failed negotiation."""
    model_config = ConfigDict(frozen=True)

    description: str
    terms: Dict[str, Any] = Field(default_factory=dict)


class AlternativesHint(BaseModel):
    """Alternatives to put in front of the escalation authority."""
    model_config = ConfigDict(frozen=True)

    alternatives: List[AlternativeSolution] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AlternativesHint":
        raw = payload.get("alternatives") or payload.get("alternative_solutions") or []
        if not isinstance(raw, list):
            raw = []

        alternatives = []
        for item in raw:
            if isinstance(item, str) and item.strip():
                alternatives.append(AlternativeSolution(description=item.strip()))
            elif isinstance(item, dict):
                description = _optional_string(item.get("description"))
                terms = item.get("terms")
                if description is None:
                    continue
                alternatives.append(AlternativeSolution(
                    description=description,
                    terms=terms if isinstance(terms, dict) else {},
                ))
        return cls(alternatives=alternatives)


class AdvisorClient:
    """
    Retrying, time-bounded front for an optional ``Advisor``.

    Failures are retried ``max_retries`` times with exponential backoff.
    When the advisor stays unavailable the typed helpers return ``None``.
    """

    def __init__(
        self,
        advisor: Optional[Advisor] = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 1,
        backoff_seconds: float = 0.5,
    ):
        self.advisor = advisor
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._perf = get_performance_logger(__name__)

    @property
    def available(self) -> bool:
        return self.advisor is not None

    async def request(
        self,
        kind: AdviceKind,
        payload: Dict[str, Any],
        deadline: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Send one advice request.

        Args:
            kind: Request kind
            payload: JSON-compatible request body
            deadline: Optional event-loop time after which no attempt starts

        Raises:
            AdvisorUnavailableError: When every attempt failed or timed out
        """
        if self.advisor is None:
            raise AdvisorUnavailableError(kind.value, "no advisor configured")

        loop = asyncio.get_running_loop()
        start_time = time.time()
        attempts = 0

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=max(self.backoff_seconds * 8, 1.0)),
            retry=retry_if_exception_type(Exception),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    attempt_timeout = self.timeout_seconds
                    if deadline is not None:
                        remaining = deadline - loop.time()
                        if remaining <= 0:
                            raise AdvisorUnavailableError(kind.value, "deadline exceeded")
                        attempt_timeout = min(attempt_timeout, remaining)

                    response = await asyncio.wait_for(
                        self.advisor.advise(kind.value, payload),
                        timeout=attempt_timeout,
                    )
                    if not isinstance(response, dict):
                        raise AdvisorUnavailableError(kind.value, "response is not an object")
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._perf.log_advisor_call(kind.value, duration_ms, attempts, success=False, error=str(e))
            if isinstance(e, AdvisorUnavailableError):
                raise
            raise AdvisorUnavailableError(kind.value, str(e) or type(e).__name__) from e

        duration_ms = (time.time() - start_time) * 1000
        self._perf.log_advisor_call(kind.value, duration_ms, attempts, success=True)
        return response

    async def _hint(self, kind: AdviceKind, payload: Dict[str, Any], deadline: Optional[float]) -> Optional[Dict[str, Any]]:
        if self.advisor is None:
            return None
        try:
            return await self.request(kind, payload, deadline=deadline)
        except AdvisorUnavailableError as e:
            logger.warning("Advisor unavailable, using fallback", request_kind=kind.value, reason=e.reason)
            return None

    async def structure_hint(self, payload: Dict[str, Any], deadline: Optional[float] = None) -> Optional[StructureHint]:
        response = await self._hint(AdviceKind.COLLABORATION_STRUCTURE, payload, deadline)
        return StructureHint.from_payload(response) if response is not None else None

    async def conflict_hint(self, payload: Dict[str, Any], deadline: Optional[float] = None) -> Optional[ConflictActionHint]:
        response = await self._hint(AdviceKind.CONFLICT_ACTIONS, payload, deadline)
        return ConflictActionHint.from_payload(response) if response is not None else None

    async def alternatives_hint(self, payload: Dict[str, Any], deadline: Optional[float] = None) -> Optional[AlternativesHint]:
        response = await self._hint(AdviceKind.NEGOTIATION_ALTERNATIVES, payload, deadline)
        return AlternativesHint.from_payload(response) if response is not None else None


class HttpAdvisor:
    """
    Advisor backed by an HTTP endpoint.

    Posts ``{"request_kind": ..., "payload": ...}`` as JSON and expects a
    JSON object back.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.url = url
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def advise(self, request_kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._client.post(
            self.url,
            json={"request_kind": request_kind, "payload": payload},
        )
        response.raise_for_status()

        data = response.json()
        if not isinstance(data, dict):
            raise AdvisorUnavailableError(request_kind, "response is not an object")
        return data

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpAdvisor":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
