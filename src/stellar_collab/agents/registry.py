"""
Agent profiles and declared capabilities.

The engine never talks to agents to learn what they can do; callers
register a profile per agent up front. Agents the registry has not seen
get a default profile so plans can still be produced for them.
"""

from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from stellar_collab.core.logging import get_logger


class AgentCapability(BaseModel):
    """A declared agent capability."""
    model_config = ConfigDict(frozen=True)

    name: str
    proficiency: float = Field(0.7, ge=0.0, le=1.0)
    domain_expertise: List[str] = Field(default_factory=list)
    tools_available: List[str] = Field(default_factory=list)


class AgentAvailability(BaseModel):
    """How much of an agent's time a collaboration can count on."""
    model_config = ConfigDict(frozen=True)

    available_hours_per_day: float = Field(24.0, ge=0.0, le=24.0)
    capacity_utilization: float = Field(0.0, ge=0.0, le=1.0)
    workload_flexibility: float = Field(0.5, ge=0.0, le=1.0)


class AgentProfile(BaseModel):
    """Declared type, capabilities and availability of one agent."""
    model_config = ConfigDict(frozen=True)

    agent_id: str
    agent_type: str = "generic"
    capabilities: List[AgentCapability] = Field(default_factory=list)
    availability: AgentAvailability = Field(default_factory=AgentAvailability)

    @property
    def capability_names(self) -> List[str]:
        return [cap.name for cap in self.capabilities]

    def proficiency(self, skill: str) -> float:
        """Proficiency for a skill, 0.0 when the agent does not declare it."""
        for cap in self.capabilities:
            if cap.name == skill:
                return cap.proficiency
        return 0.0


def default_agent_type(agent_id: str) -> str:
    """Infer an agent type from ids shaped like ``atlas-001``."""
    prefix = agent_id.split("-", 1)[0].strip()
    return prefix or "generic"


class AgentRegistry:
    """In-process registry of agent profiles."""

    def __init__(self, profiles: Optional[Iterable[AgentProfile]] = None):
        self._profiles: Dict[str, AgentProfile] = {}
        self._logger = get_logger(__name__)

        for profile in profiles or []:
            self.register(profile)

    def register(self, profile: AgentProfile) -> None:
        """Register or replace an agent profile."""
        if profile.agent_id in self._profiles:
            self._logger.debug("Replacing agent profile", agent_id=profile.agent_id)
        self._profiles[profile.agent_id] = profile

    def unregister(self, agent_id: str) -> None:
        self._profiles.pop(agent_id, None)

    def get(self, agent_id: str) -> AgentProfile:
        """Return the registered profile, or a default one for unknown agents."""
        profile = self._profiles.get(agent_id)
        if profile is None:
            profile = AgentProfile(agent_id=agent_id, agent_type=default_agent_type(agent_id))
        return profile

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    @property
    def agent_ids(self) -> List[str]:
        return sorted(self._profiles)
