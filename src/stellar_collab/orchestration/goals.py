"""
Collaboration goals.

A ``CollaborationGoal`` is the caller-owned input of
``facilitate_collaboration``. All models here are frozen so a goal cannot
change underneath a plan that was generated from it.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stellar_collab.core.clock import ensure_utc


class Priority(str, Enum):
    """Goal priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConstraintType(str, Enum):
    """Kinds of constraint a goal can carry."""
    RESOURCE = "resource"
    TIME = "time"
    SKILL = "skill"
    REGULATORY = "regulatory"
    TECHNICAL = "technical"


class Constraint(BaseModel):
    """A restriction the collaboration has to work within."""
    model_config = ConfigDict(frozen=True)

    constraint_type: ConstraintType
    description: str = ""
    flexibility: float = Field(0.5, ge=0.0, le=1.0)
    impact: float = Field(0.5, ge=0.0, le=1.0)
    mitigation_strategies: List[str] = Field(default_factory=list)
    monitoring_indicators: List[str] = Field(default_factory=list)


class Milestone(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    target_date: Optional[datetime] = None
    deliverables: List[str] = Field(default_factory=list)

    @field_validator("target_date")
    @classmethod
    def validate_target_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class Timeline(BaseModel):
    """Start and end of the collaboration plus its ordered milestones."""
    model_config = ConfigDict(frozen=True)

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    milestones: List[Milestone] = Field(default_factory=list)
    critical_path: List[str] = Field(default_factory=list)
    buffer_minutes: float = Field(0.0, ge=0.0)

    @field_validator("start_date", "end_date")
    @classmethod
    def validate_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @model_validator(mode="after")
    def validate_order(self) -> "Timeline":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("Timeline end_date must not precede start_date")
        return self


class MeasurableCriteria(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric: str
    target_value: float
    unit: str = ""


class ValueProposition(BaseModel):
    """Score vector describing what an outcome is worth."""
    model_config = ConfigDict(frozen=True)

    business_value: float = Field(0.0, ge=0.0, le=1.0)
    technical_value: float = Field(0.0, ge=0.0, le=1.0)
    learning_value: float = Field(0.0, ge=0.0, le=1.0)
    innovation_value: float = Field(0.0, ge=0.0, le=1.0)
    strategic_value: float = Field(0.0, ge=0.0, le=1.0)


class Outcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome_id: str
    description: str = ""
    measurable_criteria: List[MeasurableCriteria] = Field(default_factory=list)
    value_proposition: ValueProposition = Field(default_factory=ValueProposition)


class CollaborationGoal(BaseModel):
    """The shared goal a collaboration is planned around."""
    model_config = ConfigDict(frozen=True)

    id: str
    description: str
    objective: str
    success_criteria: List[str] = Field(default_factory=list)
    required_skills: List[str] = Field(default_factory=list)
    target_outcomes: List[Outcome] = Field(default_factory=list)
    timeline: Timeline = Field(default_factory=Timeline)
    constraints: List[Constraint] = Field(default_factory=list)
    priority: Priority = Priority.MEDIUM
