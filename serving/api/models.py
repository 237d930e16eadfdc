"""Request/response and read models for the risk detection API."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

AlertType = Literal["high_risk", "stage_stagnation", "low_engagement", "price_objection"]
ActionType = Literal[
    "priority_call", "discount_offer", "alternative_proposal", "escalation", "follow_up_email"
]
ActionOutcome = Literal["pending", "successful", "failed"]


@dataclass(frozen=True)
class UserSession:
    """Authenticated caller, passed explicitly into every service call."""
    user_id: Optional[str]
    access_token: Optional[str] = None


def to_string_list(value: Any) -> List[str]:
    """Coerce a JSON column into a list of strings, dropping anything else."""
    if isinstance(value, list):
        return [item for item in value if isinstance(item, str)]
    return []


class RiskResult(BaseModel):
    """Output row of the ``calculate_client_risk_score`` procedure."""
    risk_score: int = Field(..., ge=0, le=100)
    risk_factors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    last_contact_days: int = 0
    interaction_frequency: float = 0.0
    engagement_score: int = Field(0, ge=0, le=100)

    @field_validator("risk_factors", "recommendations", mode="before")
    @classmethod
    def coerce_string_list(cls, v: Any) -> List[str]:
        return to_string_list(v)


class ContactSummary(BaseModel):
    id: str
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    sales_stage: Optional[str] = None


class AlertContact(BaseModel):
    id: str
    full_name: str


class RiskMetricView(BaseModel):
    """A ``client_risk_metrics`` row with the owning contact's projection."""
    id: Optional[str] = None
    user_id: str
    contact_id: str
    risk_score: int
    last_contact_days: int = 0
    interaction_frequency: Optional[float] = None
    engagement_score: Optional[int] = None
    risk_factors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    last_calculated: Optional[str] = None
    contacts: Optional[ContactSummary] = None

    @field_validator("risk_factors", "recommendations", mode="before")
    @classmethod
    def coerce_string_list(cls, v: Any) -> List[str]:
        return to_string_list(v)


class RiskAlertView(BaseModel):
    """A ``risk_alerts`` row with the contact's name."""
    id: str
    user_id: str
    contact_id: str
    alert_type: AlertType
    alert_message: str
    risk_score: int
    is_read: bool = False
    is_resolved: bool = False
    resolved_at: Optional[str] = None
    created_at: Optional[str] = None
    contacts: Optional[AlertContact] = None

    @field_validator("is_read", "is_resolved", mode="before")
    @classmethod
    def null_is_false(cls, v: Any) -> bool:
        return bool(v)


class RecoveryActionRequest(BaseModel):
    contact_id: str = Field(..., min_length=1)
    action_type: ActionType
    description: str = Field(..., min_length=1, max_length=500)
    outcome: Optional[ActionOutcome] = None


class Notification(BaseModel):
    """Toast shown to the agent after a terminal success/failure."""
    title: str
    description: str
    variant: Literal["default", "destructive"] = "default"


class BulkRunSummary(BaseModel):
    completed: bool
    analyzed: int = 0
    alerts_created: int = 0


class BulkRunRequest(BaseModel):
    contact_ids: List[str] = Field(..., max_length=1000)
    contact_names: Dict[str, str] = Field(default_factory=dict)


class BulkRunResponse(BaseModel):
    summary: BulkRunSummary
    notifications: List[Notification]


class ActionResponse(BaseModel):
    ok: bool
    notifications: List[Notification] = Field(default_factory=list)


class EngagementRow(BaseModel):
    contact_id: str
    contact_name: str
    sales_stage: Optional[str] = None
    engagement_score: int
    engagement_level: str
    interaction_frequency: float
    last_contact_days: int
    risk_score: int


class EngagementResponse(BaseModel):
    total: int
    average: int
    high: int
    low: int
    high_pct: int
    contacts: List[EngagementRow]


class FunnelStage(BaseModel):
    stage: str
    name: str
    color: str
    order: int
    count: int
    percentage: float


class FunnelResponse(BaseModel):
    total: int
    stages: List[FunnelStage]
