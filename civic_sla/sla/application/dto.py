"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Dict, List, Optional, Literal
from datetime import datetime, timezone


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["urgent", "high", "medium", "low"]
IssueStatusStr = Literal["reported", "in_progress", "resolved", "closed", "reopened"]
CategoryStr = Literal[
    "roads", "water", "electricity", "sanitation",
    "public_safety", "public_transport", "pollution", "others"
]


# ========== Request DTOs ==========

class IssueCreateDTO(BaseModel):
    """DTO for registering an issue with the SLA store."""
    title: str = Field(..., min_length=1, max_length=100, description="Issue title")
    category: CategoryStr = Field(..., description="Issue category")
    priority: PriorityStr = Field(default="medium", description="Issue priority")
    status: IssueStatusStr = Field(default="reported", description="Issue status")
    city: Optional[str] = Field(None, description="City the issue was reported in")
    assigned_to: Optional[str] = Field(None, description="Department the issue is routed to")
    created_at: Optional[datetime] = Field(
        None,
        description="Report timestamp; defaults to now"
    )

    @field_validator("created_at")
    @classmethod
    def ensure_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Treat naive timestamps as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class PriorityUpdateRequest(BaseModel):
    """Request body for changing an issue's priority."""
    priority: str = Field(..., min_length=1, description="New priority")
    actor: Optional[str] = Field(None, description="User making the change")


class ManualEscalationRequest(BaseModel):
    """Request body for a manual escalation check."""
    actor: str = Field(..., min_length=1, description="User escalating the issue")
    reason: Optional[str] = Field(None, description="Reason recorded in escalation history")
    action: Optional[str] = Field(None, description="Action recorded in escalation history")


class StatusUpdateRequest(BaseModel):
    """Request body for a status change."""
    status: IssueStatusStr


# ========== Response DTOs ==========

class EscalationEventResponse(BaseModel):
    """One escalation history entry."""
    model_config = ConfigDict(from_attributes=True)

    level: int
    escalated_at: datetime
    escalated_by: Optional[str] = Field(None, description="Null for automatic escalations")
    reason: Optional[str] = None
    action: Optional[str] = None


class IssueResponse(BaseModel):
    """Stored SLA fields of an issue."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    category: Optional[str] = None
    city: Optional[str] = None
    assigned_to: Optional[str] = None
    priority: str
    status: str
    created_at: Optional[datetime] = None
    sla_deadline: Optional[datetime] = None
    sla_breached: bool
    escalation_level: int
    last_escalation_check: Optional[datetime] = None
    escalation_history: List[EscalationEventResponse] = Field(default_factory=list)


class SLAProgressResponse(BaseModel):
    """Live SLA progress of one issue."""
    issue_id: str
    priority: str
    sla_deadline: Optional[datetime] = None
    progress: float = Field(..., ge=0, le=100, description="Percentage of SLA window elapsed")
    escalation_level: int = Field(..., ge=0, le=3)
    time_remaining_seconds: Optional[float] = Field(None, description="Null when the issue has no deadline")
    time_remaining_formatted: str
    sla_breached: bool
    escalation_history: List[EscalationEventResponse] = Field(default_factory=list)


class SLAStatisticsResponse(BaseModel):
    """SLA statistics over active issues."""
    total: int
    on_time: int
    at_risk: int
    breached: int
    avg_progress: float
    escalation_levels: Dict[int, int]


class OverdueIssueResponse(BaseModel):
    """An overdue issue with live SLA annotations."""
    issue: IssueResponse
    sla_progress: float
    time_overdue_seconds: float
    escalation_level: int


class SweepDetailResponse(BaseModel):
    """Escalation transition recorded by a sweep."""
    model_config = ConfigDict(from_attributes=True)

    issue_id: str
    title: str
    old_level: int
    new_level: int
    progress: float
    time_remaining: str


class SweepFailureResponse(BaseModel):
    """Issue the sweep failed to write back."""
    model_config = ConfigDict(from_attributes=True)

    issue_id: str
    error: str
    retryable: bool


class SweepResultResponse(BaseModel):
    """Aggregate outcome of an escalation sweep."""
    model_config = ConfigDict(from_attributes=True)

    total_checked: int
    escalated: int
    breached: int
    warnings: int
    failed: int = 0
    truncated: bool = Field(False, description="True when the sweep stopped on its time budget")
    details: List[SweepDetailResponse] = Field(default_factory=list)
    failures: List[SweepFailureResponse] = Field(default_factory=list)


class PriorityUpdateResponse(BaseModel):
    """Result of a priority change."""
    issue_id: str
    priority: str
    sla_deadline: datetime
    changed: bool = Field(..., description="False when the priority was already set")


class ManualEscalationResponse(BaseModel):
    """Result of a manual escalation check."""
    issue_id: str
    escalated: bool
    old_level: int
    new_level: int
    progress: float
    time_remaining_formatted: str
