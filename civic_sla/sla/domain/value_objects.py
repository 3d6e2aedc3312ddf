"""
SLA Value Objects
==================

Immutable value objects and stateless domain services for SLA tracking.

- SLAPolicyConfig: the duration table and escalation thresholds
- SLAPolicy: priority -> deadline
- SLACalculator: progress, escalation level, time remaining, formatting

These are the only places that know the SLA constants; every other module
receives them through an injected SLAPolicyConfig.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from civic_sla.config import Priority, EscalationLevel, VALID_PRIORITIES


DEFAULT_SLA_HOURS: Dict[str, float] = {
    Priority.URGENT: 24,
    Priority.HIGH: 72,
    Priority.MEDIUM: 168,
    Priority.LOW: 336,
}

DEFAULT_ESCALATION_THRESHOLDS: Dict[str, float] = {
    "warning": 50,
    "urgent": 80,
    "breached": 100,
}

BREACHED_LABEL = "SLA Breached"


class SLAPolicyConfig(BaseModel):
    """
    SLA policy loaded from YAML.

    Deadline = created_at + sla_hours[priority]. Escalation thresholds are
    percentages of the SLA window already elapsed.

    This is a value object - immutable and defined by its attributes.
    """
    model_config = ConfigDict(frozen=True)

    sla_hours: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_SLA_HOURS),
        description="SLA duration in hours by priority"
    )
    escalation_thresholds: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_ESCALATION_THRESHOLDS),
        description="Elapsed-percentage thresholds for warning/urgent/breached"
    )
    recheck_interval_minutes: int = Field(
        default=60,
        ge=1,
        description="Minimum minutes between two sweep evaluations of one issue"
    )
    default_priority: str = Field(
        default=Priority.MEDIUM,
        description="Priority whose duration applies to unknown priorities"
    )

    @field_validator("sla_hours")
    @classmethod
    def validate_sla_hours(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Fill in missing priorities and reject non-positive durations."""
        hours = {key.lower(): value for key, value in v.items()}
        for priority in VALID_PRIORITIES:
            hours.setdefault(priority, DEFAULT_SLA_HOURS[priority])

        for priority, value in hours.items():
            if value <= 0:
                raise ValueError(f"SLA duration for '{priority}' must be positive")
        return hours

    @field_validator("escalation_thresholds")
    @classmethod
    def validate_thresholds(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Fill in missing thresholds and require warning < urgent < breached."""
        thresholds = {**DEFAULT_ESCALATION_THRESHOLDS, **v}
        if not (0 < thresholds["warning"] < thresholds["urgent"] < thresholds["breached"]):
            raise ValueError(
                "escalation thresholds must satisfy 0 < warning < urgent < breached"
            )
        return thresholds

    @model_validator(mode="after")
    def validate_default_priority(self) -> "SLAPolicyConfig":
        if self.default_priority not in VALID_PRIORITIES:
            raise ValueError(f"default_priority '{self.default_priority}' is not one of {VALID_PRIORITIES}")
        return self

    @property
    def recheck_interval(self) -> timedelta:
        return timedelta(minutes=self.recheck_interval_minutes)

    def is_known_priority(self, priority: Optional[str]) -> bool:
        return bool(priority) and priority.lower() in VALID_PRIORITIES


class SLAPolicy:
    """
    Maps a priority to its SLA duration and deadline.

    The single source of truth for deadline computation.
    """

    def __init__(self, config: Optional[SLAPolicyConfig] = None):
        self.config = config or SLAPolicyConfig()

    def duration_for(self, priority: Optional[str]) -> timedelta:
        """
        Get the SLA duration for a priority.

        Unknown or missing priorities use the default priority's duration.
        """
        hours = None
        if priority:
            hours = self.config.sla_hours.get(priority.lower())
        if hours is None:
            hours = self.config.sla_hours[self.config.default_priority]
        return timedelta(hours=hours)

    def compute_deadline(self, priority: Optional[str], created_at: datetime) -> datetime:
        """
        Calculate the SLA deadline for an issue.

        Args:
            priority: Issue priority
            created_at: When the issue was reported

        Returns:
            created_at + duration_for(priority)
        """
        return created_at + self.duration_for(priority)


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless apart from the injected thresholds; every method is safe to
    call repeatedly and never raises on missing timestamps.
    """

    def __init__(self, config: Optional[SLAPolicyConfig] = None):
        self.config = config or SLAPolicyConfig()

    @staticmethod
    def progress(
        created_at: Optional[datetime],
        sla_deadline: Optional[datetime],
        now: datetime
    ) -> float:
        """
        Percentage of the SLA window already elapsed, clamped to [0, 100].

        Returns 0 when either timestamp is missing or the window is empty
        (an issue without an SLA is treated as on time).
        """
        if created_at is None or sla_deadline is None:
            return 0.0

        total = (sla_deadline - created_at).total_seconds()
        if total <= 0:
            return 0.0

        elapsed = (now - created_at).total_seconds()
        return max(0.0, min(100.0, elapsed / total * 100))

    def escalation_level_for(self, progress: float) -> int:
        """
        Classify progress into an escalation level.

        Boundaries belong to the higher level: 50 -> 1, 80 -> 2, 100 -> 3.
        """
        thresholds = self.config.escalation_thresholds
        if progress >= thresholds["breached"]:
            return EscalationLevel.BREACHED
        if progress >= thresholds["urgent"]:
            return EscalationLevel.URGENT
        if progress >= thresholds["warning"]:
            return EscalationLevel.WARNING
        return EscalationLevel.NORMAL

    @staticmethod
    def time_remaining(
        sla_deadline: Optional[datetime],
        now: datetime
    ) -> Optional[timedelta]:
        """Time until the deadline, never negative; None without a deadline."""
        if sla_deadline is None:
            return None
        remaining = sla_deadline - now
        return remaining if remaining > timedelta(0) else timedelta(0)

    @staticmethod
    def format_duration(duration: Optional[timedelta]) -> str:
        """
        Human readable duration, largest unit first.

        Examples:
            timedelta(hours=25)    -> "1d 1h 0m"
            timedelta(minutes=125) -> "2h 5m"
            timedelta(minutes=50)  -> "50m"
            timedelta(0)           -> "SLA Breached"
        """
        if duration is None or duration <= timedelta(0):
            return BREACHED_LABEL

        total_minutes = int(duration.total_seconds() // 60)
        days, remainder = divmod(total_minutes, 24 * 60)
        hours, minutes = divmod(remainder, 60)

        if days > 0:
            return f"{days}d {hours}h {minutes}m"
        if hours > 0:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"
