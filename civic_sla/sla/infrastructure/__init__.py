"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA tracking:
- Models: SQLAlchemy ORM models
- Repositories: Issue store with compare-and-set writes
- External: Policy file watcher, escalation webhook, sweep scheduler
"""

from civic_sla.sla.infrastructure.models import IssueModel, EscalationEventModel
from civic_sla.sla.infrastructure.repositories import SQLAlchemyIssueRepository
from civic_sla.sla.infrastructure.external import (
    SLAConfigManager,
    StaticConfigProvider,
    WebhookEscalationNotifier,
    SLAScheduler,
)

__all__ = [
    "IssueModel",
    "EscalationEventModel",
    "SQLAlchemyIssueRepository",
    "SLAConfigManager",
    "StaticConfigProvider",
    "WebhookEscalationNotifier",
    "SLAScheduler",
]
