"""
SLA Infrastructure Repositories
=================================

Concrete implementation of the issue store using async SQLAlchemy.

Writes are conditional on the row's ``version`` column so two concurrent
evaluators of one issue can never both append history or double-count a
breach: the loser's UPDATE matches no row and nothing is inserted.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import select, update, and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from civic_sla.config import SLA_ACTIVE_STATUSES
from civic_sla.core import ConcurrentUpdateException, RepositoryException, ResourceNotFoundException
from civic_sla.sla.application import IIssueRepository, IssueCreateDTO
from civic_sla.sla.domain import EscalationEvent, IssueChanges, IssueSnapshot
from civic_sla.sla.infrastructure.models import IssueModel, EscalationEventModel


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to aware UTC; some backends hand back naive datetimes."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_id(issue_id: str) -> Optional[UUID]:
    try:
        return UUID(str(issue_id))
    except ValueError:
        return None


def _to_snapshot(model: IssueModel) -> IssueSnapshot:
    return IssueSnapshot(
        id=str(model.id),
        title=model.title,
        category=model.category,
        city=model.city,
        assigned_to=model.assigned_to,
        priority=model.priority,
        status=model.status,
        created_at=_as_utc(model.created_at),
        updated_at=_as_utc(model.updated_at),
        sla_deadline=_as_utc(model.sla_deadline),
        sla_breached=model.sla_breached,
        escalation_level=model.escalation_level,
        escalation_history=tuple(
            EscalationEvent(
                level=event.level,
                escalated_at=_as_utc(event.escalated_at),
                escalated_by=event.escalated_by,
                reason=event.reason,
                action=event.action,
            )
            for event in model.escalation_events
        ),
        last_escalation_check=_as_utc(model.last_escalation_check),
        version=model.version,
    )


class SQLAlchemyIssueRepository(IIssueRepository):
    """
    SQLAlchemy implementation of the issue store.

    Returns immutable IssueSnapshot objects; ORM models never leave this
    class.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    def _scoped(self, stmt, scope: Optional[str]):
        if scope:
            stmt = stmt.where(IssueModel.assigned_to == scope)
        return stmt

    async def _fetch(self, stmt) -> List[IssueSnapshot]:
        try:
            result = await self._session.execute(stmt.execution_options(populate_existing=True))
        except SQLAlchemyError as e:
            raise RepositoryException(f"Issue query failed: {e}") from e
        return [_to_snapshot(model) for model in result.scalars().all()]

    async def create(self, issue_dto: IssueCreateDTO, sla_deadline: datetime, now: datetime) -> IssueSnapshot:
        """Create new issue."""
        model = IssueModel(
            id=uuid4(),
            title=issue_dto.title,
            category=issue_dto.category,
            city=issue_dto.city,
            assigned_to=issue_dto.assigned_to,
            priority=issue_dto.priority,
            status=issue_dto.status,
            created_at=_as_utc(issue_dto.created_at or now),
            updated_at=_as_utc(now),
            sla_deadline=_as_utc(sla_deadline),
            sla_breached=False,
            escalation_level=0,
            last_escalation_check=_as_utc(now),
            version=1,
            escalation_events=[],
        )

        try:
            self._session.add(model)
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to create issue: {e}") from e

        return _to_snapshot(model)

    async def get_by_id(self, issue_id: str) -> Optional[IssueSnapshot]:
        """Get issue by ID."""
        issue_uuid = _parse_id(issue_id)
        if issue_uuid is None:
            return None

        issues = await self._fetch(select(IssueModel).where(IssueModel.id == issue_uuid))
        return issues[0] if issues else None

    async def list_active(self, scope: Optional[str] = None) -> List[IssueSnapshot]:
        """List reported/in-progress issues."""
        stmt = select(IssueModel).where(IssueModel.status.in_(SLA_ACTIVE_STATUSES))
        stmt = self._scoped(stmt, scope).order_by(IssueModel.created_at.asc())
        return await self._fetch(stmt)

    async def list_due_for_check(
        self,
        checked_before: datetime,
        scope: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[IssueSnapshot]:
        """List active issues whose last evaluation is at or before ``checked_before``."""
        stmt = select(IssueModel).where(
            and_(
                IssueModel.status.in_(SLA_ACTIVE_STATUSES),
                or_(
                    IssueModel.last_escalation_check.is_(None),
                    IssueModel.last_escalation_check <= _as_utc(checked_before),
                )
            )
        )
        # Never-checked first, then stalest; portable across NULL orderings
        stmt = self._scoped(stmt, scope).order_by(
            IssueModel.last_escalation_check.is_not(None),
            IssueModel.last_escalation_check.asc(),
            IssueModel.created_at.asc(),
        )
        if limit:
            stmt = stmt.limit(limit)
        return await self._fetch(stmt)

    async def list_overdue(self, now: datetime, scope: Optional[str] = None) -> List[IssueSnapshot]:
        """List active issues whose deadline has passed, earliest deadline first."""
        stmt = select(IssueModel).where(
            and_(
                IssueModel.status.in_(SLA_ACTIVE_STATUSES),
                IssueModel.sla_deadline.is_not(None),
                IssueModel.sla_deadline < _as_utc(now),
            )
        )
        stmt = self._scoped(stmt, scope).order_by(IssueModel.sla_deadline.asc())
        return await self._fetch(stmt)

    async def _conditional_update(self, issue_id: str, expected_version: int, values: dict) -> UUID:
        issue_uuid = _parse_id(issue_id)
        if issue_uuid is None:
            raise ResourceNotFoundException("Issue", issue_id)

        stmt = (
            update(IssueModel)
            .where(IssueModel.id == issue_uuid, IssueModel.version == expected_version)
            .values(version=IssueModel.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)

        if result.rowcount == 0:
            exists = await self._session.scalar(select(IssueModel.id).where(IssueModel.id == issue_uuid))
            if exists is None:
                raise ResourceNotFoundException("Issue", issue_id)
            raise ConcurrentUpdateException(issue_id, expected_version)

        return issue_uuid

    async def apply_changes(
        self,
        issue_id: str,
        expected_version: int,
        changes: IssueChanges
    ) -> IssueSnapshot:
        """Apply SLA field changes and append history if the version matches."""
        values = {
            "last_escalation_check": _as_utc(changes.last_escalation_check),
            "updated_at": _as_utc(changes.last_escalation_check),
        }
        if changes.escalation_level is not None:
            values["escalation_level"] = changes.escalation_level
        if changes.sla_breached is not None:
            values["sla_breached"] = changes.sla_breached
        if changes.sla_deadline is not None:
            values["sla_deadline"] = _as_utc(changes.sla_deadline)
        if changes.priority is not None:
            values["priority"] = changes.priority

        try:
            issue_uuid = await self._conditional_update(issue_id, expected_version, values)

            for event in changes.new_events:
                self._session.add(EscalationEventModel(
                    issue_id=issue_uuid,
                    level=event.level,
                    escalated_at=_as_utc(event.escalated_at),
                    escalated_by=event.escalated_by,
                    reason=event.reason,
                    action=event.action,
                ))
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to update issue {issue_id}: {e}") from e

        updated = await self.get_by_id(issue_id)
        if updated is None:
            raise ResourceNotFoundException("Issue", issue_id)
        return updated

    async def update_status(
        self,
        issue_id: str,
        expected_version: int,
        status: str,
        now: datetime
    ) -> IssueSnapshot:
        """Change status if the version matches."""
        try:
            await self._conditional_update(
                issue_id,
                expected_version,
                {"status": status, "updated_at": _as_utc(now)}
            )
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to update issue {issue_id}: {e}") from e

        updated = await self.get_by_id(issue_id)
        if updated is None:
            raise ResourceNotFoundException("Issue", issue_id)
        return updated

    async def commit(self) -> None:
        try:
            await self._session.commit()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Commit failed: {e}") from e

    async def rollback(self) -> None:
        await self._session.rollback()
