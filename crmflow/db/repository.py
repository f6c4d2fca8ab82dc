"""Data access layer.

This is the ONLY layer that talks to the database. Workflow rows are
converted to the pydantic types in crmflow.types; CRM rows are returned as
JSON-safe dicts because they flow straight into execution contexts.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from crmflow.db.models import (
    EventModel, WorkflowTemplateModel, WorkflowStepModel, WorkflowRunModel, WorkflowRunLogModel,
    IntegrationModel, TeamConfigModel, ContactModel, CompanyModel, ContactNoteModel, TaskModel,
    NotificationModel,
)
from crmflow.types import (
    Condition, Event, WorkflowDefinition, WorkflowRun, WorkflowRunLog, WorkflowStep, parse_timestamp,
)


def _json_safe(value: Any) -> Any:
    """Round-trip through JSON so datetimes and models land as plain values."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def _row_to_dict(record) -> dict:
    data = {}
    for column in record.__table__.columns:
        value = getattr(record, column.key)
        if isinstance(value, datetime):
            value = parse_timestamp(value).isoformat()
        data[column.key] = value
    return data


def _coerce_columns(model, updates: dict) -> dict:
    """Parse ISO strings for DateTime columns."""
    coerced = {}
    for key, value in updates.items():
        column = model.__table__.columns.get(key)
        if column is not None and isinstance(column.type, DateTime) and isinstance(value, str):
            value = parse_timestamp(value)
        coerced[key] = value
    return coerced


_RUN_UPDATABLE = {"status", "completed_at", "error_message", "final_context", "context"}
_CONTACT_READONLY = {"id", "created_at"}


class Repository:
    """All database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Events ──
    @staticmethod
    def _model_to_event(m: EventModel) -> Event:
        return Event(
            id=m.id,
            type=m.event_type,
            entity_type=m.entity_type,
            entity_id=m.entity_id,
            payload=m.payload or {},
            team_id=m.team_id,
            source=m.source,
            processed=bool(m.processed),
            processed_at=parse_timestamp(m.processed_at),
            created_at=parse_timestamp(m.created_at),
        )

    async def create_event(self, event: Event) -> Event:
        """Persist a new (unprocessed) event."""
        record = EventModel(
            id=event.id,
            team_id=event.team_id,
            event_type=event.type,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            payload=_json_safe(event.payload) or {},
            source=event.source,
            processed=event.processed,
            created_at=event.created_at,
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_event(record)

    async def get_event(self, event_id: str) -> Optional[Event]:
        result = await self.session.execute(select(EventModel).where(EventModel.id == event_id))
        record = result.scalar_one_or_none()
        return self._model_to_event(record) if record else None

    async def mark_event_processed(self, event_id: str) -> None:
        result = await self.session.execute(select(EventModel).where(EventModel.id == event_id))
        record = result.scalar_one_or_none()
        if record is None:
            return
        record.processed = True
        record.processed_at = datetime.now(timezone.utc)
        await self.session.commit()

    async def list_unprocessed_events(self, limit: int = 10) -> list[Event]:
        """Oldest unprocessed events first."""
        result = await self.session.execute(
            select(EventModel)
            .where(EventModel.processed.is_(False))
            .order_by(EventModel.created_at.asc())
            .limit(limit)
        )
        return [self._model_to_event(m) for m in result.scalars().all()]

    async def list_entity_events(self, entity_id: str, limit: int = 10) -> list[dict]:
        """Most recent events about one record, newest first."""
        result = await self.session.execute(
            select(EventModel)
            .where(EventModel.entity_id == entity_id)
            .order_by(EventModel.created_at.desc())
            .limit(limit)
        )
        return [_row_to_dict(m) for m in result.scalars().all()]

    # ── Workflows ──
    @staticmethod
    def _model_to_step(m: WorkflowStepModel) -> WorkflowStep:
        return WorkflowStep(
            id=m.id,
            step_order=m.step_order,
            name=m.name,
            description=m.description or "",
            action_type=m.action_type,
            action_config=m.action_config or {},
            run_conditions=[Condition(**c) for c in (m.run_conditions or [])],
            output_variable=m.output_variable,
            on_error=m.on_error or "stop",
        )

    async def _load_definition(self, m: WorkflowTemplateModel) -> WorkflowDefinition:
        result = await self.session.execute(
            select(WorkflowStepModel)
            .where(
                WorkflowStepModel.workflow_template_id == m.id,
                WorkflowStepModel.is_enabled.is_(True),
            )
            .order_by(WorkflowStepModel.step_order.asc())
        )
        return WorkflowDefinition(
            id=m.id,
            slug=m.slug,
            name=m.name,
            description=m.description or "",
            category=m.category,
            trigger_event=m.trigger_event or "",
            is_active=bool(m.is_active),
            version=m.version or 1,
            steps=[self._model_to_step(s) for s in result.scalars().all()],
        )

    async def save_workflow(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Create or replace a workflow by slug. Steps are replaced wholesale."""
        result = await self.session.execute(
            select(WorkflowTemplateModel).where(WorkflowTemplateModel.slug == definition.slug)
        )
        record = result.scalar_one_or_none()
        if record is None:
            record = WorkflowTemplateModel(id=definition.id, slug=definition.slug)
            self.session.add(record)
        else:
            await self.session.execute(
                delete(WorkflowStepModel).where(WorkflowStepModel.workflow_template_id == record.id)
            )
            record.updated_at = datetime.now(timezone.utc)
        record.name = definition.name
        record.description = definition.description
        record.category = definition.category
        record.trigger_event = definition.trigger_event
        record.version = definition.version
        record.is_active = definition.is_active
        await self.session.flush()

        for step in definition.ordered_steps():
            self.session.add(WorkflowStepModel(
                workflow_template_id=record.id,
                name=step.name,
                description=step.description,
                step_order=step.step_order,
                action_type=step.action_type.value,
                action_config=step.action_config,
                run_conditions=[c.model_dump() for c in step.run_conditions],
                on_error=step.on_error.value,
                output_variable=step.output_variable,
            ))
        await self.session.commit()
        await self.session.refresh(record)
        return await self._load_definition(record)

    async def get_workflow_by_slug(self, slug: str) -> Optional[WorkflowDefinition]:
        result = await self.session.execute(
            select(WorkflowTemplateModel).where(WorkflowTemplateModel.slug == slug)
        )
        record = result.scalar_one_or_none()
        return await self._load_definition(record) if record else None

    async def list_workflows(self, active_only: bool = False) -> list[WorkflowDefinition]:
        query = select(WorkflowTemplateModel).order_by(WorkflowTemplateModel.slug.asc())
        if active_only:
            query = query.where(WorkflowTemplateModel.is_active.is_(True))
        result = await self.session.execute(query)
        return [await self._load_definition(m) for m in result.scalars().all()]

    async def list_active_workflows(self, trigger_event: str) -> list[WorkflowDefinition]:
        """Active workflows whose trigger matches exactly, oldest first."""
        result = await self.session.execute(
            select(WorkflowTemplateModel)
            .where(
                WorkflowTemplateModel.trigger_event == trigger_event,
                WorkflowTemplateModel.is_active.is_(True),
            )
            .order_by(WorkflowTemplateModel.created_at.asc(), WorkflowTemplateModel.slug.asc())
        )
        return [await self._load_definition(m) for m in result.scalars().all()]

    # ── Runs ──
    @staticmethod
    def _model_to_run(m: WorkflowRunModel) -> WorkflowRun:
        return WorkflowRun(
            id=m.id,
            workflow_template_id=m.workflow_template_id or "",
            team_id=m.team_id,
            triggered_by=m.triggered_by or "manual",
            trigger_event_id=m.trigger_event_id,
            entity_type=m.entity_type,
            entity_id=m.entity_id,
            status=m.status,
            started_at=parse_timestamp(m.started_at),
            completed_at=parse_timestamp(m.completed_at),
            context=m.context or {},
            final_context=m.final_context,
            error_message=m.error_message,
        )

    async def create_run(self, run: WorkflowRun) -> WorkflowRun:
        record = WorkflowRunModel(
            id=run.id,
            workflow_template_id=run.workflow_template_id,
            team_id=run.team_id,
            triggered_by=run.triggered_by,
            trigger_event_id=run.trigger_event_id,
            entity_type=run.entity_type,
            entity_id=run.entity_id,
            status=run.status.value,
            context=_json_safe(run.context) or {},
            started_at=run.started_at,
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_run(record)

    async def update_run(self, run_id: str, updates: dict) -> Optional[WorkflowRun]:
        """Apply status/completion fields to a run.

        Raises:
            ValueError: if *updates* names a field that may not change
        """
        unknown = set(updates) - _RUN_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update run field(s): {sorted(unknown)}")
        result = await self.session.execute(select(WorkflowRunModel).where(WorkflowRunModel.id == run_id))
        record = result.scalar_one_or_none()
        if record is None:
            return None
        for key, value in updates.items():
            if key in ("final_context", "context"):
                value = _json_safe(value)
            elif hasattr(value, "value"):
                value = value.value
            setattr(record, key, value)
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_run(record)

    async def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        result = await self.session.execute(select(WorkflowRunModel).where(WorkflowRunModel.id == run_id))
        record = result.scalar_one_or_none()
        return self._model_to_run(record) if record else None

    async def list_runs(self, status: Optional[str] = None, limit: int = 20) -> list[WorkflowRun]:
        """Most recent runs first, optionally filtered by status."""
        query = select(WorkflowRunModel).order_by(WorkflowRunModel.started_at.desc()).limit(limit)
        if status:
            query = query.where(WorkflowRunModel.status == status)
        result = await self.session.execute(query)
        return [self._model_to_run(m) for m in result.scalars().all()]

    async def add_run_log(self, log: WorkflowRunLog) -> WorkflowRunLog:
        record = WorkflowRunLogModel(
            id=log.id,
            workflow_run_id=log.workflow_run_id,
            workflow_step_id=log.workflow_step_id,
            step_order=log.step_order,
            step_name=log.step_name,
            status=log.status.value,
            input=_json_safe(log.input),
            output=_json_safe(log.output),
            error_message=log.error_message,
            tokens_used=log.tokens_used,
            executed_at=log.executed_at,
        )
        self.session.add(record)
        await self.session.commit()
        return log

    async def list_run_logs(self, run_id: str) -> list[WorkflowRunLog]:
        result = await self.session.execute(
            select(WorkflowRunLogModel)
            .where(WorkflowRunLogModel.workflow_run_id == run_id)
            .order_by(WorkflowRunLogModel.step_order.asc(), WorkflowRunLogModel.executed_at.asc())
        )
        return [
            WorkflowRunLog(
                id=m.id,
                workflow_run_id=m.workflow_run_id,
                workflow_step_id=m.workflow_step_id,
                step_order=m.step_order,
                step_name=m.step_name,
                status=m.status,
                input=m.input,
                output=m.output,
                error_message=m.error_message,
                tokens_used=m.tokens_used,
                executed_at=parse_timestamp(m.executed_at),
            )
            for m in result.scalars().all()
        ]

    # ── Integrations + team config ──
    async def get_integration_credentials(self, name: str, team_id: Optional[str] = None) -> Optional[dict]:
        """Credentials of an enabled integration; a team-specific row wins over a global one."""
        query = select(IntegrationModel).where(
            IntegrationModel.name == name,
            IntegrationModel.is_enabled.is_(True),
        )
        if team_id:
            query = query.where(or_(IntegrationModel.team_id == team_id, IntegrationModel.team_id.is_(None)))
        else:
            query = query.where(IntegrationModel.team_id.is_(None))
        result = await self.session.execute(query)
        records = sorted(result.scalars().all(), key=lambda m: m.team_id is None)
        for record in records:
            if record.credentials:
                return dict(record.credentials)
        return None

    async def save_integration(self, name: str, credentials: dict, team_id: Optional[str] = None,
                               is_enabled: bool = True) -> dict:
        result = await self.session.execute(
            select(IntegrationModel).where(IntegrationModel.name == name, IntegrationModel.team_id == team_id)
            if team_id else
            select(IntegrationModel).where(IntegrationModel.name == name, IntegrationModel.team_id.is_(None))
        )
        record = result.scalar_one_or_none()
        if record is None:
            record = IntegrationModel(name=name, team_id=team_id)
            self.session.add(record)
        record.credentials = credentials
        record.is_enabled = is_enabled
        record.updated_at = datetime.now(timezone.utc)
        await self.session.commit()
        await self.session.refresh(record)
        return _row_to_dict(record)

    async def get_team_config(self, key: str, team_id: Optional[str] = None) -> Optional[Any]:
        """Team-specific value, else the global (team_id NULL) value, else None."""
        query = select(TeamConfigModel).where(TeamConfigModel.config_key == key)
        if team_id:
            query = query.where(or_(TeamConfigModel.team_id == team_id, TeamConfigModel.team_id.is_(None)))
        else:
            query = query.where(TeamConfigModel.team_id.is_(None))
        result = await self.session.execute(query)
        records = sorted(result.scalars().all(), key=lambda m: m.team_id is None)
        return records[0].config_value if records else None

    async def set_team_config(self, key: str, value: Any, team_id: Optional[str] = None,
                              description: Optional[str] = None) -> None:
        query = select(TeamConfigModel).where(TeamConfigModel.config_key == key)
        query = query.where(TeamConfigModel.team_id == team_id) if team_id else \
            query.where(TeamConfigModel.team_id.is_(None))
        result = await self.session.execute(query)
        record = result.scalar_one_or_none()
        if record is None:
            record = TeamConfigModel(config_key=key, team_id=team_id, config_value=value)
            self.session.add(record)
        record.config_value = value
        if description is not None:
            record.description = description
        record.updated_at = datetime.now(timezone.utc)
        await self.session.commit()

    # ── Contacts ──
    async def _get_contact_record(self, contact_id: str) -> Optional[ContactModel]:
        result = await self.session.execute(select(ContactModel).where(ContactModel.id == contact_id))
        return result.scalar_one_or_none()

    async def get_contact(self, contact_id: str) -> Optional[dict]:
        """Contact row plus a ``company`` summary when linked."""
        record = await self._get_contact_record(contact_id)
        if record is None:
            return None
        contact = _row_to_dict(record)
        contact["company"] = None
        if record.company_id:
            company = await self.get_company(record.company_id)
            if company:
                contact["company"] = {k: company[k] for k in ("id", "name", "domain", "industry")}
        return contact

    async def create_contact(self, data: dict) -> dict:
        record = ContactModel(**_coerce_columns(ContactModel, data))
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return _row_to_dict(record)

    async def update_contact(self, contact_id: str, updates: dict) -> Optional[dict]:
        """Apply column updates to a contact.

        Raises:
            ValueError: if *updates* names a column the contacts table does not have
        """
        columns = set(ContactModel.__table__.columns.keys()) - _CONTACT_READONLY
        unknown = set(updates) - columns
        if unknown:
            raise ValueError(f"Unknown contact field(s): {sorted(unknown)}")
        record = await self._get_contact_record(contact_id)
        if record is None:
            return None
        for key, value in _coerce_columns(ContactModel, updates).items():
            setattr(record, key, value)
        record.updated_at = datetime.now(timezone.utc)
        await self.session.commit()
        await self.session.refresh(record)
        return _row_to_dict(record)

    async def delete_contact(self, contact_id: str) -> bool:
        """Delete a contact. Returns True if deleted, False if not found."""
        record = await self._get_contact_record(contact_id)
        if record is None:
            return False
        await self.session.delete(record)
        await self.session.commit()
        return True

    async def find_contacts(self, email: Optional[str] = None, query: Optional[str] = None,
                            limit: int = 10, exclude_id: Optional[str] = None) -> list[dict]:
        """Exact (case-insensitive) email match, else substring match on name/email."""
        stmt = select(ContactModel)
        if email:
            stmt = stmt.where(func.lower(ContactModel.email) == email.strip().lower())
        elif query:
            pattern = f"%{query}%"
            stmt = stmt.where(or_(
                ContactModel.first_name.ilike(pattern),
                ContactModel.last_name.ilike(pattern),
                ContactModel.email.ilike(pattern),
            ))
        if exclude_id:
            stmt = stmt.where(ContactModel.id != exclude_id)
        result = await self.session.execute(stmt.order_by(ContactModel.created_at.asc()).limit(limit))
        return [_row_to_dict(m) for m in result.scalars().all()]

    # ── Companies ──
    async def get_company(self, company_id: str) -> Optional[dict]:
        result = await self.session.execute(select(CompanyModel).where(CompanyModel.id == company_id))
        record = result.scalar_one_or_none()
        return _row_to_dict(record) if record else None

    async def get_company_by_domain(self, domain: str) -> Optional[dict]:
        result = await self.session.execute(
            select(CompanyModel).where(CompanyModel.domain == domain).limit(1)
        )
        record = result.scalar_one_or_none()
        return _row_to_dict(record) if record else None

    async def save_company(self, data: dict, company_id: Optional[str] = None) -> dict:
        """Insert a company, or update the one with *company_id*."""
        record = None
        if company_id:
            result = await self.session.execute(select(CompanyModel).where(CompanyModel.id == company_id))
            record = result.scalar_one_or_none()
        if record is None:
            record = CompanyModel()
            self.session.add(record)
        for key, value in _coerce_columns(CompanyModel, data).items():
            if hasattr(record, key):
                setattr(record, key, value)
        record.updated_at = datetime.now(timezone.utc)
        await self.session.commit()
        await self.session.refresh(record)
        return _row_to_dict(record)

    # ── Notes, tasks, notifications ──
    async def add_contact_note(self, contact_id: str, content: str, note_type: str = "Note") -> dict:
        record = ContactNoteModel(contact_id=contact_id, content=content, note_type=note_type)
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return _row_to_dict(record)

    async def list_contact_notes(self, contact_id: str, limit: int = 15) -> list[dict]:
        result = await self.session.execute(
            select(ContactNoteModel)
            .where(ContactNoteModel.contact_id == contact_id)
            .order_by(ContactNoteModel.created_at.desc())
            .limit(limit)
        )
        return [_row_to_dict(m) for m in result.scalars().all()]

    async def create_task(self, data: dict) -> dict:
        record = TaskModel(**_coerce_columns(TaskModel, data))
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return _row_to_dict(record)

    async def list_open_tasks(self, contact_id: str) -> list[dict]:
        result = await self.session.execute(
            select(TaskModel)
            .where(TaskModel.contact_id == contact_id, TaskModel.completed_at.is_(None))
            .order_by(TaskModel.priority.asc(), TaskModel.created_at.asc())
        )
        return [_row_to_dict(m) for m in result.scalars().all()]

    async def create_notification(self, data: dict) -> dict:
        record = NotificationModel(**data)
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return _row_to_dict(record)

    async def update_notification(self, notification_id: str, updates: dict) -> Optional[dict]:
        result = await self.session.execute(
            select(NotificationModel).where(NotificationModel.id == notification_id)
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None
        for key, value in updates.items():
            if hasattr(record, key):
                setattr(record, key, value)
        await self.session.commit()
        await self.session.refresh(record)
        return _row_to_dict(record)
