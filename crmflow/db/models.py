"""All ORM models. Workflow tables map onto the pydantic types in crmflow.types.

Tables: events, workflow_templates, workflow_steps, workflow_runs,
workflow_run_logs, integrations, team_config, contacts, companies,
contact_notes, tasks, notifications
"""

from sqlalchemy import Column, String, Integer, DateTime, JSON, Boolean, Text, ForeignKey, Index
from sqlalchemy.orm import DeclarativeBase
from datetime import datetime, timezone
import uuid


class Base(DeclarativeBase):
    pass


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Events + workflows ──

class EventModel(Base):
    __tablename__ = "events"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=True, index=True)
    event_type = Column(String, nullable=False)
    entity_type = Column(String, nullable=True)
    entity_id = Column(String, nullable=True)
    payload = Column(JSON, default=dict)
    source = Column(String, nullable=True)
    processed = Column(Boolean, default=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (Index("ix_event_unprocessed", "processed", "created_at"),)


class WorkflowTemplateModel(Base):
    __tablename__ = "workflow_templates"
    id = Column(String, primary_key=True, default=_uuid)
    slug = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    category = Column(String, default="general")
    trigger_event = Column(String, nullable=True, index=True)
    version = Column(Integer, default=1)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)


class WorkflowStepModel(Base):
    __tablename__ = "workflow_steps"
    id = Column(String, primary_key=True, default=_uuid)
    workflow_template_id = Column(String, ForeignKey("workflow_templates.id", ondelete="CASCADE"),
                                  nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    step_order = Column(Integer, nullable=False)
    action_type = Column(String, nullable=False)
    action_config = Column(JSON, default=dict)
    run_conditions = Column(JSON, default=list)
    on_error = Column(String, default="stop")
    output_variable = Column(String, nullable=True)
    is_enabled = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=_now)


class WorkflowRunModel(Base):
    __tablename__ = "workflow_runs"
    id = Column(String, primary_key=True, default=_uuid)
    workflow_template_id = Column(String, ForeignKey("workflow_templates.id", ondelete="SET NULL"),
                                  nullable=True, index=True)
    team_id = Column(String, nullable=True)
    trigger_event_id = Column(String, nullable=True)
    triggered_by = Column(String, default="manual")
    entity_type = Column(String, nullable=True)
    entity_id = Column(String, nullable=True)
    status = Column(String, default="running", index=True)
    context = Column(JSON, default=dict)
    final_context = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), default=_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class WorkflowRunLogModel(Base):
    __tablename__ = "workflow_run_logs"
    id = Column(String, primary_key=True, default=_uuid)
    workflow_run_id = Column(String, ForeignKey("workflow_runs.id", ondelete="CASCADE"),
                             nullable=False, index=True)
    workflow_step_id = Column(String, nullable=True)
    step_order = Column(Integer, nullable=False)
    step_name = Column(String, nullable=False)
    status = Column(String, nullable=False)
    input = Column(JSON, nullable=True)
    output = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    tokens_used = Column(Integer, nullable=True)
    executed_at = Column(DateTime(timezone=True), default=_now)


# ── Team settings ──

class IntegrationModel(Base):
    __tablename__ = "integrations"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=True)
    name = Column(String, nullable=False)           # peopledatalabs, hunter, apollo, apify, perplexity, slack
    display_name = Column(String, nullable=True)
    is_enabled = Column(Boolean, default=True)
    credentials = Column(JSON, default=dict)
    settings = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (Index("ix_integration_team_name", "team_id", "name", unique=True),)


class TeamConfigModel(Base):
    __tablename__ = "team_config"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=True)
    config_key = Column(String, nullable=False)     # icp, product_context, ...
    config_value = Column(JSON, nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (Index("ix_team_config_key", "team_id", "config_key", unique=True),)


# ── CRM records ──

class CompanyModel(Base):
    __tablename__ = "companies"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=True, index=True)
    name = Column(String, nullable=True)
    domain = Column(String, nullable=True, index=True)
    industry = Column(String, nullable=True)
    employee_count = Column(String, nullable=True)
    enrichment_status = Column(String, default="pending")
    enrichment_data = Column(JSON, default=dict)
    last_enriched_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)


class ContactModel(Base):
    __tablename__ = "contacts"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=True, index=True)
    company_id = Column(String, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)
    work_email = Column(String, nullable=True)
    personal_email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    title = Column(String, nullable=True)
    linkedin_url = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    company_size = Column(String, nullable=True)
    industry = Column(String, nullable=True)
    tech_stack = Column(JSON, default=list)
    message = Column(Text, nullable=True)
    source = Column(String, nullable=True)
    source_detail = Column(String, nullable=True)
    utm_source = Column(String, nullable=True)
    utm_medium = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    sales_notes = Column(Text, nullable=True)
    score = Column(Integer, default=0)
    score_breakdown = Column(JSON, default=dict)
    enrichment_tier = Column(String, nullable=True)     # none, light, deep
    enrichment_status = Column(String, default="pending")
    enrichment_data = Column(JSON, default=dict)
    last_enriched_at = Column(DateTime(timezone=True), nullable=True)
    flags = Column(JSON, default=list)
    custom_fields = Column(JSON, default=dict)
    status = Column(String, default="active")
    inbound_count = Column(Integer, default=0)
    last_inbound_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)


class ContactNoteModel(Base):
    __tablename__ = "contact_notes"
    id = Column(String, primary_key=True, default=_uuid)
    contact_id = Column(String, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    note_type = Column(String, default="Note")
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now)


class TaskModel(Base):
    __tablename__ = "tasks"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=True)
    contact_id = Column(String, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=True, index=True)
    company_id = Column(String, nullable=True)
    type = Column(String, nullable=False)              # call, email, follow_up, research, meeting, other
    priority = Column(Integer, default=5)              # 1 = highest
    reason = Column(Text, nullable=True)
    due_date = Column(String, nullable=True)           # ISO date
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)


class NotificationModel(Base):
    __tablename__ = "notifications"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=True)
    channel = Column(String, default="slack")
    template = Column(String, nullable=True)
    message = Column(Text, nullable=False)
    data = Column(JSON, default=dict)
    delivered = Column(Boolean, default=False)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
