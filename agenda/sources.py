"""Source adapters: read-only projections of the three vendor work item tables.

Blockers, action items and discussion topics keep their own schemas.  Each is
described by a :class:`SourceSpec` entry in :data:`SOURCES`, a tagged-variant
table keyed by ``entity_type`` that names

- the ORM model and its "raised at" column,
- which columns back the logical ``context`` / ``ask`` fields,
- how severity (and, for action items, days overdue) is derived.

The projection produces :class:`WorkItem` snapshots.  Derived fields are
recomputed on every read and never written back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from agenda.models import ActionItem, Blocker, DiscussionTopic, SEVERITIES
from agenda.utils import as_utc, utc_now

log = logging.getLogger(__name__)


@dataclass
class WorkItem:
    """Uniform view over a blocker, action item or discussion topic."""
    entity_type: str
    entity_id: int
    vendor_id: int
    title: str
    context: str | None = None
    ask: str | None = None
    priority: str = "medium"
    status: str = "open"
    first_raised_at: datetime | None = None
    escalation_count: int = 0
    owner_id: int | None = None
    owner_name: str | None = None
    project_id: int | None = None
    project_name: str | None = None
    due_date: date | None = None
    severity: str = "normal"
    age_days: int | None = None
    days_overdue: int | None = None

    @property
    def key(self) -> tuple[str, int]:
        return (self.entity_type, self.entity_id)


# ---------------------------------------------------------------------------
# Derived fields
# ---------------------------------------------------------------------------


def compute_age_days(raised_at: datetime | None, now: datetime) -> int | None:
    """Whole days elapsed since *raised_at*; ``None`` when the timestamp is missing."""
    raised = as_utc(raised_at)
    if raised is None:
        return None
    return max(0, (as_utc(now) - raised).days)


def compute_days_overdue(due: date | None, today: date) -> int | None:
    if due is None:
        return None
    return max(0, (today - due).days)


def blocker_severity(age_days: int | None) -> str:
    age = age_days or 0
    if age > 21:
        return "critical"
    if age > 7:
        return "high"
    return "new"


def action_item_severity(days_overdue: int | None) -> str:
    overdue = days_overdue or 0
    if overdue > 7:
        return "critical"
    if overdue >= 1:
        return "high"
    return "normal"


def stored_severity(value: str | None) -> str:
    sev = (value or "").strip().lower()
    return sev if sev in SEVERITIES else "normal"


def _derive_blocker(record: Blocker, age: int | None, today: date) -> tuple[str, int | None]:
    return blocker_severity(age), None


def _derive_action_item(record: ActionItem, age: int | None, today: date) -> tuple[str, int | None]:
    overdue = compute_days_overdue(record.due_date, today)
    return action_item_severity(overdue), overdue


def _derive_topic(record: DiscussionTopic, age: int | None, today: date) -> tuple[str, int | None]:
    return stored_severity(record.severity), None


# ---------------------------------------------------------------------------
# Source table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceSpec:
    entity_type: str
    model: Any
    raised_attr: str
    context_attr: str | None
    ask_attr: str | None
    derive: Callable[[Any, int | None, date], tuple[str, int | None]]

    @property
    def field_map(self) -> dict[str, str]:
        """Logical field name -> column name on this entity's table."""
        mapping = {"title": "title", "priority": "priority"}
        if self.context_attr:
            mapping["context"] = self.context_attr
        if self.ask_attr:
            mapping["ask"] = self.ask_attr
        return mapping


# Insertion order is the adapter order used for tie-breaking.
SOURCES: dict[str, SourceSpec] = {
    "blocker": SourceSpec(
        entity_type="blocker", model=Blocker, raised_attr="first_flagged_at",
        context_attr="impact_description", ask_attr=None, derive=_derive_blocker,
    ),
    "action_item": SourceSpec(
        entity_type="action_item", model=ActionItem, raised_attr="first_flagged_at",
        context_attr="description", ask_attr="notes", derive=_derive_action_item,
    ),
    "discussion_topic": SourceSpec(
        entity_type="discussion_topic", model=DiscussionTopic, raised_attr="first_raised_at",
        context_attr="context", ask_attr="ask", derive=_derive_topic,
    ),
}

ENTITY_TYPES = tuple(SOURCES)


def get_source(entity_type: str) -> SourceSpec:
    try:
        return SOURCES[entity_type]
    except KeyError:
        raise ValueError(f"Unknown entity type: {entity_type!r}") from None


def open_clause(model):
    return (model.status == "open") & model.resolved_at.is_(None)


def column_updates(entity_type: str, fields: dict[str, Any]) -> dict[str, Any]:
    """Translate logical field updates into column updates for *entity_type*.

    Fields with no backing column on that table are dropped.
    """
    mapping = get_source(entity_type).field_map
    out: dict[str, Any] = {}
    for name, value in fields.items():
        column = mapping.get(name)
        if column is None:
            log.debug("%s has no column for %r, skipping", entity_type, name)
            continue
        out[column] = value
    return out


def project_record(spec: SourceSpec, record: Any, now: datetime) -> WorkItem:
    raised_at = getattr(record, spec.raised_attr)
    age = compute_age_days(raised_at, now)
    severity, overdue = spec.derive(record, age, as_utc(now).date())
    owner = getattr(record, "owner", None)
    project = getattr(record, "project", None)
    return WorkItem(
        entity_type=spec.entity_type,
        entity_id=record.id,
        vendor_id=record.vendor_id,
        title=record.title,
        context=getattr(record, spec.context_attr) if spec.context_attr else None,
        ask=getattr(record, spec.ask_attr) if spec.ask_attr else None,
        priority=record.priority,
        status=record.status,
        first_raised_at=as_utc(raised_at),
        escalation_count=record.escalation_count,
        owner_id=record.owner_id,
        owner_name=owner.full_name if owner else None,
        project_id=getattr(record, "project_id", None),
        project_name=project.name if project else None,
        due_date=getattr(record, "due_date", None) if spec.entity_type == "action_item" else None,
        severity=severity,
        age_days=age,
        days_overdue=overdue,
    )


def fetch_open_items(session: Session, vendor_id: int, now: datetime | None = None) -> list[WorkItem]:
    """Project every open item of *vendor_id*, in adapter order then id order."""
    now = now or utc_now()
    items: list[WorkItem] = []
    for spec in SOURCES.values():
        model = spec.model
        rows = session.execute(
            select(model).where(model.vendor_id == vendor_id, open_clause(model)).order_by(model.id)
        ).scalars().all()
        items.extend(project_record(spec, row, now) for row in rows)
    return items
