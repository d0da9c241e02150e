"""Persistence store: the source of truth for priority, status, escalations and text.

Every entry point is a coroutine so the queue controller can schedule it as a
fire-and-forget task on its event loop.  Each write runs in its own session
and transaction; failures roll back and surface as :class:`PersistenceError`.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Generator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.db import get_session
from agenda.errors import PersistenceError
from agenda.models import PRIORITIES, DiscussionTopic, Vendor
from agenda.ranking import DEFAULT_LIMIT, RankedItem, generate_vendor_agenda
from agenda.sources import column_updates, get_source
from agenda.utils import blank_to_none, utc_now

log = logging.getLogger(__name__)


class AgendaStore:
    """Async facade over the work item tables, keyed by (entity_type, entity_id)."""

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._session_factory = session_factory or get_session

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # -- reads ---------------------------------------------------------------

    async def fetch_agenda(
        self, vendor_id: int, limit: int = DEFAULT_LIMIT, now: datetime | None = None,
    ) -> list[RankedItem]:
        with self._session() as session:
            return generate_vendor_agenda(session, vendor_id, limit, now)

    # -- writes --------------------------------------------------------------

    def _write(self, operation: str, entity_type: str, entity_id: int,
               apply: Callable[[Session, Any], None]) -> None:
        spec = get_source(entity_type)
        try:
            with self._session() as session:
                record = session.get(spec.model, entity_id)
                if record is None:
                    raise PersistenceError(
                        f"{entity_type} {entity_id} not found",
                        operation=operation, entity_type=entity_type, entity_id=entity_id,
                    )
                apply(session, record)
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"{operation} failed for {entity_type} {entity_id}: {exc}",
                operation=operation, entity_type=entity_type, entity_id=entity_id,
            ) from exc
        log.debug("%s %s %s committed", operation, entity_type, entity_id)

    async def update_item(self, entity_type: str, entity_id: int, fields: dict[str, Any]) -> None:
        """Apply logical field updates (title, context, ask, priority)."""
        if "priority" in fields and fields["priority"] not in PRIORITIES:
            raise ValueError(f"Invalid priority: {fields['priority']!r}")
        columns = column_updates(entity_type, fields)
        if not columns:
            return

        def apply(_session: Session, record: Any) -> None:
            for column, value in columns.items():
                setattr(record, column, value)

        self._write("update", entity_type, entity_id, apply)

    async def escalate_item(self, entity_type: str, entity_id: int,
                            priority: str | None = None) -> int:
        """Add one escalation to the stored counter, optionally setting the priority.

        The increment is applied to the row as read inside the write
        transaction, so the stored count never goes backwards. Returns the new count.
        """
        if priority is not None and priority not in PRIORITIES:
            raise ValueError(f"Invalid priority: {priority!r}")
        counts: list[int] = []

        def apply(_session: Session, record: Any) -> None:
            record.escalation_count = max(0, record.escalation_count or 0) + 1
            if priority is not None:
                record.priority = priority
            counts.append(record.escalation_count)

        self._write("escalate", entity_type, entity_id, apply)
        return counts[0]

    async def resolve_item(self, entity_type: str, entity_id: int,
                           resolved_at: datetime | None = None) -> None:
        stamp = resolved_at or utc_now()

        def apply(_session: Session, record: Any) -> None:
            record.status = "resolved"
            record.resolved_at = stamp

        self._write("resolve", entity_type, entity_id, apply)

    async def delete_item(self, entity_type: str, entity_id: int) -> None:
        self._write("delete", entity_type, entity_id, lambda session, record: session.delete(record))

    async def create_topic(self, vendor_id: int, title: str, context: str | None = None,
                           ask: str | None = None) -> int:
        """Insert an open discussion topic (medium priority, severity "new")."""
        title = (title or "").strip()
        if not title:
            raise ValueError("Topic title must not be empty")
        try:
            with self._session() as session:
                if session.get(Vendor, vendor_id) is None:
                    raise PersistenceError(f"Vendor {vendor_id} not found", operation="create")
                topic = DiscussionTopic(
                    vendor_id=vendor_id, title=title,
                    context=blank_to_none(context), ask=blank_to_none(ask),
                    severity="new", priority="medium", status="open",
                    first_raised_at=utc_now(), escalation_count=0,
                )
                session.add(topic)
                session.commit()
                return topic.id
        except SQLAlchemyError as exc:
            raise PersistenceError(f"create failed for vendor {vendor_id}: {exc}", operation="create") from exc
