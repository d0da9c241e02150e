"""Interactive escalation queue for one vendor's agenda.

The controller keeps two deliberately independent states:

- ``items``: the local, synchronously mutated display order.  It is the
  only state used for rendering and for resolving "the item above/below".
- the store: updated by fire-and-forget tasks scheduled on the running
  event loop.  It becomes authoritative again only on the next full fetch
  (:meth:`QueueController.refresh`).

Local reordering always happens before the corresponding write is even
scheduled.  Failed writes are logged and collected in ``failed_writes``; the
local state is never rolled back and writes are never retried.  Operations
on items that are no longer in the local list are silent no-ops.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from agenda.errors import StaleReferenceError
from agenda.models import PRIORITIES
from agenda.ranking import DEFAULT_LIMIT, RankedItem, bracket, normalize_priority
from agenda.sources import WorkItem, get_source
from agenda.store import AgendaStore
from agenda.utils import PLACEHOLDER, blank_to_none

log = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "context", "ask", "priority")
EXPORT_COLUMNS = ("#", "Severity", "Topic", "Context", "Ask", "Owner")

ItemRef = WorkItem | tuple[str, int]


def _cell(value: Any) -> str:
    if value is None or value == "":
        return PLACEHOLDER
    return " ".join(str(value).split()).replace("|", "\\|")


def _table_line(cells: list[str]) -> str:
    return "| " + " | ".join(cells) + " |"


def render_snapshot(items: list[RankedItem]) -> str:
    """Render items as a fixed-column pipe table: one header line, one line per item."""
    lines = [_table_line(list(EXPORT_COLUMNS))]
    for item in items:
        lines.append(_table_line([
            str(item.rank),
            _cell(item.severity.upper() if item.severity else None),
            _cell(item.title),
            _cell(item.context),
            _cell(item.ask),
            _cell(item.owner_name),
        ]))
    return "\n".join(lines)


class QueueController:
    """Holds the ranked list for one vendor and applies operator actions to it."""

    def __init__(self, store: AgendaStore, vendor_id: int, limit: int = DEFAULT_LIMIT,
                 items: list[RankedItem] | None = None):
        if limit < 1:
            raise ValueError(f"limit must be a positive integer, got {limit}")
        self.store = store
        self.vendor_id = vendor_id
        self.limit = limit
        self.items: list[RankedItem] = list(items or [])
        self.pending_writes: set[asyncio.Task] = set()
        self.failed_writes: list[BaseException] = []

    # -- fetching ------------------------------------------------------------

    async def refresh(self) -> list[RankedItem]:
        """Replace the local list with a fresh, server-confirmed ranking."""
        self.items = await self.store.fetch_agenda(self.vendor_id, self.limit)
        return self.items

    load = refresh

    # -- lookup --------------------------------------------------------------

    def find(self, entity_type: str, entity_id: int) -> RankedItem | None:
        for item in self.items:
            if item.entity_type == entity_type and item.entity_id == entity_id:
                return item
        return None

    def _index_of(self, ref: ItemRef) -> int:
        if isinstance(ref, WorkItem):
            entity_type, entity_id = ref.key
        else:
            entity_type, entity_id = ref
        for idx, item in enumerate(self.items):
            if item.entity_type == entity_type and item.entity_id == entity_id:
                return idx
        raise StaleReferenceError(entity_type, entity_id)

    def _locate(self, ref: ItemRef, operation: str) -> int | None:
        try:
            return self._index_of(ref)
        except StaleReferenceError as exc:
            log.debug("Ignoring %s: %s", operation, exc)
            return None

    def _renumber(self) -> None:
        for idx, item in enumerate(self.items, start=1):
            item.rank = idx

    # -- background writes ---------------------------------------------------

    def _persist(self, name: str, fn, *args) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        task = loop.create_task(fn(*args), name=name)
        self.pending_writes.add(task)
        task.add_done_callback(self._write_done)
        return task

    def _write_done(self, task: asyncio.Task) -> None:
        self.pending_writes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning("Background write %s failed: %s", task.get_name(), exc)
            self.failed_writes.append(exc)

    async def drain(self) -> None:
        """Wait for every in-flight write. Used by tests and on shutdown."""
        while self.pending_writes:
            await asyncio.gather(*list(self.pending_writes), return_exceptions=True)

    # -- operations ----------------------------------------------------------

    def escalate(self, ref: ItemRef) -> bool:
        """Move an item up one slot, adopting a strictly higher bracket from the item it passes."""
        idx = self._locate(ref, "escalate")
        if idx is None or idx == 0:
            return False
        item = self.items[idx]
        above = self.items[idx - 1]
        new_priority = None
        if bracket(above.priority) < bracket(item.priority):
            item.priority = new_priority = normalize_priority(above.priority)
        item.escalation_count = max(0, item.escalation_count or 0) + 1

        self.items[idx - 1], self.items[idx] = item, above
        self._renumber()
        # The store applies +1 to its own row; the local count is display only.
        self._persist(f"escalate:{item.entity_type}:{item.entity_id}",
                      self.store.escalate_item, item.entity_type, item.entity_id, new_priority)
        return True

    def deescalate(self, ref: ItemRef) -> bool:
        """Move an item down one slot, adopting a strictly lower bracket from the item it passes."""
        idx = self._locate(ref, "deescalate")
        if idx is None or idx == len(self.items) - 1:
            return False
        item = self.items[idx]
        below = self.items[idx + 1]
        lowered = bracket(below.priority) > bracket(item.priority)
        if lowered:
            item.priority = normalize_priority(below.priority)

        self.items[idx], self.items[idx + 1] = below, item
        self._renumber()
        if lowered:
            self._persist(f"deescalate:{item.entity_type}:{item.entity_id}",
                          self.store.update_item, item.entity_type, item.entity_id,
                          {"priority": item.priority})
        return True

    def resolve(self, ref: ItemRef) -> bool:
        idx = self._locate(ref, "resolve")
        if idx is None:
            return False
        item = self.items.pop(idx)
        self._renumber()
        self._persist(f"resolve:{item.entity_type}:{item.entity_id}",
                      self.store.resolve_item, item.entity_type, item.entity_id)
        return True

    def delete(self, ref: ItemRef) -> bool:
        idx = self._locate(ref, "delete")
        if idx is None:
            return False
        item = self.items.pop(idx)
        self._renumber()
        self._persist(f"delete:{item.entity_type}:{item.entity_id}",
                      self.store.delete_item, item.entity_type, item.entity_id)
        return True

    async def add_item(self, title: str, context: str | None = None,
                       ask: str | None = None) -> int | None:
        """Create a discussion topic, then re-fetch so it lands at its true rank."""
        if not (title or "").strip():
            return None
        topic_id = await self.store.create_topic(self.vendor_id, title, context, ask)
        await self.refresh()
        return topic_id

    def edit_item(self, ref: ItemRef, fields: dict[str, Any]) -> bool:
        """Update title/context/ask/priority locally and persist through the field map."""
        idx = self._locate(ref, "edit")
        if idx is None:
            return False
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")

        item = self.items[idx]
        mapped = get_source(item.entity_type).field_map
        updates: dict[str, Any] = {}
        for name, value in fields.items():
            if name == "priority":
                value = str(value or "").strip().lower()
                if value not in PRIORITIES:
                    raise ValueError(f"Invalid priority: {fields[name]!r}")
            elif name == "title":
                value = (value or "").strip()
                if not value:
                    raise ValueError("Title must not be empty")
            else:
                value = blank_to_none(value)
            if name not in mapped:
                log.debug("%s has no %s field, skipping", item.entity_type, name)
                continue
            updates[name] = value

        if not updates:
            return False
        for name, value in updates.items():
            setattr(item, name, value)
        self._persist(f"edit:{item.entity_type}:{item.entity_id}",
                      self.store.update_item, item.entity_type, item.entity_id, updates)
        return True

    def export_snapshot(self) -> str:
        return render_snapshot(self.items)
