from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, contextmanager

from mcp.server.fastmcp import FastMCP

from agenda import services
from agenda.config import get_settings
from agenda.controller import render_snapshot
from agenda.db import get_session, init_db
from agenda.errors import PersistenceError
from agenda.ranking import generate_vendor_agenda
from agenda.sources import ENTITY_TYPES
from agenda.store import AgendaStore

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def agenda_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Vendor Agenda",
    instructions=(
        "Vendor Agenda ranks open blockers, action items, and discussion topics "
        "into one meeting agenda per vendor. Start with list_vendors(), then "
        "get_vendor_agenda(vendor) for the ranked list. Items are addressed by "
        "(entity_type, entity_id) as returned in the agenda."
    ),
    lifespan=agenda_lifespan,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _session():
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def _vendor_or_error(session, vendor: str):
    found = services.find_vendor(session, vendor)
    if found is None:
        return None, {"error": f"Vendor {vendor!r} not found"}
    return found, None


def _entity_error(entity_type: str) -> dict | None:
    if entity_type not in ENTITY_TYPES:
        return {"error": f"entity_type must be one of: {', '.join(ENTITY_TYPES)}"}
    return None


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("agenda://overview")
def agenda_overview() -> str:
    """Overview of the scoring model and the item types that feed an agenda."""
    return json.dumps({
        "system": "Vendor Agenda: ranked meeting agendas for vendor accountability",
        "entity_types": {
            "blocker": "Blocking issue; severity grows with age (>7d high, >21d critical).",
            "action_item": "Pending action; severity and bonus grow with days overdue.",
            "discussion_topic": "Ad-hoc topic with an explicit severity.",
        },
        "score": "base(priority) + 2*age_days + 15*escalations + severity or overdue bonus",
        "priority_base": {"critical": 100, "high": 75, "medium": 50, "low": 25},
        "severity_bonus": {"critical": 50, "high": 30, "new": 10, "normal": 0},
        "overdue_bonus": "min(3 * days_overdue, 60), action items only",
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_vendors() -> list[dict]:
    """List all vendors with their ids and slugs."""
    with _session() as session:
        return [services.vendor_summary(v) for v in services.list_vendors(session)]


@mcp.tool()
def get_vendor_agenda(vendor: str, limit: int = 20) -> dict:
    """Get the ranked agenda for a vendor.

    Args:
        vendor: Vendor id or slug.
        limit: Max items (default 20, max 500).
    """
    with _session() as session:
        found, err = _vendor_or_error(session, vendor)
        if err:
            return err
        items = generate_vendor_agenda(session, found.id, max(1, min(limit, 500)))
        return services.agenda_payload(found, items)


@mcp.tool()
def export_vendor_agenda(vendor: str, limit: int | None = None) -> str:
    """Render a vendor's ranked agenda as a copy-out text table."""
    with _session() as session:
        found, err = _vendor_or_error(session, vendor)
        if err:
            return err["error"]
        items = generate_vendor_agenda(session, found.id, limit or get_settings().default_limit)
        return render_snapshot(items)


@mcp.tool()
async def escalate_item(entity_type: str, entity_id: int, priority: str | None = None) -> dict:
    """Record one escalation on an item, optionally raising its priority bracket."""
    err = _entity_error(entity_type)
    if err:
        return err
    try:
        count = await AgendaStore().escalate_item(entity_type, entity_id, priority or None)
    except (PersistenceError, ValueError) as exc:
        return {"error": str(exc)}
    result = {"ok": True, "entity_type": entity_type, "entity_id": entity_id, "escalation_count": count}
    if priority:
        result["priority"] = priority
    return result


@mcp.tool()
async def resolve_item(entity_type: str, entity_id: int) -> dict:
    """Mark an item resolved so it no longer appears on any agenda."""
    err = _entity_error(entity_type)
    if err:
        return err
    try:
        await AgendaStore().resolve_item(entity_type, entity_id)
    except PersistenceError as exc:
        return {"error": str(exc)}
    return {"ok": True, "entity_type": entity_type, "entity_id": entity_id}


@mcp.tool()
async def add_discussion_topic(vendor: str, title: str, context: str | None = None,
                               ask: str | None = None) -> dict:
    """Add an open discussion topic (medium priority, severity "new") to a vendor's agenda."""
    with _session() as session:
        found, err = _vendor_or_error(session, vendor)
        if err:
            return err
        vendor_id = found.id
    try:
        topic_id = await AgendaStore().create_topic(vendor_id, title, context, ask)
    except (PersistenceError, ValueError) as exc:
        return {"error": str(exc)}
    return {"ok": True, "entity_type": "discussion_topic", "entity_id": topic_id, "vendor_id": vendor_id}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Vendor Agenda MCP server over stdio."""
    logging.basicConfig(level=get_settings().log_level)
    mcp.run()


if __name__ == "__main__":
    main()
