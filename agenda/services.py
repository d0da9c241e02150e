"""Shared business logic for the agenda API, MCP server and CLI."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from agenda.controller import QueueController
from agenda.models import Vendor
from agenda.ranking import RankedItem

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

RANKED_ITEM_FIELDS = (
    "rank", "entity_type", "entity_id", "vendor_id", "title", "severity",
    "context", "ask", "priority", "status", "escalation_count", "score",
    "owner_name", "project_name", "due_date", "days_overdue",
)

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def vendor_summary(vendor: Vendor) -> dict:
    return {"id": vendor.id, "name": vendor.name, "slug": vendor.slug, "website": vendor.website or ""}


def ranked_item_dict(item: RankedItem) -> dict[str, Any]:
    result = {f: getattr(item, f) for f in RANKED_ITEM_FIELDS}
    result["age_days"] = item.age_days or 0
    return result


def agenda_payload(vendor: Vendor, items: list[RankedItem]) -> dict:
    return {"vendor": vendor_summary(vendor), "items": [ranked_item_dict(i) for i in items]}


def queue_payload(vendor: Vendor, queue: QueueController, changed: bool | None = None) -> dict:
    payload = agenda_payload(vendor, queue.items)
    payload.update({
        "changed": changed,
        "pending_writes": len(queue.pending_writes),
        "failed_writes": len(queue.failed_writes),
    })
    return payload


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def list_vendors(session: Session) -> list[Vendor]:
    return list(session.execute(select(Vendor).order_by(Vendor.name)).scalars().all())


def get_vendor_by_slug(session: Session, slug: str) -> Vendor | None:
    return session.execute(select(Vendor).where(Vendor.slug == slug)).scalars().first()


def find_vendor(session: Session, ref: str | int) -> Vendor | None:
    """Resolve a vendor from a numeric id or a slug."""
    if isinstance(ref, int) or str(ref).isdigit():
        vendor = session.get(Vendor, int(ref))
        if vendor is not None:
            return vendor
    return get_vendor_by_slug(session, str(ref))
