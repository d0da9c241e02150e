"""Scoring engine and ranking assembler for vendor meeting agendas.

Scoring
-------
Each open work item gets one additive score::

    score = base(priority) + age_days * 2 + escalation_count * 15 + bonus

- ``base``: critical 100, high 75, medium 50, low 25
- ``bonus``: the severity bonus (critical 50, high 30, new 10, else 0), or,
  for items whose urgency is due-date based, ``min(days_overdue * 3, 60)``

Malformed inputs are repaired rather than rejected (unknown priority counts
as medium, missing age as zero) so one bad record cannot blank a queue.
Scores are recomputed on every call; ages drift as time passes.

Ranking
-------
``generate_vendor_agenda`` merges the open items of one vendor across all
sources, scores them, sorts by descending score (stable, so ties keep adapter
order then id order) and assigns ranks ``1..n`` after truncating to the limit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from datetime import datetime

from sqlalchemy.orm import Session

from agenda.models import PRIORITIES
from agenda.sources import WorkItem, fetch_open_items

log = logging.getLogger(__name__)

PRIORITY_BASE = {"critical": 100, "high": 75, "medium": 50, "low": 25}
SEVERITY_BONUS = {"critical": 50, "high": 30, "new": 10}

AGE_WEIGHT = 2
ESCALATION_WEIGHT = 15
OVERDUE_WEIGHT = 3
OVERDUE_CAP = 60

DEFAULT_LIMIT = 20


@dataclass
class RankedItem(WorkItem):
    score: float = 0.0
    rank: int = 0


# ---------------------------------------------------------------------------
# Priority brackets
# ---------------------------------------------------------------------------


def normalize_priority(value: str | None) -> str:
    p = str(value or "").strip().lower()
    if p not in PRIORITY_BASE:
        if value is not None:
            log.debug("Unrecognized priority %r, treating as medium", value)
        return "medium"
    return p


def bracket(priority: str | None) -> int:
    """Bracket index: 0 is critical (highest), 3 is low."""
    return PRIORITIES.index(normalize_priority(priority))


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def severity_bonus(severity: str | None) -> int:
    return SEVERITY_BONUS.get(str(severity or "").strip().lower(), 0)


def overdue_bonus(days_overdue: int | None) -> int:
    return min(max(0, days_overdue or 0) * OVERDUE_WEIGHT, OVERDUE_CAP)


def score_item(item: WorkItem) -> float:
    """Score one normalized item. Pure; never raises on malformed fields."""
    base = PRIORITY_BASE[normalize_priority(item.priority)]
    age = max(0, item.age_days or 0)
    escalations = max(0, item.escalation_count or 0)
    if item.days_overdue is not None:
        bonus = overdue_bonus(item.days_overdue)
    else:
        bonus = severity_bonus(item.severity)
    return float(base + age * AGE_WEIGHT + escalations * ESCALATION_WEIGHT + bonus)


def _work_item_fields(item: WorkItem) -> dict:
    return {f.name: getattr(item, f.name) for f in fields(WorkItem)}


def rank_items(items: list[WorkItem], limit: int = DEFAULT_LIMIT) -> list[RankedItem]:
    """Score, stable-sort by descending score, truncate and number 1..n."""
    if limit < 1:
        raise ValueError(f"limit must be a positive integer, got {limit}")
    scored = [(score_item(item), item) for item in items]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [
        RankedItem(**_work_item_fields(item), score=score, rank=idx)
        for idx, (score, item) in enumerate(scored[:limit], start=1)
    ]


def generate_vendor_agenda(
    session: Session, vendor_id: int, limit: int = DEFAULT_LIMIT, now: datetime | None = None,
) -> list[RankedItem]:
    """Ranked agenda for one vendor. Read-only; an empty list is a valid result."""
    items = fetch_open_items(session, vendor_id, now)
    ranked = rank_items(items, limit)
    log.debug("Vendor %s agenda: %d open items, returning %d", vendor_id, len(items), len(ranked))
    return ranked
