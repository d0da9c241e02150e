"""Pydantic request/response schemas for the agenda API."""
from __future__ import annotations

from datetime import date
from typing import Literal

from pydantic import BaseModel, field_validator

EntityType = Literal["blocker", "action_item", "discussion_topic"]
Priority = Literal["critical", "high", "medium", "low"]


class VendorOut(BaseModel):
    id: int
    name: str
    slug: str
    website: str = ""


class RankedItemOut(BaseModel):
    rank: int
    entity_type: EntityType
    entity_id: int
    vendor_id: int
    title: str
    severity: str
    context: str | None = None
    ask: str | None = None
    priority: str
    status: str
    age_days: int
    escalation_count: int
    score: float
    owner_name: str | None = None
    project_name: str | None = None
    due_date: date | None = None
    days_overdue: int | None = None


class AgendaOut(BaseModel):
    vendor: VendorOut
    items: list[RankedItemOut]


class QueueOut(AgendaOut):
    changed: bool | None = None
    pending_writes: int = 0
    failed_writes: int = 0


class ItemRef(BaseModel):
    entity_type: EntityType
    entity_id: int


class TopicCreate(BaseModel):
    title: str
    context: str | None = None
    ask: str | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v


class ItemUpdate(BaseModel):
    title: str | None = None
    context: str | None = None
    ask: str | None = None
    priority: Priority | None = None
