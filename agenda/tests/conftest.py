"""Shared fixtures: an in-memory SQLite database and a small seeded vendor."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agenda.models import Base, DiscussionTopic, Vendor
from agenda.utils import utc_now

# Fixed instant for deterministic age / overdue arithmetic.
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def naive_days_ago(days: int, now: datetime | None = None) -> datetime:
    """UTC timestamp *days* before *now*, stored naive the way SQLite returns it."""
    return ((now or utc_now()) - timedelta(days=days)).replace(tzinfo=None)


@pytest.fixture()
def engine():
    """StaticPool so every session (and every store write) sees the same database."""
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def SessionLocal(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(SessionLocal):
    sess = SessionLocal()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def vendor(session) -> Vendor:
    v = Vendor(name="Acme Logistics", slug="acme-logistics", website="https://acme.example")
    session.add(v)
    session.commit()
    return v


@pytest.fixture()
def example_topics(session, vendor) -> dict[str, int]:
    """Three open topics whose scores are A=95, B=111, C=100 (ranked B, C, A)."""
    rows = {
        "A": DiscussionTopic(vendor_id=vendor.id, title="A", priority="high", severity="normal",
                             first_raised_at=naive_days_ago(10), escalation_count=0),
        "B": DiscussionTopic(vendor_id=vendor.id, title="B", priority="high", severity="normal",
                             first_raised_at=naive_days_ago(3), escalation_count=2),
        "C": DiscussionTopic(vendor_id=vendor.id, title="C", priority="critical", severity="normal",
                             first_raised_at=naive_days_ago(0), escalation_count=0),
    }
    session.add_all(rows.values())
    session.commit()
    return {name: row.id for name, row in rows.items()}
