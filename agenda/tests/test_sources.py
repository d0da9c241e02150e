"""Tests for the source adapters: derived fields and the logical field map."""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from agenda.models import ActionItem, Blocker, DiscussionTopic
from agenda.sources import (
    ENTITY_TYPES, SOURCES, action_item_severity, blocker_severity, column_updates,
    compute_age_days, compute_days_overdue, fetch_open_items, get_source, project_record,
    stored_severity,
)

from conftest import NOW, naive_days_ago


class TestDerivedFields:
    def test_age_days(self):
        assert compute_age_days(NOW - timedelta(days=4, hours=23), NOW) == 4
        assert compute_age_days(NOW - timedelta(days=5), NOW) == 5

    def test_age_accepts_naive_timestamps(self):
        assert compute_age_days(naive_days_ago(3, NOW), NOW) == 3

    def test_age_missing_timestamp(self):
        assert compute_age_days(None, NOW) is None

    def test_age_in_the_future_is_zero(self):
        assert compute_age_days(NOW + timedelta(days=2), NOW) == 0

    def test_age_across_timezones(self):
        raised = datetime(2026, 2, 27, 6, 0, tzinfo=timezone(timedelta(hours=-8)))
        assert compute_age_days(raised, NOW) == 1

    def test_days_overdue(self):
        today = date(2026, 3, 1)
        assert compute_days_overdue(None, today) is None
        assert compute_days_overdue(date(2026, 3, 5), today) == 0
        assert compute_days_overdue(date(2026, 2, 22), today) == 7

    @pytest.mark.parametrize("age, expected", [
        (None, "new"), (0, "new"), (7, "new"), (8, "high"), (21, "high"), (22, "critical"),
    ])
    def test_blocker_severity(self, age, expected):
        assert blocker_severity(age) == expected

    @pytest.mark.parametrize("overdue, expected", [
        (None, "normal"), (0, "normal"), (1, "high"), (7, "high"), (8, "critical"),
    ])
    def test_action_item_severity(self, overdue, expected):
        assert action_item_severity(overdue) == expected

    def test_stored_severity(self):
        assert stored_severity("Critical") == "critical"
        assert stored_severity(None) == "normal"
        assert stored_severity("urgent") == "normal"


class TestFieldMap:
    def test_adapter_order(self):
        assert ENTITY_TYPES == ("blocker", "action_item", "discussion_topic")

    def test_blocker_context_is_impact(self):
        mapping = SOURCES["blocker"].field_map
        assert mapping["context"] == "impact_description"
        assert "ask" not in mapping

    def test_action_item_mapping(self):
        mapping = SOURCES["action_item"].field_map
        assert mapping["context"] == "description"
        assert mapping["ask"] == "notes"

    def test_topic_mapping(self):
        mapping = SOURCES["discussion_topic"].field_map
        assert (mapping["context"], mapping["ask"]) == ("context", "ask")

    def test_column_updates_drops_unmapped(self):
        cols = column_updates("blocker", {"context": "Line down", "ask": "ignored", "priority": "high"})
        assert cols == {"impact_description": "Line down", "priority": "high"}

    def test_unknown_entity_type(self):
        with pytest.raises(ValueError, match="Unknown entity type"):
            get_source("meeting")


class TestProjection:
    def test_action_item_projection(self, session, vendor):
        record = ActionItem(
            vendor_id=vendor.id, title="Sign NDA", description="Blocking pilot", notes="Ask legal",
            priority="high", first_flagged_at=naive_days_ago(2, NOW), due_date=date(2026, 2, 27),
            escalation_count=1,
        )
        session.add(record)
        session.commit()
        item = project_record(SOURCES["action_item"], record, NOW)
        assert item.key == ("action_item", record.id)
        assert (item.context, item.ask) == ("Blocking pilot", "Ask legal")
        assert item.age_days == 2
        assert item.days_overdue == 2
        assert item.severity == "high"
        assert item.first_raised_at.tzinfo is not None

    def test_topic_has_no_due_date(self, session, vendor):
        record = DiscussionTopic(vendor_id=vendor.id, title="Pricing", severity="high",
                                 first_raised_at=naive_days_ago(1, NOW))
        session.add(record)
        session.commit()
        item = project_record(SOURCES["discussion_topic"], record, NOW)
        assert item.due_date is None
        assert item.days_overdue is None
        assert item.severity == "high"

    def test_fetch_open_items_order(self, session, vendor):
        session.add_all([
            DiscussionTopic(vendor_id=vendor.id, title="t1"),
            Blocker(vendor_id=vendor.id, title="b1"),
            ActionItem(vendor_id=vendor.id, title="a1"),
            Blocker(vendor_id=vendor.id, title="b2"),
        ])
        session.commit()
        titles = [i.title for i in fetch_open_items(session, vendor.id, NOW)]
        assert titles == ["b1", "b2", "a1", "t1"]

    def test_resolved_at_alone_excludes(self, session, vendor):
        session.add_all([
            Blocker(vendor_id=vendor.id, title="closed quietly", resolved_at=naive_days_ago(1, NOW)),
            Blocker(vendor_id=vendor.id, title="status only", status="resolved"),
            Blocker(vendor_id=vendor.id, title="still open"),
        ])
        session.commit()
        assert [i.title for i in fetch_open_items(session, vendor.id, NOW)] == ["still open"]
