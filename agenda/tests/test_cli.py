"""Tests for the typer CLI and the interactive queue command parser."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from typer.testing import CliRunner

from agenda.cli import QUIT, app, execute_command
from agenda.config import get_settings
from agenda.controller import QueueController
from agenda.db import init_db, session_scope
from agenda.models import DiscussionTopic, Vendor
from agenda.ranking import RankedItem
from agenda.store import AgendaStore

from conftest import naive_days_ago

runner = CliRunner()


@pytest.fixture()
def db_file(tmp_path, monkeypatch):
    path = tmp_path / "agenda.db"
    monkeypatch.setenv("AGENDA_DB", str(path))
    get_settings.cache_clear()
    init_db(path)
    with session_scope() as s:
        vendor = Vendor(name="Acme Logistics", slug="acme-logistics")
        s.add(vendor)
        s.flush()
        s.add_all([
            DiscussionTopic(vendor_id=vendor.id, title="A", priority="high",
                            first_raised_at=naive_days_ago(10), escalation_count=0),
            DiscussionTopic(vendor_id=vendor.id, title="B", priority="high",
                            first_raised_at=naive_days_ago(3), escalation_count=2),
            DiscussionTopic(vendor_id=vendor.id, title="C", priority="critical",
                            first_raised_at=naive_days_ago(0), escalation_count=0),
        ])
        s.commit()
    yield path
    get_settings.cache_clear()


class TestCommands:
    def test_init_db(self, tmp_path, monkeypatch):
        target = tmp_path / "nested" / "fresh.db"
        monkeypatch.setenv("AGENDA_DB", str(tmp_path / "unused.db"))
        result = runner.invoke(app, ["--json", "--db", str(target), "init-db"])
        get_settings.cache_clear()
        assert result.exit_code == 0, result.output
        assert target.exists()
        assert json.loads(result.output)["database"] == str(target.resolve())

    def test_vendors_json(self, db_file):
        result = runner.invoke(app, ["--json", "vendors"])
        assert result.exit_code == 0, result.output
        assert [v["slug"] for v in json.loads(result.output)] == ["acme-logistics"]

    def test_show_json(self, db_file):
        result = runner.invoke(app, ["--json", "show", "acme-logistics"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [i["title"] for i in data["items"]] == ["B", "C", "A"]

    def test_show_table(self, db_file):
        result = runner.invoke(app, ["show", "1", "--limit", "2"])
        assert result.exit_code == 0, result.output
        assert "Meeting Agenda" in result.output

    def test_show_unknown_vendor(self, db_file):
        result = runner.invoke(app, ["show", "nobody"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_export(self, db_file):
        result = runner.invoke(app, ["export", "acme-logistics"])
        assert result.exit_code == 0, result.output
        lines = result.output.strip().splitlines()
        assert lines[0] == "| # | Severity | Topic | Context | Ask | Owner |"
        assert lines[1] == "| 1 | NORMAL | B | — | — | — |"

    def test_queue_session_persists_on_quit(self, db_file):
        result = runner.invoke(app, ["queue", "acme-logistics"], input="up 3\nexport\nquit\n")
        assert result.exit_code == 0, result.output
        assert "Escalated 'A'" in result.output
        assert "| 2 | NORMAL | A |" in result.output
        with session_scope() as s:
            row = s.execute(select(DiscussionTopic).where(DiscussionTopic.title == "A")).scalar_one()
            assert (row.priority, row.escalation_count) == ("critical", 1)


class TestExecuteCommand:
    @pytest.fixture()
    def queue(self) -> QueueController:
        items = [
            RankedItem(entity_type="discussion_topic", entity_id=n, vendor_id=1, title=t,
                       priority=p, rank=n)
            for n, (t, p) in enumerate([("B", "high"), ("C", "critical"), ("A", "high")], start=1)
        ]
        return QueueController(AsyncMock(spec=AgendaStore), 1, items=items)

    @pytest.mark.asyncio
    async def test_up_and_down(self, queue):
        assert await execute_command(queue, "up 3") == "Escalated 'A'"
        assert [i.title for i in queue.items] == ["B", "A", "C"]
        assert await execute_command(queue, "down #1") == "De-escalated 'B'"
        assert await execute_command(queue, "up 1") == "Already at the top"
        await queue.drain()

    @pytest.mark.asyncio
    async def test_unknown_rank(self, queue):
        assert await execute_command(queue, "resolve 9") == "No item #9"
        assert await execute_command(queue, "delete x") == "No item #x"
        assert await execute_command(queue, "up") == "Usage: up N"

    @pytest.mark.asyncio
    async def test_resolve(self, queue):
        assert await execute_command(queue, "resolve 2") == "Resolved 'C'"
        await queue.drain()
        queue.store.resolve_item.assert_awaited_once_with("discussion_topic", 2)

    @pytest.mark.asyncio
    async def test_edit(self, queue):
        assert await execute_command(queue, 'edit 1 title="B prime" ask=Refund') == "Updated 'B prime'"
        assert queue.items[0].ask == "Refund"
        assert await execute_command(queue, "edit 1 priority=urgent") == "Invalid priority: 'urgent'"
        assert await execute_command(queue, "edit 1 priority") == "Expected FIELD=VALUE, got 'priority'"
        await queue.drain()

    @pytest.mark.asyncio
    async def test_edit_with_unbalanced_quote(self, queue):
        reply = await execute_command(queue, 'edit 1 title="Vendor\'s SLA')
        assert reply.startswith("Could not parse edit")
        assert queue.items[0].title == "B"
        assert not queue.pending_writes
        assert await execute_command(queue, "edit 1 title=\"Vendor's SLA\"") == "Updated \"Vendor's SLA\""
        await queue.drain()

    @pytest.mark.asyncio
    async def test_add(self, queue):
        queue.store.create_topic.return_value = 17
        queue.store.fetch_agenda.return_value = list(queue.items)
        assert await execute_command(queue, "add Freight audit | 3 lanes | Share data") == \
            "Added discussion topic 17"
        queue.store.create_topic.assert_awaited_once_with(1, "Freight audit", "3 lanes", "Share data")
        assert await execute_command(queue, "add  ") == "Title is required"

    @pytest.mark.asyncio
    async def test_misc(self, queue):
        assert await execute_command(queue, "quit") == QUIT
        assert await execute_command(queue, "") == ""
        assert (await execute_command(queue, "export")).startswith("| # |")
        assert "Unknown command" in await execute_command(queue, "shout 1")
