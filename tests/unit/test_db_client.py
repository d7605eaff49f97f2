"""Tests for the SQLite client's filter parsing and conditional writes."""

import pytest

from src.core import db_client
from src.core.db_client import parse_filter, sanitize_param


@pytest.mark.unit
class TestParseFilter:
    """Test filter syntax translation."""

    def test_empty(self):
        assert parse_filter("") == ("", [])

    def test_and_with_typed_values(self):
        clause, params = parse_filter('is_recurring = "true" && points >= "5" && title = "Dishes"')

        assert clause == "is_recurring = ? AND points >= ? AND title = ?"
        assert params == [True, 5, "Dishes"]

    def test_null_comparisons(self):
        clause, params = parse_filter("penalized_at = null && assigned_to != null")

        assert clause == "penalized_at IS NULL AND assigned_to IS NOT NULL"
        assert params == []

    def test_or_group(self):
        clause, params = parse_filter(
            'due_date < "2026-03-02T10:00:00+00:00" && (status = "pending" || status = "in_progress")'
        )

        assert clause == "due_date < ? AND (status = ? OR status = ?)"
        assert params == ["2026-03-02T10:00:00+00:00", "pending", "in_progress"]

    def test_like_escapes_wildcards(self):
        clause, params = parse_filter('title ~ "50%_off"')

        assert clause == "title LIKE ? ESCAPE '\\'"
        assert params == ["%50\\%\\_off%"]

    def test_invalid_syntax(self):
        with pytest.raises(ValueError, match="Invalid filter syntax"):
            parse_filter("status == pending")

    def test_sanitize_param_escapes_quotes(self):
        assert sanitize_param('say "hi"') == 'say \\"hi\\"'


@pytest.mark.unit
class TestConditionalWrites:
    """Test the coordination primitives against a real database."""

    async def test_update_record_if_applies_once(self, child):
        first = await db_client.update_record_if(
            collection="members", record_id=child["id"], data={"name": "Ali"}, condition='name = "Alice"'
        )
        second = await db_client.update_record_if(
            collection="members", record_id=child["id"], data={"name": "Al"}, condition='name = "Alice"'
        )

        assert first is not None
        assert first["name"] == "Ali"
        assert second is None

    async def test_adjust_field_clamps_at_floor(self, child):
        member = await db_client.adjust_field(
            collection="members", record_id=child["id"], field="points", delta=-25, floor=0
        )

        assert member["points"] == 0

    async def test_adjust_field_missing_record(self, db):
        with pytest.raises(db_client.RecordNotFoundError):
            await db_client.adjust_field(collection="members", record_id="999", field="points", delta=1)

    async def test_update_records_returns_count(self, child, sibling):
        count = await db_client.update_records(
            collection="members", data={"points": 1}, filter_query='role = "child"'
        )

        assert count == 2

    async def test_update_records_requires_filter(self, db):
        with pytest.raises(ValueError, match="requires a filter"):
            await db_client.update_records(collection="members", data={"points": 1}, filter_query="")

    async def test_transaction_rolls_back_on_error(self, child):
        with pytest.raises(RuntimeError, match="abort"):
            async with db_client.transaction() as tx:
                await tx.adjust(collection="members", record_id=child["id"], field="points", delta=5)
                raise RuntimeError("abort")

        assert (await db_client.get_record(collection="members", record_id=child["id"]))["points"] == 10

    async def test_invalid_collection_name(self, db):
        with pytest.raises(db_client.DatabaseError):
            await db_client.list_records(collection="members; DROP TABLE members")

    async def test_missing_record(self, db):
        with pytest.raises(KeyError):
            await db_client.get_record(collection="members", record_id="12345")

    async def test_unique_index_collision_is_a_duplicate(self, make_template):
        template = await make_template()
        slots = []
        for due in ("2026-03-03T09:00:00+00:00", "2026-03-04T09:00:00+00:00"):
            slots.append(
                await db_client.create_record(
                    collection="tasks",
                    data={"title": "Feed the cat", "parent_task_id": template["id"], "due_date": due},
                )
            )

        with pytest.raises(db_client.DuplicateRecordError):
            await db_client.update_record_if(
                collection="tasks",
                record_id=slots[0]["id"],
                data={"due_date": slots[1]["due_date"]},
                condition='status = "pending"',
            )

        with pytest.raises(db_client.DuplicateRecordError):
            async with db_client.transaction() as tx:
                await tx.update_if(collection="tasks", record_id=slots[0]["id"], data={"due_date": slots[1]["due_date"]})
