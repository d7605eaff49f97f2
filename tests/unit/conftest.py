"""Pytest configuration and fixtures for unit tests."""

import pytest

from src.core import db_client
from src.core.config import settings
from src.domain.create_models import RecurringTemplateCreate
from src.domain.member import MemberRole
from src.domain.task import RecurringPattern
from src.modules.household import points
from src.modules.tasks import service
from src.services import notification_service
from tests.unit.timeline import at


@pytest.fixture
async def db(tmp_path, monkeypatch):
    """Point db_client at a fresh SQLite file with the full schema."""
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "chorepoints.db"))
    monkeypatch.setattr(settings, "household_timezone", "UTC")
    monkeypatch.setattr(settings, "notification_webhook_url", None)
    await db_client.init_db()
    yield
    await notification_service.drain()
    await db_client.close_connection()


@pytest.fixture
async def parent(db) -> dict:
    return await points.create_member(name="Mum", role=MemberRole.PARENT)


@pytest.fixture
async def child(db) -> dict:
    return await points.create_member(name="Alice", role=MemberRole.CHILD, points=10)


@pytest.fixture
async def sibling(db) -> dict:
    return await points.create_member(name="Bob", role=MemberRole.CHILD, points=0)


@pytest.fixture
def make_template(parent, child):
    """Factory creating a daily 09:00 template on day D at 08:00 unless overridden."""

    async def _make(**overrides) -> dict:
        now = overrides.pop("now", at(8))
        fields = {
            "title": "Feed the cat",
            "points": 4,
            "penalty_points": 5,
            "assigned_to": child["id"],
            "created_by": parent["id"],
            "recurring_pattern": RecurringPattern.DAILY,
            "recurring_time": "09:00",
        }
        fields.update(overrides)
        return await service.create_recurring_template(params=RecurringTemplateCreate(**fields), now=now)

    return _make
