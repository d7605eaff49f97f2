"""Feature module protocol and the list of installed modules.

A module owns its tables (DDL plus indexes) and its scheduled jobs. The
schema initializer and the scheduler only ever talk to modules through this
protocol.
"""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from pydantic import BaseModel


class ScheduledJob(BaseModel):
    """Scheduled job definition."""

    id: str
    name: str
    cron: str
    func: Callable[[], Awaitable[Any]]


class Module(Protocol):
    """Interface every feature module implements."""

    @property
    def name(self) -> str:
        """Module name (unique identifier)."""
        ...

    def get_table_schemas(self) -> dict[str, str]:
        """Return a mapping of table name to CREATE TABLE statement."""
        ...

    def get_indexes(self) -> list[str]:
        """Return CREATE INDEX statements for this module's tables."""
        ...

    def get_scheduled_jobs(self) -> list[ScheduledJob]:
        """Return scheduled jobs for this module."""
        ...


def installed_modules() -> list[Module]:
    """Modules in dependency order (household before tasks)."""
    from src.modules.household import HouseholdModule
    from src.modules.tasks import TasksModule

    return [HouseholdModule(), TasksModule()]


def get_all_table_schemas() -> dict[str, str]:
    """Collect table schemas across modules.

    Raises:
        ValueError: If two modules declare the same table
    """
    all_schemas: dict[str, str] = {}
    for module in installed_modules():
        for table_name, ddl in module.get_table_schemas().items():
            if table_name in all_schemas:
                msg = f"Duplicate table schema '{table_name}' from module '{module.name}'"
                raise ValueError(msg)
            all_schemas[table_name] = ddl
    return all_schemas


def get_all_indexes() -> list[str]:
    """Collect CREATE INDEX statements across modules."""
    return [index for module in installed_modules() for index in module.get_indexes()]


def get_all_scheduled_jobs() -> list[ScheduledJob]:
    """Collect scheduled jobs across modules."""
    return [job for module in installed_modules() for job in module.get_scheduled_jobs()]
