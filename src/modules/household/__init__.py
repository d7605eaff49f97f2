"""Household module: members and their point balances."""

from src.core.module import ScheduledJob


class HouseholdModule:
    """Members, point balances and reward redemptions.

    The points column carries a CHECK constraint so that no code path can
    persist a negative balance, whatever it computes.
    """

    @property
    def name(self) -> str:
        """Module name (unique identifier)."""
        return "household"

    def get_table_schemas(self) -> dict[str, str]:
        """Return table schemas for this module."""
        return {
            "members": """CREATE TABLE IF NOT EXISTS members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created TEXT NOT NULL DEFAULT (datetime('now')),
        updated TEXT NOT NULL DEFAULT (datetime('now')),
        name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'child' CHECK (role IN ('parent', 'child')),
        points INTEGER NOT NULL DEFAULT 0 CHECK (points >= 0)
    )""",
            "reward_redemptions": """CREATE TABLE IF NOT EXISTS reward_redemptions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created TEXT NOT NULL DEFAULT (datetime('now')),
        updated TEXT NOT NULL DEFAULT (datetime('now')),
        member_id INTEGER NOT NULL REFERENCES members(id),
        reward_id TEXT NOT NULL,
        points_cost INTEGER NOT NULL CHECK (points_cost >= 0),
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'approved', 'denied')),
        denial_reason TEXT,
        reviewed_at TEXT
    )""",
        }

    def get_indexes(self) -> list[str]:
        """Return indexes for this module's tables."""
        return [
            "CREATE INDEX IF NOT EXISTS idx_reward_redemptions_member_id ON reward_redemptions (member_id)",
            "CREATE INDEX IF NOT EXISTS idx_reward_redemptions_status ON reward_redemptions (status)",
        ]

    def get_scheduled_jobs(self) -> list[ScheduledJob]:
        """Return scheduled jobs for this module."""
        return []
