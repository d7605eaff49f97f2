"""Tasks module: recurring templates, instances, pickups and transfers."""

from src.core.module import ScheduledJob


class TasksModule:
    """Tasks module for household chores and allowances.

    Provides:
    - Recurring templates and idempotent instance materialization
    - Overdue penalties applied at most once per instance
    - Single/series scoped edits and deletes
    - Hanging task pickup, sibling transfers and parent renegotiation requests
    - Scheduled materialization and penalty jobs
    """

    @property
    def name(self) -> str:
        """Module name (unique identifier)."""
        return "tasks"

    def get_table_schemas(self) -> dict[str, str]:
        """Return table schemas for this module."""
        return {
            "tasks": """CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created TEXT NOT NULL DEFAULT (datetime('now')),
        updated TEXT NOT NULL DEFAULT (datetime('now')),
        title TEXT NOT NULL,
        description TEXT,
        points INTEGER NOT NULL DEFAULT 0 CHECK (points >= 0),
        penalty_points INTEGER NOT NULL DEFAULT 0 CHECK (penalty_points >= 0),
        assigned_to INTEGER REFERENCES members(id),
        created_by INTEGER REFERENCES members(id),
        task_type TEXT NOT NULL DEFAULT 'non_negotiable'
            CHECK (task_type IN ('non_negotiable', 'negotiable', 'hanging')),
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'in_progress', 'completed', 'approved', 'rejected', 'archived')),
        due_date TEXT,
        is_recurring INTEGER NOT NULL DEFAULT 0,
        is_recurring_enabled INTEGER NOT NULL DEFAULT 0,
        parent_task_id INTEGER REFERENCES tasks(id),
        recurring_pattern TEXT CHECK (recurring_pattern IN ('daily', 'weekly', 'monthly')),
        recurring_time TEXT,
        recurring_days TEXT,
        recurring_day_of_month INTEGER,
        sequence_number INTEGER,
        penalized_at TEXT,
        completed_at TEXT,
        approved_at TEXT,
        archived_at TEXT,
        rejection_reason TEXT,
        rejected_after_deadline INTEGER NOT NULL DEFAULT 0,
        is_available_for_pickup INTEGER NOT NULL DEFAULT 0,
        hanging_expires_at TEXT,
        original_assignee INTEGER REFERENCES members(id),
        point_split TEXT
    )""",
            "task_transfers": """CREATE TABLE IF NOT EXISTS task_transfers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created TEXT NOT NULL DEFAULT (datetime('now')),
        updated TEXT NOT NULL DEFAULT (datetime('now')),
        task_id INTEGER NOT NULL REFERENCES tasks(id),
        from_member_id INTEGER REFERENCES members(id),
        to_member_id INTEGER NOT NULL REFERENCES members(id),
        transfer_reason TEXT NOT NULL,
        negotiation_id INTEGER REFERENCES negotiations(id)
    )""",
            "negotiations": """CREATE TABLE IF NOT EXISTS negotiations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created TEXT NOT NULL DEFAULT (datetime('now')),
        updated TEXT NOT NULL DEFAULT (datetime('now')),
        task_id INTEGER NOT NULL REFERENCES tasks(id),
        initiator_id INTEGER NOT NULL REFERENCES members(id),
        recipient_id INTEGER NOT NULL REFERENCES members(id),
        negotiation_type TEXT NOT NULL DEFAULT 'sibling_transfer'
            CHECK (negotiation_type IN ('sibling_transfer', 'parent_negotiation')),
        points_offered_to_recipient INTEGER NOT NULL DEFAULT 0 CHECK (points_offered_to_recipient >= 0),
        points_kept_by_initiator INTEGER NOT NULL DEFAULT 0 CHECK (points_kept_by_initiator >= 0),
        requested_points INTEGER CHECK (requested_points >= 0),
        requested_due_date TEXT,
        requested_description TEXT,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'accepted', 'rejected', 'expired', 'withdrawn')),
        expires_at TEXT NOT NULL,
        offer_message TEXT,
        response_message TEXT,
        responded_at TEXT,
        parent_negotiation_id INTEGER REFERENCES negotiations(id)
    )""",
        }

    def get_indexes(self) -> list[str]:
        """Return indexes for this module's tables."""
        return [
            # One live instance per series slot; archived rows free the slot
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_series_slot ON tasks (parent_task_id, due_date) "
            "WHERE parent_task_id IS NOT NULL AND status != 'archived'",
            "CREATE INDEX IF NOT EXISTS idx_tasks_parent_task_id ON tasks (parent_task_id, sequence_number)",
            "CREATE INDEX IF NOT EXISTS idx_tasks_status_due_date ON tasks (status, due_date)",
            "CREATE INDEX IF NOT EXISTS idx_tasks_assigned_to ON tasks (assigned_to)",
            "CREATE INDEX IF NOT EXISTS idx_task_transfers_task_id ON task_transfers (task_id)",
            "CREATE INDEX IF NOT EXISTS idx_negotiations_task_id ON negotiations (task_id, status)",
        ]

    def get_scheduled_jobs(self) -> list[ScheduledJob]:
        """Return scheduled jobs for this module."""
        import src.modules.tasks.scheduler_jobs

        return src.modules.tasks.scheduler_jobs.get_scheduled_jobs()
