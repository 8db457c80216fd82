"""Job persistence with compare-and-set status transitions."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from osintforge.data.db import Database
from osintforge.data.models import Job, JobStatus

logger = logging.getLogger(__name__)

# Columns a transition may set alongside the new status.
_MUTABLE_COLUMNS = {"output_data", "progress", "error_message", "started_at", "completed_at"}


class JobStore:
    def __init__(self, db: Database):
        self.db = db

    async def create(self, job: Job) -> Job:
        await self.db.execute(
            """
            INSERT INTO jobs (id, owner_id, tool_name, status, input_data, output_data, progress,
                              error_message, priority, created_at, started_at, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id,
                job.owner_id,
                job.tool_name,
                job.status.value,
                json.dumps(job.input),
                json.dumps(job.output) if job.output is not None else None,
                job.progress,
                job.error_message,
                job.priority,
                job.created_at,
                job.started_at,
                job.completed_at,
            ),
        )
        return job

    async def get(self, job_id: str) -> Optional[Job]:
        row = await self.db.fetch_one("SELECT * FROM jobs WHERE id = ?", (job_id,))
        return Job.from_row(row) if row else None

    async def list_by_status(self, status: JobStatus, limit: int = 1000) -> List[Job]:
        rows = await self.db.fetch_all(
            "SELECT * FROM jobs WHERE status = ? ORDER BY priority DESC, created_at ASC LIMIT ?",
            (status.value, limit),
        )
        return [Job.from_row(r) for r in rows]

    async def list_for_owner(self, owner_id: str, limit: int = 100) -> List[Job]:
        rows = await self.db.fetch_all(
            "SELECT * FROM jobs WHERE owner_id = ? ORDER BY created_at DESC LIMIT ?",
            (owner_id, limit),
        )
        return [Job.from_row(r) for r in rows]

    async def transition(
        self,
        job_id: str,
        expected: Iterable[JobStatus],
        target: JobStatus,
        **changes: Any,
    ) -> Optional[Job]:
        """
        Move ``job_id`` to ``target`` only if its current status is in ``expected``.

        Returns the updated job, or None when the row was not in an expected
        state (someone else won the race).
        """
        columns: Dict[str, Any] = {"status": target.value}
        for name, value in changes.items():
            if name == "output":
                name, value = "output_data", json.dumps(value) if value is not None else None
            if name not in _MUTABLE_COLUMNS:
                raise ValueError(f"Column {name} cannot be changed by a transition")
            columns[name] = value

        expected_values = [s.value for s in expected]
        assignments = ", ".join(f"{name} = ?" for name in columns)
        placeholders = ", ".join("?" for _ in expected_values)
        updated = await self.db.execute(
            f"UPDATE jobs SET {assignments} WHERE id = ? AND status IN ({placeholders})",
            (*columns.values(), job_id, *expected_values),
        )
        if updated != 1:
            return None
        return await self.get(job_id)

    async def update_progress(self, job_id: str, progress: int) -> bool:
        """Persist progress for a running job; never moves it backwards."""
        updated = await self.db.execute(
            "UPDATE jobs SET progress = ? WHERE id = ? AND status = ? AND progress <= ?",
            (progress, job_id, JobStatus.RUNNING.value, progress),
        )
        return updated == 1
