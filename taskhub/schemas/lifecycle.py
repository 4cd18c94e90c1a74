from __future__ import annotations

from pydantic import BaseModel


class CascadeReportOut(BaseModel):
    """Outcome of a cascading delete or a restore."""

    root_kind: str
    root_id: int
    operation: str
    affected: dict[str, list[int]]
    reassigned_task_ids: list[int] = []
    unlinked_task_ids: list[int] = []
    relinked_task_ids: list[int] = []
    unwatched_task_ids: list[int] = []
