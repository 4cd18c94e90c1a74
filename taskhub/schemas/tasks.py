from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from taskhub.constants import TaskStatus


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None
    status: TaskStatus
    organization_id: int
    department_id: int
    created_by_id: int
    vendor_id: int | None
    is_deleted: bool
    deleted_at: datetime | None
    restore_count: int
    created_at: datetime
