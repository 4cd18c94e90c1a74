from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from taskhub.constants import Role


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: str
    role: Role
    organization_id: int
    department_id: int
    is_deleted: bool
    created_at: datetime
