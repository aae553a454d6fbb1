from __future__ import annotations

from pydantic import BaseModel

from app.models.enums import UserRole


class RequestIdentity(BaseModel):
    email: str | None = None
    auth_source: str = "anonymous"
    user_id: int | None = None
    role: UserRole | None = None
    supplier_id: int | None = None
