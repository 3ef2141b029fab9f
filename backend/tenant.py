"""
Tenant context: who is acting, and in which workspace.

The context is an immutable value built once per request by the caller and
passed explicitly into every service function. Nothing here is global, so two
requests handled concurrently can never see each other's identity.
"""

from typing import Optional

from pydantic import BaseModel, Field


class TenantContext(BaseModel):
    workspace_id: int = Field(..., gt=0)
    user_id: int = Field(..., gt=0)
    organization_id: Optional[int] = None

    class Config:
        frozen = True

    def __str__(self) -> str:
        return f"workspace={self.workspace_id} user={self.user_id}"
