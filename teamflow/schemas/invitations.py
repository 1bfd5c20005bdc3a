from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class InvitableRole(str, Enum):
    MEMBER = "member"
    MANAGER = "manager"
    ADMIN = "admin"


class InvitationCreate(BaseModel):
    team_id: str = Field(min_length=1)
    email: EmailStr
    role: InvitableRole = InvitableRole.MEMBER
    permissions: Optional[List[str]] = None
    expires_at: Optional[datetime] = None
    message: Optional[str] = Field(default=None, max_length=1000)


class InvitationToken(BaseModel):
    token: str = Field(min_length=1, max_length=255)


class InvitationRef(BaseModel):
    invitation_id: str = Field(min_length=1)


class InvitationRead(BaseModel):
    id: str
    team_id: str
    email: str
    role: str
    status: str
    created_at: Optional[str] = None
    expires_at: Optional[str] = None
    resend_count: int = 0
