from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from ..models.enums import TeamType


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    INVITE_ONLY = "invite_only"
    RESTRICTED = "restricted"


class TeamLimitsInput(BaseModel):
    max_members: Optional[int] = Field(default=None, ge=1, le=1000)
    max_files: Optional[int] = Field(default=None, ge=0)
    max_storage_gb: Optional[int] = Field(default=None, ge=0)

    class Config:
        extra = "forbid"


class TeamSettingsInput(BaseModel):
    visibility: Optional[Visibility] = None
    features: Optional[List[str]] = None
    limits: Optional[TeamLimitsInput] = None
    allow_invitations: Optional[bool] = None
    language: Optional[str] = Field(default=None, max_length=10)

    class Config:
        extra = "forbid"


class TeamCreate(BaseModel):
    name: str = Field(min_length=3, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    type: TeamType = Field(default=TeamType.PROJECT, description="Kind of team")
    settings: Optional[TeamSettingsInput] = None


class TeamTransitionInput(BaseModel):
    team_id: str = Field(min_length=1)
    notes: Optional[str] = Field(default=None, max_length=1000)


class TeamSuspend(BaseModel):
    team_id: str = Field(min_length=1)
    reason: str = Field(min_length=1, max_length=1000)
    suspension_until: Optional[datetime] = Field(
        default=None, description="Must be in the future; checked by the action"
    )


class TeamArchive(BaseModel):
    team_id: str = Field(min_length=1)
    reason: str = Field(min_length=1, max_length=1000)
    preserve_data: bool = True


class TeamSettingsUpdate(BaseModel):
    visibility: Optional[Visibility] = None
    max_members: Optional[int] = Field(default=None, ge=1, le=1000)
    allow_invitations: Optional[bool] = None
    language: Optional[str] = Field(default=None, max_length=10)
    timezone: Optional[str] = None

    class Config:
        extra = "forbid"

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return value


class TeamUpdate(BaseModel):
    team_id: str = Field(min_length=1)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    settings: Optional[TeamSettingsUpdate] = None


class TeamRead(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    type: str
    status: str
    settings: Dict[str, Any] = Field(default_factory=dict)
    owner: Optional[str] = None
    members_count: int = 0
    tenant_id: Optional[str] = None
    last_activity_at: Optional[str] = None
    created_at: Optional[str] = None


class TeamAnalytics(BaseModel):
    team_id: str
    name: str
    status: str
    total_members: int = 0
    active_members: int = 0
    members_by_role: Dict[str, int] = Field(default_factory=dict)
    pending_invitations: int = 0
    joined_last_30_days: int = 0
    removed_last_30_days: int = 0
    files_count: int = 0
    storage_used: int = 0
    created_at: Optional[str] = None
    last_activity_at: Optional[str] = None


class GlobalAnalytics(BaseModel):
    total_teams: int = 0
    teams_by_status: Dict[str, int] = Field(default_factory=dict)
    total_members: int = 0
    active_members: int = 0
    pending_invitations: int = 0
    teams_created_today: int = 0
    teams_created_this_week: int = 0
    teams_created_this_month: int = 0
