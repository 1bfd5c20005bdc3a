from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from ..models.enums import MembershipStatus, Role
from ..models.principal import PrincipalRef


class MemberAdd(BaseModel):
    team_id: str = Field(min_length=1)
    user: PrincipalRef
    role: Role = Role.MEMBER
    permissions: Optional[List[str]] = None
    status: MembershipStatus = Field(default=MembershipStatus.ACTIVE)
    send_notification: bool = True

    @model_validator(mode="after")
    def _assignable_status(self):
        if self.status not in (MembershipStatus.ACTIVE, MembershipStatus.INACTIVE, MembershipStatus.SUSPENDED):
            raise ValueError("status must be one of active, inactive, suspended")
        return self


class MemberRemove(BaseModel):
    team_id: str = Field(min_length=1)
    user: PrincipalRef
    reason: Optional[str] = Field(default=None, max_length=1000)
    transfer_ownership: bool = False
    new_owner: Optional[PrincipalRef] = None

    @model_validator(mode="after")
    def _new_owner_when_transferring(self):
        if self.transfer_ownership and self.new_owner is None:
            raise ValueError("new_owner is required when transfer_ownership is set")
        return self


class MemberRead(BaseModel):
    id: str
    team_id: str
    user: str
    role: str
    permissions: List[str] = Field(default_factory=list)
    status: str
    joined_at: Optional[str] = None
