"""Polymorphic principal references (users, service accounts, organizations...)."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class PrincipalRef(BaseModel):
    """A `{kind, id}` pair identifying any principal the host application knows about."""

    kind: str = Field(min_length=1, max_length=100, description="Principal type, e.g. 'user'")
    id: str = Field(min_length=1, max_length=255, description="Principal identifier")

    class Config:
        frozen = True

    @classmethod
    def of(cls, kind: Optional[str], id: Any) -> Optional["PrincipalRef"]:
        if not kind or id is None:
            return None
        return cls(kind=kind, id=str(id))

    @property
    def tag(self) -> str:
        return f"user:{self.id}"

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"
