"""Lookup of polymorphic principals through host-provided resolvers."""

import logging
from typing import Awaitable, Callable, Dict, Optional

from pydantic import BaseModel

from ..models.principal import PrincipalRef

logger = logging.getLogger(__name__)


class PrincipalProfile(BaseModel):
    ref: PrincipalRef
    email: Optional[str] = None
    name: Optional[str] = None


PrincipalLookup = Callable[[str], Awaitable[Optional[PrincipalProfile]]]


class PrincipalDirectory:
    """Dispatches lookups on ``ref.kind`` to resolvers registered by the host application."""

    def __init__(self) -> None:
        self._lookups: Dict[str, PrincipalLookup] = {}

    def register(self, kind: str, lookup: PrincipalLookup) -> None:
        self._lookups[kind] = lookup

    def kinds(self) -> list[str]:
        return sorted(self._lookups)

    async def get(self, ref: PrincipalRef) -> Optional[PrincipalProfile]:
        lookup = self._lookups.get(ref.kind)
        if lookup is None:
            logger.warning(f"No principal lookup registered for kind '{ref.kind}'")
            return None
        return await lookup(ref.id)

    async def exists(self, ref: PrincipalRef) -> bool:
        return await self.get(ref) is not None


class InMemoryPrincipalDirectory(PrincipalDirectory):
    """Directory backed by a dict of profiles; useful for scripts and tests."""

    def __init__(self) -> None:
        super().__init__()
        self._profiles: Dict[PrincipalRef, PrincipalProfile] = {}

    def add(self, ref: PrincipalRef, email: Optional[str] = None, name: Optional[str] = None) -> PrincipalProfile:
        profile = PrincipalProfile(ref=ref, email=email, name=name)
        self._profiles[ref] = profile
        if ref.kind not in self._lookups:
            self.register(ref.kind, self._lookup_for(ref.kind))
        return profile

    def _lookup_for(self, kind: str) -> PrincipalLookup:
        async def lookup(principal_id: str) -> Optional[PrincipalProfile]:
            return self._profiles.get(PrincipalRef(kind=kind, id=principal_id))

        return lookup
