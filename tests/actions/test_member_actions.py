"""Tests for teamflow.actions.members."""

import asyncio

import pytest

from teamflow.actions import ActionPipeline, AddMember, CreateTeam, Failure, Success
from teamflow.models import Membership, MembershipStatus, PrincipalRef, Team


def user(principal_id):
    return PrincipalRef(kind="user", id=principal_id)


class TestAddMember:
    """Test cases for AddMember."""

    @pytest.mark.asyncio
    async def test_adds_member_with_role_defaults(self, service, draft_team, owner, bus, notifier, settings):
        """A new member gets the role's default permissions and bumps the counter."""
        result = await service.add_member(owner, str(draft_team.id), user("m1"), role="manager")

        assert isinstance(result, Success)
        assert result.data.permissions == settings.ROLE_PERMISSIONS["manager"]
        assert (await Team.get(id=draft_team.id)).members_count == 2
        assert bus.kinds()[-1] == "MemberJoined"
        assert "member_added" in notifier.kinds()
        assert "member_joined" in notifier.kinds()

    @pytest.mark.asyncio
    async def test_notification_opt_out(self, service, draft_team, owner, notifier):
        """send_notification=False skips the message to the added user only."""
        await service.add_member(owner, str(draft_team.id), user("m1"), send_notification=False)

        assert "member_added" not in notifier.kinds()
        assert "member_joined" in notifier.kinds()

    @pytest.mark.asyncio
    async def test_notifications_disabled_globally(self, db, settings, owner, notifier):
        """With notifications off no notification step runs at all."""
        quiet = ActionPipeline(settings.model_copy(update={"NOTIFICATIONS_ENABLED": False}), notifier=notifier)
        team = (await quiet.run(CreateTeam, owner, {"name": "Quiet Team"})).data
        result = await quiet.run(AddMember, owner, {"team_id": str(team.id), "user": user("m1")})

        assert isinstance(result, Success)
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_duplicate_member_is_conflict(self, service, draft_team, owner):
        """Adding a live member again reports already_member."""
        await service.add_member(owner, str(draft_team.id), user("m1"))

        result = await service.add_member(owner, str(draft_team.id), user("m1"))

        assert isinstance(result, Failure)
        assert result.code == "already_member"
        assert result.errors[0].field == "user"

    @pytest.mark.asyncio
    async def test_concurrent_adds_leave_one_membership(self, pipeline, draft_team, owner):
        """Two racing adds of the same user produce exactly one membership."""
        payload = {"team_id": str(draft_team.id), "user": user("racer")}

        results = await asyncio.gather(
            pipeline.run(AddMember, owner, payload),
            pipeline.run(AddMember, owner, payload),
        )

        assert sorted(r.ok for r in results) == [False, True]
        failure = next(r for r in results if not r.ok)
        assert failure.code in ("already_member", "conflict")
        assert await Membership.filter(team_id=draft_team.id, user_id="racer").count() == 1
        assert (await Team.get(id=draft_team.id)).members_count == 2

    @pytest.mark.asyncio
    async def test_member_limit(self, service, draft_team, owner):
        """A full team rejects new members."""
        await Team.filter(id=draft_team.id).update(settings={**draft_team.settings, "limits": {"max_members": 1}})

        result = await service.add_member(owner, str(draft_team.id), user("m1"))

        assert result.code == "member_limit_reached"

    @pytest.mark.asyncio
    async def test_archived_team_rejects_members(self, service, active_team, owner):
        """Archived teams are read-only for membership."""
        await service.archive(owner, str(active_team.id), "done")

        result = await service.add_member(owner, str(active_team.id), user("m1"))

        assert result.code == "forbidden"

    @pytest.mark.asyncio
    async def test_unknown_principal_in_directory(self, pipeline, service, draft_team, owner):
        """Principals of a registered kind must exist in the directory."""
        pipeline.services.directory.add(user("known"), email="known@example.com")

        missing = await service.add_member(owner, str(draft_team.id), user("ghost"))
        known = await service.add_member(owner, str(draft_team.id), user("known"))

        assert missing.code == "not_found"
        assert missing.errors[0].field == "user"
        assert isinstance(known, Success)

    @pytest.mark.asyncio
    async def test_member_without_permission_cannot_add(self, service, draft_team, owner):
        """Plain members cannot add others."""
        await service.add_member(owner, str(draft_team.id), user("m1"))

        result = await service.add_member(user("m1"), str(draft_team.id), user("m2"))

        assert result.code == "forbidden"

    @pytest.mark.asyncio
    async def test_removed_status_is_not_assignable(self, service, draft_team, owner):
        """Only active, inactive and suspended are valid initial statuses."""
        result = await service.add_member(owner, str(draft_team.id), user("m1"), status="removed")

        assert result.code == "validation_failed"


class TestRemoveMember:
    """Test cases for RemoveMember."""

    @pytest.mark.asyncio
    async def test_removal_by_admin(self, service, draft_team, owner, bus, hooks):
        """An admin removal soft-deletes the row and publishes MemberRemoved."""
        await service.add_member(owner, str(draft_team.id), user("m1"))

        result = await service.remove_member(owner, str(draft_team.id), user("m1"), reason="left company")

        assert isinstance(result, Success)
        membership = await Membership.get(team_id=draft_team.id, user_id="m1")
        assert membership.status == MembershipStatus.REMOVED
        assert membership.live_slot is None
        assert membership.removed_by == "user:owner-1"
        assert membership.removal_reason == "left company"
        assert bus.kinds()[-1] == "MemberRemoved"
        assert ("cleanup_member_resources", (str(draft_team.id), user("m1"))) in hooks.calls
        assert (await Team.get(id=draft_team.id)).members_count == 1

    @pytest.mark.asyncio
    async def test_self_removal_emits_member_left(self, service, draft_team, owner, bus):
        """Members may always remove themselves."""
        await service.add_member(owner, str(draft_team.id), user("m1"), role="viewer")

        result = await service.remove_member(user("m1"), str(draft_team.id), user("m1"))

        assert isinstance(result, Success)
        assert bus.kinds()[-1] == "MemberLeft"

    @pytest.mark.asyncio
    async def test_removed_member_can_rejoin(self, service, draft_team, owner):
        """History rows do not block a later membership."""
        await service.add_member(owner, str(draft_team.id), user("m1"))
        await service.remove_member(owner, str(draft_team.id), user("m1"))

        result = await service.add_member(owner, str(draft_team.id), user("m1"))

        assert isinstance(result, Success)
        assert await Membership.filter(team_id=draft_team.id, user_id="m1").count() == 2

    @pytest.mark.asyncio
    async def test_owner_cannot_leave_without_transfer(self, service, draft_team, owner):
        """Removing the owner without a successor is rejected."""
        result = await service.remove_member(owner, str(draft_team.id), owner)

        assert isinstance(result, Failure)
        assert result.code == "last_owner_removal"
        assert (await Membership.get(team_id=draft_team.id, user_id="owner-1")).live_slot is True

    @pytest.mark.asyncio
    async def test_ownership_transfer(self, service, draft_team, owner):
        """Transferring ownership promotes the successor and moves the owner reference."""
        await service.add_member(owner, str(draft_team.id), user("heir"), role="admin")

        result = await service.remove_member(
            owner, str(draft_team.id), owner, transfer_ownership=True, new_owner=user("heir")
        )

        assert isinstance(result, Success)
        heir = await Membership.get(team_id=draft_team.id, user_id="heir", live_slot=True)
        assert heir.role == "owner"
        assert heir.permissions == ["*"]
        team = await Team.get(id=draft_team.id)
        assert team.owner == user("heir")
        assert team.members_count == 1

    @pytest.mark.asyncio
    async def test_transfer_requires_active_member(self, service, draft_team, owner):
        """The successor must already be an active member."""
        await service.add_member(owner, str(draft_team.id), user("sleepy"), status="suspended")

        outsider = await service.remove_member(
            owner, str(draft_team.id), owner, transfer_ownership=True, new_owner=user("stranger")
        )
        suspended = await service.remove_member(
            owner, str(draft_team.id), owner, transfer_ownership=True, new_owner=user("sleepy")
        )

        assert outsider.code == "conflict"
        assert outsider.errors[0].field == "new_owner"
        assert suspended.code == "conflict"

    @pytest.mark.asyncio
    async def test_transfer_needs_new_owner(self, service, draft_team, owner):
        """transfer_ownership without new_owner is a validation error."""
        result = await service.remove_member(owner, str(draft_team.id), owner, transfer_ownership=True)

        assert result.code == "validation_failed"

    @pytest.mark.asyncio
    async def test_unknown_membership(self, service, draft_team, owner):
        """Removing someone who is not a member is not_found."""
        result = await service.remove_member(owner, str(draft_team.id), user("nobody"))

        assert result.code == "not_found"

    @pytest.mark.asyncio
    async def test_member_cannot_remove_others(self, service, draft_team, owner):
        """Removing another member needs remove or manage permissions."""
        await service.add_member(owner, str(draft_team.id), user("m1"))
        await service.add_member(owner, str(draft_team.id), user("m2"))

        result = await service.remove_member(user("m1"), str(draft_team.id), user("m2"))

        assert result.code == "forbidden"
