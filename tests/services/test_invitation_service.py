"""Tests for teamflow.services.invitations."""

from datetime import timedelta

import pytest

from teamflow.exceptions import (
    AlreadyMember,
    Conflict,
    DuplicatePendingInvitation,
    InvalidOrExpiredInvitation,
    MemberLimitReached,
    PendingInvitationLimitReached,
    ResendLimitExceeded,
    ResendTooSoon,
    ValidationFailed,
)
from teamflow.models import Invitation, InvitationStatus, Membership, PrincipalRef, Team
from teamflow.services.invitations import InvitationService
from teamflow.services.permissions import PermissionResolver
from teamflow.utils.clock import utcnow


@pytest.fixture
def invitations(db, settings):
    return InvitationService(settings, PermissionResolver(settings))


class TestCreate:
    """Test cases for InvitationService.create."""

    @pytest.mark.asyncio
    async def test_creates_pending_invitation_with_token(self, invitations, draft_team, owner, settings):
        """A new invitation is pending, carries a 64 character token and defaults its expiry."""
        invitation = await invitations.create(draft_team, "New.Person@Example.com", "member", inviter=owner)

        assert invitation.status == InvitationStatus.PENDING
        assert invitation.email == "new.person@example.com"
        assert len(invitation.token) == settings.INVITATION_TOKEN_LENGTH
        assert invitation.permissions == settings.ROLE_PERMISSIONS["member"]
        assert invitation.inviter == owner
        remaining = invitation.expires_at - utcnow()
        assert timedelta(days=6, hours=23) < remaining <= timedelta(days=7)

    @pytest.mark.asyncio
    async def test_duplicate_pending_invitation_is_rejected(self, invitations, draft_team):
        """A second pending invitation for the same email conflicts."""
        await invitations.create(draft_team, "a@example.com", "member")

        with pytest.raises(DuplicatePendingInvitation) as exc_info:
            await invitations.create(draft_team, "A@example.com", "admin")

        assert exc_info.value.field == "email"
        assert isinstance(exc_info.value, Conflict)

    @pytest.mark.asyncio
    async def test_expired_pending_row_does_not_block_new_invitation(self, invitations, draft_team):
        """A stale pending invitation is marked expired and a fresh one can be sent."""
        stale = await invitations.create(draft_team, "a@example.com", "member", ttl=timedelta(seconds=-1))

        fresh = await invitations.create(draft_team, "a@example.com", "member")

        await stale.refresh_from_db()
        assert stale.status == InvitationStatus.EXPIRED
        assert stale.pending_slot is None
        assert fresh.status == InvitationStatus.PENDING

    @pytest.mark.asyncio
    async def test_explicit_expiry_must_be_in_future(self, invitations, draft_team):
        """An explicit expires_at in the past is a validation failure."""
        with pytest.raises(ValidationFailed) as exc_info:
            await invitations.create(draft_team, "a@example.com", "member", expires_at=utcnow() - timedelta(minutes=1))

        assert exc_info.value.to_errors()[0]["field"] == "expires_at"

    @pytest.mark.asyncio
    async def test_member_limit_blocks_invitations(self, invitations, draft_team):
        """A team whose active memberships reached the ceiling cannot invite more."""
        draft_team.settings = {**draft_team.settings, "limits": {"max_members": 1}}
        await draft_team.save()

        with pytest.raises(MemberLimitReached):
            await invitations.create(draft_team, "a@example.com", "member")

    @pytest.mark.asyncio
    async def test_pending_invitation_limit(self, settings, draft_team):
        """The per-team pending invitation ceiling is enforced."""
        limited = settings.model_copy(update={"MAX_PENDING_INVITATIONS_PER_TEAM": 2})
        service = InvitationService(limited, PermissionResolver(limited))
        await service.create(draft_team, "one@example.com", "member")
        await service.create(draft_team, "two@example.com", "member")

        with pytest.raises(PendingInvitationLimitReached):
            await service.create(draft_team, "three@example.com", "member")

    @pytest.mark.asyncio
    async def test_token_generation_retries_on_collision(self, invitations, draft_team, mocker):
        """Token generation loops until it finds an unused token."""
        existing = await invitations.create(draft_team, "a@example.com", "member")
        mocker.patch(
            "teamflow.services.invitations.random_token",
            side_effect=[existing.token, "f" * 64],
        )

        token = await invitations.generate_token()

        assert token == "f" * 64


class TestAccept:
    """Test cases for accepting and declining invitations."""

    @pytest.mark.asyncio
    async def test_round_trip_creates_member_and_token_is_single_use(self, invitations, draft_team):
        """Accepting yields a member-role membership; a second accept fails."""
        user = PrincipalRef(kind="user", id="joiner")
        invitation = await invitations.create(draft_team, "a@x.com", "member")

        membership = await invitations.accept(invitation.token, user)

        assert membership.role == "member"
        assert membership.user == user
        await invitation.refresh_from_db()
        assert invitation.status == InvitationStatus.ACCEPTED
        assert invitation.acceptor == user
        assert invitation.accepted_at is not None
        team = await Team.get(id=draft_team.id)
        assert team.members_count == 2

        with pytest.raises(InvalidOrExpiredInvitation):
            await invitations.accept(invitation.token, user)

    @pytest.mark.asyncio
    async def test_already_expired_invitation_cannot_be_accepted(self, invitations, draft_team):
        """A negative ttl makes the token unusable while its status still reads pending."""
        invitation = await invitations.create(draft_team, "a@x.com", "member", ttl=timedelta(seconds=-1))

        with pytest.raises(InvalidOrExpiredInvitation):
            await invitations.accept(invitation.token, PrincipalRef(kind="user", id="late"))

        await invitation.refresh_from_db()
        assert invitation.status == InvitationStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_token(self, invitations):
        """A token that was never issued is rejected."""
        with pytest.raises(InvalidOrExpiredInvitation):
            await invitations.accept("nope", PrincipalRef(kind="user", id="x"))

    @pytest.mark.asyncio
    async def test_existing_member_leaves_invitation_untouched(self, invitations, draft_team, owner):
        """A user who already holds a live membership gets AlreadyMember."""
        invitation = await invitations.create(draft_team, "owner@example.com", "member")

        with pytest.raises(AlreadyMember):
            await invitations.accept(invitation.token, owner)

        await invitation.refresh_from_db()
        assert invitation.status == InvitationStatus.PENDING
        assert await Membership.filter(team_id=draft_team.id).count() == 1

    @pytest.mark.asyncio
    async def test_decline_marks_declined(self, invitations, draft_team):
        """Declining records the rejection time and frees the pending slot."""
        invitation = await invitations.create(draft_team, "a@example.com", "member")

        declined = await invitations.decline(invitation.token)

        assert declined.status == InvitationStatus.DECLINED
        assert declined.rejected_at is not None
        assert declined.pending_slot is None
        with pytest.raises(InvalidOrExpiredInvitation):
            await invitations.decline(invitation.token)

    @pytest.mark.asyncio
    async def test_cancel_only_pending(self, invitations, draft_team):
        """Cancelling is a one-way transition out of pending."""
        invitation = await invitations.create(draft_team, "a@example.com", "member")

        cancelled = await invitations.cancel(invitation)

        assert cancelled.status == InvitationStatus.CANCELLED
        with pytest.raises(Conflict):
            await invitations.cancel(cancelled)


class TestResend:
    """Test cases for InvitationService.resend."""

    @pytest.mark.asyncio
    async def test_resend_regenerates_token_and_extends_expiry(self, invitations, draft_team):
        """Resending after the cooldown swaps the token and bumps the counter."""
        invitation = await invitations.create(draft_team, "a@example.com", "member")
        await Invitation.filter(id=invitation.id).update(
            last_sent_at=utcnow() - timedelta(days=2), expires_at=utcnow() + timedelta(days=1)
        )
        await invitation.refresh_from_db()
        old_token = invitation.token

        resent = await invitations.resend(invitation)

        assert resent.token != old_token
        assert resent.resend_count == 1
        assert resent.expires_at - utcnow() > timedelta(days=6)

    @pytest.mark.asyncio
    async def test_resend_inside_cooldown_is_too_soon(self, invitations, draft_team):
        """A fresh invitation cannot be resent straight away."""
        invitation = await invitations.create(draft_team, "a@example.com", "member")

        with pytest.raises(ResendTooSoon):
            await invitations.resend(invitation)

    @pytest.mark.asyncio
    async def test_resend_limit_ignores_elapsed_time(self, invitations, draft_team, settings):
        """Past the limit, resend fails no matter how long ago the last send was."""
        invitation = await invitations.create(draft_team, "a@example.com", "member")
        await Invitation.filter(id=invitation.id).update(
            resend_count=settings.INVITATION_RESEND_LIMIT, last_sent_at=utcnow() - timedelta(days=365)
        )
        await invitation.refresh_from_db()

        for _ in range(2):
            with pytest.raises(ResendLimitExceeded):
                await invitations.resend(invitation)

    @pytest.mark.asyncio
    async def test_resend_requires_pending(self, invitations, draft_team):
        """Terminal invitations cannot be resent."""
        invitation = await invitations.create(draft_team, "a@example.com", "member")
        await invitations.cancel(invitation)

        with pytest.raises(Conflict):
            await invitations.resend(invitation)


class TestSweep:
    """Test cases for the expired invitation sweep helpers."""

    @pytest.mark.asyncio
    async def test_list_and_purge_expired(self, invitations, draft_team):
        """Only invitations past their expiry are listed and purged."""
        await invitations.create(draft_team, "old@example.com", "member", ttl=timedelta(days=-10))
        await invitations.create(draft_team, "fresh@example.com", "member")

        assert [i.email for i in await invitations.list_expired(5)] == ["old@example.com"]
        assert await invitations.purge_expired(5, dry_run=True) == 1
        assert await invitations.purge_expired(5) == 1

        old = await Invitation.get(email="old@example.com")
        assert old.status == InvitationStatus.EXPIRED
        assert await invitations.purge_expired(0, delete=True) == 1
        assert not await Invitation.exists(email="old@example.com")

    @pytest.mark.asyncio
    async def test_pending_for_team_excludes_expired(self, invitations, draft_team):
        """pending_for_team lists only actionable invitations."""
        await invitations.create(draft_team, "old@example.com", "member", ttl=timedelta(seconds=-1))
        await invitations.create(draft_team, "fresh@example.com", "member")

        pending = await invitations.pending_for_team(draft_team)

        assert [i.email for i in pending] == ["fresh@example.com"]
