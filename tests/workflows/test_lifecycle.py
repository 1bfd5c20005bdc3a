"""Tests for teamflow.workflows.lifecycle."""

import pytest

from teamflow.exceptions import Forbidden, InvalidTransition
from teamflow.models import Membership, PrincipalRef, Team, TeamStatus
from teamflow.services.permissions import PermissionResolver
from teamflow.workflows.lifecycle import TRANSITIONS, TeamWorkflow


@pytest.fixture
def workflow(settings):
    return TeamWorkflow(PermissionResolver(settings))


class TestTransitionTable:
    """Test cases for the static transition table."""

    def test_every_target_is_a_known_state(self):
        """No transition can land outside the four lifecycle states."""
        for transition in TRANSITIONS.values():
            assert transition.target in set(TeamStatus)
            assert set(transition.sources) <= set(TeamStatus)

    def test_resume_and_activate_are_distinct(self):
        """Both land on active but only activate starts from draft."""
        assert TeamStatus.DRAFT in TRANSITIONS["activate"].sources
        assert TRANSITIONS["resume"].sources == (TeamStatus.SUSPENDED,)
        assert TRANSITIONS["resume"].target == TRANSITIONS["activate"].target == TeamStatus.ACTIVE

    def test_each_transition_names_its_operation(self):
        """Transitions carry the name of the action that performs them."""
        assert {t.operation for t in TRANSITIONS.values()} == {
            "ActivateTeam",
            "SuspendTeam",
            "ResumeTeam",
            "ArchiveTeam",
            "RestoreTeam",
        }


class TestTeamWorkflow:
    """Test cases for TeamWorkflow guards and writes."""

    @pytest.mark.asyncio
    async def test_archive_from_draft_is_invalid(self, workflow, draft_team, owner):
        """Archiving a draft team fails on the state guard."""
        with pytest.raises(InvalidTransition):
            await workflow.transition(draft_team, "archive", owner)

        assert (await Team.get(id=draft_team.id)).status == TeamStatus.DRAFT

    @pytest.mark.asyncio
    async def test_restore_only_from_archived(self, workflow, draft_team, owner):
        """Restore is rejected until the team is archived."""
        await workflow.transition(draft_team, "activate", owner)
        with pytest.raises(InvalidTransition):
            await workflow.transition(draft_team, "restore", owner)

        await workflow.transition(draft_team, "archive", owner, reason="done")
        await workflow.transition(draft_team, "restore", owner, notes="back")

        assert (await Team.get(id=draft_team.id)).status == TeamStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_actor_without_permissions_is_forbidden(self, workflow, draft_team):
        """A viewer cannot suspend or activate a team."""
        viewer = PrincipalRef(kind="user", id="viewer")
        await Membership.create(
            team_id=draft_team.id, user_type="user", user_id="viewer", role="viewer", permissions=["view_team"]
        )

        with pytest.raises(Forbidden):
            await workflow.transition(draft_team, "activate", viewer)

    @pytest.mark.asyncio
    async def test_any_listed_permission_is_enough(self, workflow, draft_team):
        """Holding only activate_team is sufficient to activate."""
        operator = PrincipalRef(kind="user", id="operator")
        await Membership.create(
            team_id=draft_team.id, user_type="user", user_id="operator", role="member", permissions=["activate_team"]
        )

        await workflow.transition(draft_team, "activate", operator)

        assert draft_team.status == TeamStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_audit_record_is_merged_into_settings(self, workflow, draft_team, owner):
        """Each transition writes previous status, actor, reason and time under settings.lifecycle."""
        await workflow.transition(draft_team, "activate", owner, notes="launch")
        await workflow.transition(draft_team, "suspend", owner, reason="billing")

        team = await Team.get(id=draft_team.id)
        lifecycle = team.settings["lifecycle"]
        assert lifecycle["activate"]["previous_status"] == "draft"
        assert lifecycle["activate"]["notes"] == "launch"
        assert lifecycle["suspend"]["previous_status"] == "active"
        assert lifecycle["suspend"]["reason"] == "billing"
        assert lifecycle["suspend"]["actor"] == str(owner)
        assert lifecycle["suspend"]["at"].endswith("Z")
        assert team.settings["visibility"] == "private"

    @pytest.mark.asyncio
    async def test_stale_status_write_conflicts(self, workflow, draft_team, owner):
        """The status write is conditional on the status the guard saw."""
        stale = await Team.get(id=draft_team.id)
        await workflow.transition(draft_team, "activate", owner)

        await Team.filter(id=draft_team.id).update(status=TeamStatus.SUSPENDED)
        stale.status = TeamStatus.DRAFT
        with pytest.raises(InvalidTransition):
            await workflow.transition(stale, "activate", owner)

    @pytest.mark.asyncio
    async def test_unknown_transition(self, workflow, draft_team, owner):
        """Unknown transition names are rejected."""
        with pytest.raises(InvalidTransition):
            await workflow.transition(draft_team, "delete", owner)

    @pytest.mark.asyncio
    async def test_allowed_transitions(self, workflow, draft_team, owner):
        """The owner sees the transitions valid from the current state."""
        assert await workflow.allowed_transitions(draft_team, owner) == ["activate"]

        await workflow.transition(draft_team, "activate", owner)

        assert sorted(await workflow.allowed_transitions(draft_team, owner)) == ["archive", "suspend"]
        assert await workflow.allowed_transitions(draft_team, PrincipalRef(kind="user", id="x")) == []
