from .base import Action, ActionResult, ErrorDetail, ExecutionContext, Failure, SubAction, Success
from .invitations import AcceptInvitation, CancelInvitation, DeclineInvitation, InviteMember, ResendInvitation
from .members import AddMember, RemoveMember
from .pipeline import ActionPipeline
from .teams import ActivateTeam, ArchiveTeam, CreateTeam, RestoreTeam, ResumeTeam, SuspendTeam, UpdateTeam

__all__ = [
    "Action",
    "ActionPipeline",
    "ActionResult",
    "ErrorDetail",
    "ExecutionContext",
    "Failure",
    "SubAction",
    "Success",
    "CreateTeam",
    "ActivateTeam",
    "ResumeTeam",
    "SuspendTeam",
    "ArchiveTeam",
    "RestoreTeam",
    "UpdateTeam",
    "AddMember",
    "RemoveMember",
    "InviteMember",
    "AcceptInvitation",
    "DeclineInvitation",
    "ResendInvitation",
    "CancelInvitation",
]
