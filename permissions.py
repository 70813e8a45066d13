"""
Access control for projects and their tasks.

The creator of a project is its only editor. Collaborators can view the
project and toggle the state of its tasks. Everyone else is a stranger.
Callers fetch the project first (so a missing resource is reported as
NotFound) and authorize before mutating anything.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from errors import NotAuthorized

logger = logging.getLogger(__name__)


class Action(str, Enum):
    VIEW = "view"
    EDIT_PROJECT_FIELDS = "editProjectFields"
    DELETE_PROJECT = "deleteProject"
    MANAGE_COLLABORATORS = "manageCollaborators"
    CREATE_TASK = "createTask"
    EDIT_TASK_FIELDS = "editTaskFields"
    DELETE_TASK = "deleteTask"
    TOGGLE_TASK_STATE = "toggleTaskState"


CREATOR_ACTIONS = frozenset({
    Action.EDIT_PROJECT_FIELDS,
    Action.DELETE_PROJECT,
    Action.MANAGE_COLLABORATORS,
    Action.CREATE_TASK,
    Action.EDIT_TASK_FIELDS,
    Action.DELETE_TASK,
})

VIEWER_ACTIONS = frozenset({Action.VIEW, Action.TOGGLE_TASK_STATE})


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self):
        return self.allowed


ALLOWED = Decision(True)


def is_creator(actor_id, project: dict) -> bool:
    return str(project.get("creator")) == str(actor_id)


def is_collaborator(actor_id, project: dict) -> bool:
    # collaborators may be raw ids or populated user documents
    for collaborator in project.get("collaborators", []):
        member_id = collaborator.get("_id") if isinstance(collaborator, dict) else collaborator
        if str(member_id) == str(actor_id):
            return True
    return False


def authorize(actor_id, project: dict, action: Action) -> Decision:
    """Decide whether `actor_id` may perform `action` on `project` (or a task inside it)."""
    action = Action(action)
    if action in CREATOR_ACTIONS and is_creator(actor_id, project):
        return ALLOWED
    if action in VIEWER_ACTIONS and (is_creator(actor_id, project) or is_collaborator(actor_id, project)):
        return ALLOWED
    return Decision(False, "NotAuthorized")


def require(actor_id, project: dict, action: Action, message: str = "Action not allowed") -> None:
    decision = authorize(actor_id, project, action)
    if not decision:
        logger.warning("Denied %s on project %s for user %s", Action(action).value, project.get("_id"), actor_id)
        raise NotAuthorized(message)
