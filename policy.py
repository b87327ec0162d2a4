"""
Authorization rules for projects, memberships and tasks.

Every check is a pure function over records already loaded from the store.
An actor of ``None`` stands for a request without a session and is denied
everything.
"""

import logging
from typing import Iterable, Optional

from errors import Unauthorized
from models import ROLE_CREATOR, Identity, Membership, Project, Task

logger = logging.getLogger(__name__)


def is_creator(existing_identities: int) -> bool:
    """The first registered identity bootstraps as an account creator."""
    return existing_identities == 0


def can_create_project(actor: Optional[Identity]) -> bool:
    return actor is not None and actor.is_creator


def can_view_project(actor: Optional[Identity], project: Project, memberships: Iterable[Membership]) -> bool:
    if actor is None:
        return False

    if actor.id == project.created_by:
        return True

    return any(m.project_id == project.id and m.user_id == actor.id for m in memberships)


def can_manage_project(actor: Optional[Identity], project: Project) -> bool:
    """Create/update/delete of the project, its tasks and its memberships."""
    return actor is not None and actor.id == project.created_by


def can_view_task(actor: Optional[Identity], task: Task, project: Project, memberships: Iterable[Membership]) -> bool:
    if task.project_id != project.id:
        return False
    return can_view_project(actor, project, memberships)


def can_mutate_task(actor: Optional[Identity], project: Project) -> bool:
    # Assignment grants nothing; only the project creator edits tasks
    return can_manage_project(actor, project)


def can_remove_membership(actor: Optional[Identity], project: Project, membership: Membership) -> bool:
    if membership.role == ROLE_CREATOR:
        return False
    return can_manage_project(actor, project)


def can_assign(user_id: str, project: Project, memberships: Iterable[Membership]) -> bool:
    """An assignee must be the creator or a member of the task's project."""
    if user_id == project.created_by:
        return True
    return any(m.project_id == project.id and m.user_id == user_id for m in memberships)


def require(allowed: bool, message: str, actor: Optional[Identity] = None) -> None:
    if not allowed:
        logger.warning(f"Permission denied for {actor.id if actor else 'anonymous'}: {message}")
        raise Unauthorized(message)
