from typing import Iterable, List

from models import ROLE_CREATOR, Membership, Project


def resolve_project_members(project: Project, memberships: Iterable[Membership]) -> List[Membership]:
    """
    Effective member list of a project.

    The creator always comes first with role "creator". When no stored row
    exists for the creator, a synthetic one dated at the project's creation is
    used, so repeated calls over unchanged rows return identical lists.
    Remaining rows follow, most recently added first.
    """
    rows = [m for m in memberships if m.project_id == project.id]
    creator_rows = [m for m in rows if m.user_id == project.created_by]

    if creator_rows:
        creator = creator_rows[0].model_copy(update={"role": ROLE_CREATOR})
    else:
        creator = Membership(
            project_id=project.id,
            user_id=project.created_by,
            role=ROLE_CREATOR,
            added_at=project.created_at,
        )

    others = [m for m in rows if m.user_id != project.created_by]
    others.sort(key=lambda m: m.added_at, reverse=True)
    return [creator] + others
