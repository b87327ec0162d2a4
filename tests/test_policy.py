from datetime import datetime, timezone

import pytest

import policy
from errors import Unauthorized
from models import Identity, Membership, Project, Task

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_identity(user_id, is_creator=False):
    return Identity(
        id=user_id,
        name=user_id.title(),
        email=f"{user_id}@tracker.io",
        is_creator=is_creator,
        created_at=NOW,
        passcode_hash="x",
    )


OWNER = make_identity("owner", is_creator=True)
MEMBER = make_identity("member")
OUTSIDER = make_identity("outsider")
PROJECT = Project(id="p1", name="Launch", created_by="owner", created_at=NOW)
OTHER_PROJECT = Project(id="p2", name="Other", created_by="outsider", created_at=NOW)
MEMBERSHIPS = [Membership(project_id="p1", user_id="member", added_at=NOW)]
TASK = Task(id="t1", project_id="p1", title="Write docs", created_at=NOW)


def test_first_identity_bootstraps_as_creator():
    assert policy.is_creator(0) is True
    assert policy.is_creator(1) is False
    assert policy.is_creator(7) is False


@pytest.mark.parametrize(
    "actor, expected",
    [(OWNER, True), (MEMBER, True), (OUTSIDER, False), (None, False)],
)
def test_can_view_project(actor, expected):
    assert policy.can_view_project(actor, PROJECT, MEMBERSHIPS) is expected


def test_membership_of_another_project_grants_nothing():
    rows = [Membership(project_id="p2", user_id="member", added_at=NOW)]
    assert policy.can_view_project(MEMBER, PROJECT, rows) is False


def test_creator_sees_project_without_membership_rows():
    assert policy.can_view_project(OWNER, PROJECT, []) is True


@pytest.mark.parametrize(
    "actor, expected",
    [(OWNER, True), (MEMBER, False), (OUTSIDER, False), (None, False)],
)
def test_only_creator_manages_and_mutates(actor, expected):
    assert policy.can_manage_project(actor, PROJECT) is expected
    assert policy.can_mutate_task(actor, PROJECT) is expected


def test_account_creator_flag_does_not_grant_other_projects():
    assert policy.can_manage_project(OWNER, OTHER_PROJECT) is False
    assert policy.can_view_project(OWNER, OTHER_PROJECT, MEMBERSHIPS) is False


def test_task_visibility_follows_project():
    assert policy.can_view_task(MEMBER, TASK, PROJECT, MEMBERSHIPS) is True
    assert policy.can_view_task(OUTSIDER, TASK, PROJECT, MEMBERSHIPS) is False


def test_assignment_grants_no_edit_rights():
    assigned = TASK.model_copy(update={"assigned_to": "member"})
    assert policy.can_view_task(MEMBER, assigned, PROJECT, MEMBERSHIPS) is True
    assert policy.can_mutate_task(MEMBER, PROJECT) is False


def test_creator_membership_can_never_be_removed():
    creator_row = Membership(project_id="p1", user_id="owner", role="creator", added_at=NOW)
    for actor in (OWNER, MEMBER, OUTSIDER, None):
        assert policy.can_remove_membership(actor, PROJECT, creator_row) is False


def test_only_creator_removes_members():
    assert policy.can_remove_membership(OWNER, PROJECT, MEMBERSHIPS[0]) is True
    assert policy.can_remove_membership(MEMBER, PROJECT, MEMBERSHIPS[0]) is False


def test_can_create_project_requires_creator_account():
    assert policy.can_create_project(OWNER) is True
    assert policy.can_create_project(MEMBER) is False
    assert policy.can_create_project(None) is False


def test_can_assign():
    assert policy.can_assign("owner", PROJECT, MEMBERSHIPS) is True
    assert policy.can_assign("member", PROJECT, MEMBERSHIPS) is True
    assert policy.can_assign("outsider", PROJECT, MEMBERSHIPS) is False


def test_require_raises_unauthorized():
    policy.require(True, "fine")
    with pytest.raises(Unauthorized) as exc:
        policy.require(False, "nope", MEMBER)
    assert exc.value.message == "nope"
    assert exc.value.status_code == 403
