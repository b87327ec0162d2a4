import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

import policy
from accounts import check_email, check_session, load_actor, normalize_email, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from members import resolve_project_members
from models import (
    ROLE_MEMBER,
    Dashboard,
    Identity,
    Membership,
    Project,
    ProjectMember,
    Task,
    TaskDetail,
    TaskStatus,
)
from storage import Storage, Tables

logger = logging.getLogger(__name__)

RECENT_PROJECTS = 5
UPCOMING_TASKS = 10
ASSIGNED_TO_ME = "me"


def _check_status(value: Any) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in TaskStatus)
        raise ValidationError(f"Status must be one of: {allowed}")


def _task_order(task: Task):
    # Earliest due date first, undated tasks last
    return (task.due_date is None, task.due_date or date.max, task.created_at)


def _load_project(tx: Tables, project_id: str) -> Project:
    row = tx.get("projects", project_id)
    if row is None:
        raise NotFoundError("Project not found")
    return Project(**row)


def _load_task(tx: Tables, task_id: str) -> Task:
    row = tx.get("tasks", task_id)
    if row is None:
        raise NotFoundError("Task not found")
    return Task(**row)


def _memberships(tx: Tables, **equals) -> List[Membership]:
    return [Membership(**row) for row in tx.select_where("project_members", **equals)]


def _visible_projects(tx: Tables, actor: Identity) -> List[Project]:
    mine = _memberships(tx, user_id=actor.id)
    projects = [Project(**row) for row in tx.select_where("projects")]
    visible = [p for p in projects if policy.can_view_project(actor, p, mine)]
    return sorted(visible, key=lambda p: p.created_at, reverse=True)


def _check_assignee(tx: Tables, user_id: Optional[str], project: Project) -> Optional[str]:
    if not user_id:
        return None
    if tx.get("users", user_id) is None:
        raise NotFoundError("Assignee not found")
    if not policy.can_assign(user_id, project, _memberships(tx, project_id=project.id)):
        raise ValidationError("Assignee must be a member of the project")
    return user_id


def _tasks_of(tx: Tables, projects: List[Project]) -> List[Task]:
    project_ids = {p.id for p in projects}
    return [Task(**row) for row in tx.select_where("tasks", lambda t: t["project_id"] in project_ids)]


def _with_details(tx: Tables, tasks: List[Task], projects: List[Project]) -> List[TaskDetail]:
    names = {p.id: p.name for p in projects}
    assignee_ids = {t.assigned_to for t in tasks if t.assigned_to}
    users = {u["id"]: u for u in tx.select_where("users", lambda u: u["id"] in assignee_ids)}

    details = []
    for task in tasks:
        user = users.get(task.assigned_to) if task.assigned_to else None
        details.append(
            TaskDetail(
                **task.model_dump(),
                project_name=names.get(task.project_id, "Unknown Project"),
                assignee_name=user["name"] if user else None,
                assignee_email=user["email"] if user else None,
            )
        )
    return details


class ProjectService:
    def __init__(self, storage: Storage):
        self.storage = storage

    # Projects

    def create_project(self, actor_id: Optional[str], name: str, description: Optional[str] = None) -> Project:
        check_session(actor_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Project name is required")

        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            policy.require(policy.can_create_project(actor), "Only account creators can create projects", actor)
            project = Project(
                id=str(uuid.uuid4()),
                name=name,
                description=description,
                created_by=actor.id,
                created_at=utcnow(),
            )
            tx.insert("projects", project.model_dump(mode="json"))

        logger.info(f"Project {project.id} created by {actor.id}")
        return project

    def list_projects(self, actor_id: Optional[str]) -> List[Project]:
        check_session(actor_id)
        with self.storage.transaction() as tx:
            return _visible_projects(tx, load_actor(tx, actor_id))

    def get_project(self, actor_id: Optional[str], project_id: str) -> Project:
        check_session(actor_id)
        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            project = _load_project(tx, project_id)
            allowed = policy.can_view_project(actor, project, _memberships(tx, project_id=project.id))
            policy.require(allowed, "You don't have access to this project", actor)
        return project

    def update_project(
        self, actor_id: Optional[str], project_id: str, name: str, description: Optional[str] = None
    ) -> Project:
        check_session(actor_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Project name is required")

        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            project = _load_project(tx, project_id)
            policy.require(policy.can_manage_project(actor, project), "Only the project creator can edit the project", actor)
            row = tx.update("projects", project.id, {"name": name, "description": description})

        logger.info(f"Project {project.id} updated by {actor.id}")
        return Project(**row)

    def delete_project(self, actor_id: Optional[str], project_id: str) -> None:
        """Delete a project with its tasks and memberships in one transaction."""
        check_session(actor_id)
        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            project = _load_project(tx, project_id)
            policy.require(policy.can_manage_project(actor, project), "Only the project creator can delete the project", actor)
            tasks = tx.delete_where("tasks", project_id=project.id)
            members = tx.delete_where("project_members", project_id=project.id)
            tx.delete_where("projects", id=project.id)

        logger.info(f"Project {project.id} deleted by {actor.id} ({tasks} tasks, {members} memberships)")

    # Memberships

    def list_members(self, actor_id: Optional[str], project_id: str) -> List[ProjectMember]:
        check_session(actor_id)
        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            project = _load_project(tx, project_id)
            rows = _memberships(tx, project_id=project.id)
            policy.require(policy.can_view_project(actor, project, rows), "You don't have access to this project", actor)
            users = {u["id"]: u for u in tx.select_where("users")}

        result = []
        for member in resolve_project_members(project, rows):
            user = users.get(member.user_id)
            if user is None:
                continue
            result.append(ProjectMember(**member.model_dump(), name=user["name"], email=user["email"]))
        return result

    def add_member(self, actor_id: Optional[str], project_id: str, email: str) -> Membership:
        check_session(actor_id)
        email = normalize_email(email)
        if not email:
            raise ValidationError("Please provide an email address")
        email = check_email(email)

        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            project = _load_project(tx, project_id)
            policy.require(policy.can_manage_project(actor, project), "Only the project creator can add members", actor)

            users = tx.select_where("users", email=email)
            if not users:
                raise NotFoundError("No user found with this email address. They need to register first.")
            user_id = users[0]["id"]

            if user_id == project.created_by:
                raise ConflictError("The project creator is already a member")
            if tx.count("project_members", project_id=project.id, user_id=user_id):
                raise ConflictError("This user is already a member of the selected project")

            membership = Membership(project_id=project.id, user_id=user_id, role=ROLE_MEMBER, added_at=utcnow())
            tx.insert("project_members", membership.model_dump(mode="json"))

        logger.info(f"User {user_id} added to project {project.id} by {actor.id}")
        return membership

    def remove_member(self, actor_id: Optional[str], project_id: str, user_id: str) -> None:
        check_session(actor_id)
        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            project = _load_project(tx, project_id)
            policy.require(policy.can_manage_project(actor, project), "Only the project creator can remove members", actor)

            current = resolve_project_members(project, _memberships(tx, project_id=project.id))
            target = next((m for m in current if m.user_id == user_id), None)
            if target is None:
                raise NotFoundError("Member not found")
            policy.require(
                policy.can_remove_membership(actor, project, target), "You cannot remove the project creator", actor
            )

            tx.delete_where("project_members", project_id=project.id, user_id=user_id)
            # A removed member can no longer hold assignments in the project
            for row in tx.select_where("tasks", project_id=project.id, assigned_to=user_id):
                tx.update("tasks", row["id"], {"assigned_to": None})

        logger.info(f"User {user_id} removed from project {project.id} by {actor.id}")

    # Tasks

    def create_task(
        self,
        actor_id: Optional[str],
        project_id: str,
        title: str,
        description: Optional[str] = None,
        status: Any = TaskStatus.TODO,
        due_date: Optional[date] = None,
        assigned_to: Optional[str] = None,
    ) -> Task:
        check_session(actor_id)
        title = (title or "").strip()
        if not title:
            raise ValidationError("Task title is required")
        if not project_id:
            raise ValidationError("Please select a project")
        status = _check_status(status)

        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            project = _load_project(tx, project_id)
            policy.require(policy.can_mutate_task(actor, project), "Only the project creator can add tasks", actor)
            task = Task(
                id=str(uuid.uuid4()),
                project_id=project.id,
                title=title,
                description=description,
                status=status,
                due_date=due_date,
                assigned_to=_check_assignee(tx, assigned_to, project),
                created_at=utcnow(),
            )
            tx.insert("tasks", task.model_dump(mode="json"))

        logger.info(f"Task {task.id} created in project {project.id} by {actor.id}")
        return task

    def _patch_task(self, actor_id: Optional[str], task_id: str, patch: Dict[str, Any]) -> Task:
        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            task = _load_task(tx, task_id)
            project = _load_project(tx, task.project_id)
            policy.require(policy.can_mutate_task(actor, project), "Only the project creator can edit tasks", actor)
            if "assigned_to" in patch:
                patch["assigned_to"] = _check_assignee(tx, patch["assigned_to"], project)
            updated = Task(**{**task.model_dump(), **patch})
            tx.update("tasks", task.id, updated.model_dump(mode="json"))

        logger.info(f"Task {task.id} updated by {actor.id}: {sorted(patch)}")
        return updated

    def update_task(
        self,
        actor_id: Optional[str],
        task_id: str,
        title: str,
        description: Optional[str] = None,
        status: Any = TaskStatus.TODO,
        due_date: Optional[date] = None,
        assigned_to: Optional[str] = None,
    ) -> Task:
        check_session(actor_id)
        title = (title or "").strip()
        if not title:
            raise ValidationError("Task title is required")
        patch = {
            "title": title,
            "description": description,
            "status": _check_status(status),
            "due_date": due_date,
            "assigned_to": assigned_to,
        }
        return self._patch_task(actor_id, task_id, patch)

    def set_task_status(self, actor_id: Optional[str], task_id: str, status: Any) -> Task:
        check_session(actor_id)
        return self._patch_task(actor_id, task_id, {"status": _check_status(status)})

    def assign_task(self, actor_id: Optional[str], task_id: str, assigned_to: Optional[str]) -> Task:
        check_session(actor_id)
        return self._patch_task(actor_id, task_id, {"assigned_to": assigned_to})

    def delete_task(self, actor_id: Optional[str], task_id: str) -> None:
        check_session(actor_id)
        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            task = _load_task(tx, task_id)
            project = _load_project(tx, task.project_id)
            policy.require(policy.can_mutate_task(actor, project), "Only the project creator can delete tasks", actor)
            tx.delete_where("tasks", id=task.id)

        logger.info(f"Task {task.id} deleted by {actor.id}")

    def get_task(self, actor_id: Optional[str], task_id: str) -> Task:
        check_session(actor_id)
        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            task = _load_task(tx, task_id)
            project = _load_project(tx, task.project_id)
            allowed = policy.can_view_task(actor, task, project, _memberships(tx, project_id=project.id))
            policy.require(allowed, "You don't have access to this task", actor)
        return task

    def list_tasks(
        self,
        actor_id: Optional[str],
        project_id: Optional[str] = None,
        status: Any = None,
        assigned_to: Optional[str] = None,
    ) -> List[TaskDetail]:
        """Visible tasks, optionally narrowed by project, status and assignee ("me" is the actor)."""
        check_session(actor_id)
        wanted = _check_status(status) if status else None

        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            if project_id:
                project = _load_project(tx, project_id)
                allowed = policy.can_view_project(actor, project, _memberships(tx, project_id=project.id))
                policy.require(allowed, "You don't have access to this project", actor)
                projects = [project]
            else:
                projects = _visible_projects(tx, actor)
            tasks = _tasks_of(tx, projects)
            if assigned_to:
                assignee = actor.id if assigned_to == ASSIGNED_TO_ME else assigned_to
                tasks = [t for t in tasks if t.assigned_to == assignee]
            if wanted is not None:
                tasks = [t for t in tasks if t.status == wanted]
            return _with_details(tx, sorted(tasks, key=_task_order), projects)

    def dashboard(self, actor_id: Optional[str]) -> Dashboard:
        check_session(actor_id)
        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            projects = _visible_projects(tx, actor)
            tasks = sorted(_tasks_of(tx, projects), key=_task_order)
            upcoming = _with_details(tx, tasks[:UPCOMING_TASKS], projects)
            mine = _with_details(tx, [t for t in tasks if t.assigned_to == actor.id], projects)

        counts = {s.value: 0 for s in TaskStatus}
        for task in tasks:
            counts[task.status.value] += 1

        return Dashboard(
            projects=projects[:RECENT_PROJECTS],
            tasks=upcoming,
            my_tasks=mine,
            status_counts=counts,
        )
