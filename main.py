from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import List, Optional
import logging

import config
from models import (
    User,
    UserCreate,
    UserUpdate,
    Registration,
    LoginRequest,
    PasscodeChange,
    Project,
    ProjectCreate,
    Membership,
    MemberCreate,
    ProjectMember,
    Task,
    TaskCreate,
    TaskDetail,
    TaskUpdate,
    TaskStatus,
    TaskStatusUpdate,
    TaskAssign,
    Dashboard,
    Token,
)
from auth import create_access_token, get_session_user_id
from accounts import AccountService
from projects import ProjectService
from errors import TrackerError, StorageError
from storage import Storage, build_storage

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Project Tracker API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

storage = build_storage()


def get_storage() -> Storage:
    return storage


def get_accounts(store: Storage = Depends(get_storage)) -> AccountService:
    return AccountService(store)


def get_projects(store: Storage = Depends(get_storage)) -> ProjectService:
    return ProjectService(store)


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError):
    if isinstance(exc, StorageError):
        logger.error(f"Storage failure on {request.method} {request.url.path}")
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


# Accounts

@app.post("/register", response_model=Registration, status_code=status.HTTP_201_CREATED)
def register(user: UserCreate, accounts: AccountService = Depends(get_accounts)):
    identity, passcode = accounts.register_identity(user.name, user.email)
    return Registration(user=identity.public(), passcode=passcode)


@app.post("/token", response_model=Token)
def login(login_data: LoginRequest, accounts: AccountService = Depends(get_accounts)):
    identity = accounts.authenticate(login_data.email, login_data.passcode)
    logger.info(f"Token generated for user: {identity.email}")
    return {"access_token": create_access_token(identity.id), "token_type": "bearer"}


@app.get("/users/me", response_model=User)
def read_users_me(
    user_id: Optional[str] = Depends(get_session_user_id),
    accounts: AccountService = Depends(get_accounts),
):
    return accounts.get_identity(user_id).public()


@app.put("/users/me", response_model=User)
def update_users_me(
    user_data: UserUpdate,
    user_id: Optional[str] = Depends(get_session_user_id),
    accounts: AccountService = Depends(get_accounts),
):
    return accounts.update_profile(user_id, user_data.name, user_data.email).public()


@app.post("/users/me/passcode", status_code=status.HTTP_204_NO_CONTENT)
def change_passcode(
    change: PasscodeChange,
    user_id: Optional[str] = Depends(get_session_user_id),
    accounts: AccountService = Depends(get_accounts),
):
    accounts.change_passcode(user_id, change.current_passcode, change.new_passcode, change.confirm_passcode)


@app.get("/users", response_model=List[User])
def list_users(
    user_id: Optional[str] = Depends(get_session_user_id),
    accounts: AccountService = Depends(get_accounts),
):
    return accounts.list_identities(user_id)


@app.get("/dashboard", response_model=Dashboard)
def dashboard(
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.dashboard(user_id)


# Projects

@app.post("/projects", response_model=Project, status_code=status.HTTP_201_CREATED)
def create_project(
    project: ProjectCreate,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.create_project(user_id, project.name, project.description)


@app.get("/projects", response_model=List[Project])
def get_projects_list(
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.list_projects(user_id)


@app.get("/projects/{project_id}", response_model=Project)
def get_project(
    project_id: str,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.get_project(user_id, project_id)


@app.put("/projects/{project_id}", response_model=Project)
def update_project(
    project_id: str,
    project_data: ProjectCreate,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.update_project(user_id, project_id, project_data.name, project_data.description)


@app.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(
    project_id: str,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    projects.delete_project(user_id, project_id)


@app.get("/projects/{project_id}/members", response_model=List[ProjectMember])
def get_project_members(
    project_id: str,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.list_members(user_id, project_id)


@app.post("/projects/{project_id}/members", response_model=Membership, status_code=status.HTTP_201_CREATED)
def add_project_member(
    project_id: str,
    member: MemberCreate,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.add_member(user_id, project_id, member.email)


@app.delete("/projects/{project_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_project_member(
    project_id: str,
    member_id: str,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    projects.remove_member(user_id, project_id, member_id)


@app.get("/projects/{project_id}/tasks", response_model=List[TaskDetail])
def get_project_tasks(
    project_id: str,
    status: Optional[TaskStatus] = None,
    assigned_to: Optional[str] = None,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.list_tasks(user_id, project_id=project_id, status=status, assigned_to=assigned_to)


# Tasks

@app.post("/tasks", response_model=Task, status_code=status.HTTP_201_CREATED)
def create_task(
    task: TaskCreate,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.create_task(
        user_id,
        task.project_id,
        task.title,
        description=task.description,
        status=task.status,
        due_date=task.due_date,
        assigned_to=task.assigned_to,
    )


@app.get("/tasks", response_model=List[TaskDetail])
def get_tasks(
    project_id: Optional[str] = None,
    status: Optional[TaskStatus] = None,
    assigned_to: Optional[str] = None,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.list_tasks(user_id, project_id=project_id, status=status, assigned_to=assigned_to)


@app.get("/tasks/{task_id}", response_model=Task)
def get_task(
    task_id: str,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.get_task(user_id, task_id)


@app.put("/tasks/{task_id}", response_model=Task)
def update_task(
    task_id: str,
    task_data: TaskUpdate,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.update_task(
        user_id,
        task_id,
        task_data.title,
        description=task_data.description,
        status=task_data.status,
        due_date=task_data.due_date,
        assigned_to=task_data.assigned_to,
    )


@app.put("/tasks/{task_id}/status", response_model=Task)
def update_task_status(
    task_id: str,
    update: TaskStatusUpdate,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.set_task_status(user_id, task_id, update.status)


@app.put("/tasks/{task_id}/assign", response_model=Task)
def assign_task(
    task_id: str,
    assignment: TaskAssign,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    return projects.assign_task(user_id, task_id, assignment.assigned_to)


@app.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: str,
    user_id: Optional[str] = Depends(get_session_user_id),
    projects: ProjectService = Depends(get_projects),
):
    projects.delete_task(user_id, task_id)
