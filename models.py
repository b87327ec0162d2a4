from pydantic import BaseModel, EmailStr
from typing import Optional, List, Dict
from datetime import datetime, date
from enum import Enum


class TaskStatus(str, Enum):
    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    BLOCKED = "Blocked"


ROLE_CREATOR = "creator"
ROLE_MEMBER = "member"


class UserBase(BaseModel):
    email: EmailStr
    name: str


class UserCreate(UserBase):
    pass


class UserUpdate(UserBase):
    pass


class User(UserBase):
    id: str
    is_creator: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class Identity(User):
    """Stored account row, including the passcode hash."""

    passcode_hash: str

    def public(self) -> User:
        return User(**self.model_dump(exclude={"passcode_hash"}))


class Registration(BaseModel):
    user: User
    passcode: str


class LoginRequest(BaseModel):
    email: str
    passcode: str


class PasscodeChange(BaseModel):
    current_passcode: str
    new_passcode: str
    confirm_passcode: str


class ProjectBase(BaseModel):
    name: str
    description: Optional[str] = None


class ProjectCreate(ProjectBase):
    pass


class Project(ProjectBase):
    id: str
    created_by: str
    created_at: datetime

    class Config:
        from_attributes = True


class Membership(BaseModel):
    project_id: str
    user_id: str
    role: str = ROLE_MEMBER
    added_at: datetime


class MemberCreate(BaseModel):
    email: str


class ProjectMember(Membership):
    name: str
    email: str


class TaskBase(BaseModel):
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[date] = None
    assigned_to: Optional[str] = None


class TaskCreate(TaskBase):
    project_id: str


class TaskUpdate(TaskBase):
    pass


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskAssign(BaseModel):
    assigned_to: Optional[str] = None


class Task(TaskBase):
    id: str
    project_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class TaskDetail(Task):
    """Task as listed, with its project name and assignee contact."""

    project_name: str
    assignee_name: Optional[str] = None
    assignee_email: Optional[str] = None


class Dashboard(BaseModel):
    projects: List[Project] = []
    tasks: List[TaskDetail] = []
    my_tasks: List[TaskDetail] = []
    status_counts: Dict[str, int] = {}


class Token(BaseModel):
    access_token: str
    token_type: str
