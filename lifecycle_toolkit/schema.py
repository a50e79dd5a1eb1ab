"""
Default SQLAlchemy models for the workspace/project/task entity graph.

Every model carries the lifecycle columns from ``SoftDeleteMixin``. Parent
references are plain indexed columns rather than foreign key constraints so
that the retention sweeper can purge each entity type independently.
"""

from datetime import datetime
from typing import Dict, Optional, Type

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .soft_delete.mixins import SoftDeleteMixin


class Base(DeclarativeBase):
    pass


class User(Base, SoftDeleteMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(200))


class Workspace(Base, SoftDeleteMixin):
    __tablename__ = "workspaces"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)


class Project(Base, SoftDeleteMixin):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    workspace_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)


class Section(Base, SoftDeleteMixin):
    __tablename__ = "sections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    project_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)


class Task(Base, SoftDeleteMixin):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    project_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    creator_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)


class SubTask(Base, SoftDeleteMixin):
    __tablename__ = "sub_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    task_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)


class Comment(Base, SoftDeleteMixin):
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    task_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)


class TaskTag(Base, SoftDeleteMixin):
    __tablename__ = "task_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    task_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)


class TaskAttachment(Base, SoftDeleteMixin):
    __tablename__ = "task_attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    task_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)


class WorkspaceMember(Base, SoftDeleteMixin):
    __tablename__ = "workspace_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workspace_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    role: Mapped[str] = mapped_column(String(50), default="member")


class ProjectMember(Base, SoftDeleteMixin):
    __tablename__ = "project_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)


class CalendarEvent(Base, SoftDeleteMixin):
    __tablename__ = "calendar_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    workspace_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Notification(Base, SoftDeleteMixin):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)


MODELS: Dict[str, Type[Base]] = {
    "user": User,
    "workspace": Workspace,
    "project": Project,
    "section": Section,
    "task": Task,
    "sub_task": SubTask,
    "comment": Comment,
    "task_tag": TaskTag,
    "task_attachment": TaskAttachment,
    "workspace_member": WorkspaceMember,
    "project_member": ProjectMember,
    "calendar_event": CalendarEvent,
    "notification": Notification,
}
