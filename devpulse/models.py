"""
SQLAlchemy database models for DevPulse.
Defines the tables behind the SQL record store: users, projects, tasks and analytics.
"""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from devpulse.database import Base


class UserRow(Base):
    """
    A GitHub user who has signed in.

    Attributes:
        id: GitHub user id
        username: GitHub login
        github_token: OAuth token issued at login
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    username = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    avatar = Column(String, nullable=True)
    github_token = Column(String, nullable=False)

    def __repr__(self):
        return f"<UserRow(username='{self.username}')>"


class ProjectRow(Base):
    """
    A repository registered as a project.

    Deleting a project deletes its tasks.
    """
    __tablename__ = "projects"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    repo_url = Column(String, nullable=False)
    owner = Column(String, nullable=False)
    repo = Column(String, nullable=False)
    owner_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    tasks = relationship("TaskRow", back_populates="project", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<ProjectRow(name='{self.name}', repo='{self.owner}/{self.repo}')>"


class TaskRow(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    assignee = Column(String, nullable=False)
    priority = Column(String, nullable=False, default="medium")
    status = Column(String, nullable=False, default="pending")
    due_date = Column(Date, nullable=True)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    project = relationship("ProjectRow", back_populates="tasks")

    def __repr__(self):
        return f"<TaskRow(title='{self.title}', status='{self.status}')>"


class AnalyticsRow(Base):
    """
    Scores for one analyzed commit.

    Analytics rows reference the project id without a foreign key: they
    outlive project deletion, matching the other store backends.
    """
    __tablename__ = "analytics"

    id = Column(String, primary_key=True)
    project_id = Column(String, nullable=False, index=True)
    contributor = Column(String, nullable=False, index=True)
    commit_sha = Column(String, nullable=False)
    commit_message = Column(Text, nullable=False)
    commit_date = Column(DateTime(timezone=True), nullable=True)
    code_quality = Column(Integer, nullable=False, default=0)
    impact = Column(Integer, nullable=False, default=0)
    documentation = Column(Integer, nullable=False, default=0)
    testing = Column(Integer, nullable=False, default=0)
    overall = Column(Integer, nullable=False, default=0)
    strengths = Column(JSON, nullable=False, default=list)
    improvements = Column(JSON, nullable=False, default=list)
    summary = Column(Text, nullable=False, default="")
    error = Column(Boolean, nullable=False, default=False)
    analyzed_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<AnalyticsRow(sha='{self.commit_sha[:7]}', overall={self.overall})>"
