"""
Pydantic models for DevPulse.
Defines the stored entities, request bodies and API responses.

Python code uses snake_case; JSON (API bodies and the Gist document)
uses the camelCase aliases.
"""

import uuid
from datetime import date, datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Priority = Literal["low", "medium", "high"]
TaskStatus = Literal["pending", "in-progress", "completed"]

SCORE_FIELDS = ("code_quality", "impact", "documentation", "testing", "overall")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)


# ---------------------------------------------------------------------------
# Stored entities
# ---------------------------------------------------------------------------

class UserPublic(CamelModel):
    """A GitHub user as exposed through the API."""

    id: str = Field(..., description="GitHub user id")
    username: str = Field(..., description="GitHub login")
    name: Optional[str] = None
    email: Optional[str] = None
    avatar: Optional[str] = Field(None, description="Avatar image URL")


class User(UserPublic):
    """A GitHub user together with the OAuth token issued at login."""

    github_token: str = Field(..., description="OAuth access token (never returned by the API)")

    def public(self) -> UserPublic:
        return UserPublic.model_validate(self.model_dump(exclude={"github_token"}))


class Project(CamelModel):
    """A GitHub repository registered by its owner."""

    id: str = Field(default_factory=new_id)
    name: str
    repo_url: str
    owner: str = Field(..., description="Repository owner login")
    repo: str = Field(..., description="Repository name")
    owner_id: str = Field(..., description="Id of the DevPulse user who owns the project")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "3f1c7d2e-9b1a-4c55-8f43-5e7a0d6b2c11",
                "name": "DevPulse",
                "repoUrl": "https://github.com/octocat/devpulse",
                "owner": "octocat",
                "repo": "devpulse",
                "ownerId": "583231",
                "createdAt": "2026-02-18T12:21:07.843605+00:00",
                "updatedAt": "2026-02-18T12:21:07.843605+00:00"
            }
        }
    )


class Task(CamelModel):
    """A unit of work assigned to a contributor of a project."""

    id: str = Field(default_factory=new_id)
    project_id: str
    title: str
    description: str = ""
    assignee: str = Field(..., description="GitHub login of the assignee")
    priority: Priority = "medium"
    status: TaskStatus = "pending"
    due_date: Optional[date] = None
    created_by: str = Field(..., description="Username of the task's creator")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AnalyticsRecord(CamelModel):
    """Scores for one analyzed commit. Immutable once stored."""

    id: str = Field(default_factory=new_id)
    project_id: str
    contributor: str
    commit_sha: str
    commit_message: str
    commit_date: Optional[datetime] = None
    code_quality: int = 0
    impact: int = 0
    documentation: int = 0
    testing: int = 0
    overall: int = 0
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    summary: str = ""
    error: bool = Field(False, description="True when the scores are the fallback defaults")
    analyzed_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)


class StoreDocument(CamelModel):
    """The four collections, as persisted by the document-backed store."""

    version: int = 0
    projects: List[Project] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    users: List[User] = Field(default_factory=list)
    analytics: List[AnalyticsRecord] = Field(default_factory=list)


class Identity(BaseModel):
    """The authenticated requester, decoded from the session token."""

    id: str
    username: str


# ---------------------------------------------------------------------------
# Commit scoring
# ---------------------------------------------------------------------------

class FileChange(BaseModel):
    filename: str
    additions: int = 0
    deletions: int = 0


class CommitDetails(BaseModel):
    """Commit metadata handed to the scorer."""

    sha: str
    message: str
    author: str
    date: Optional[datetime] = None
    additions: int = 0
    deletions: int = 0
    files: List[FileChange] = Field(default_factory=list)
    patch: str = Field("", description="Excerpt of the first changed file's patch")


class CommitScore(CamelModel):
    """Scores returned by the LLM for a single commit."""

    code_quality: int = Field(..., ge=0, le=100)
    impact: int = Field(..., ge=0, le=100)
    documentation: int = Field(..., ge=0, le=100)
    testing: int = Field(..., ge=0, le=100)
    overall: int = Field(..., ge=0, le=100)
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    summary: str = ""
    error: bool = False


class ProjectInsights(CamelModel):
    strengths: List[str] = Field(default_factory=list)
    focus_areas: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class ScoreSummary(CamelModel):
    """Mean scores across a set of analytics records."""

    code_quality: int = 0
    impact: int = 0
    documentation: int = 0
    testing: int = 0
    overall: int = 0


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class ProjectCreate(CamelModel):
    name: str = Field(..., min_length=1)
    repo_url: str = Field(..., min_length=1)
    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)


class ProjectUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    repo_url: Optional[str] = Field(None, min_length=1)
    owner: Optional[str] = Field(None, min_length=1)
    repo: Optional[str] = Field(None, min_length=1)

    @field_validator("name", "repo_url", "owner", "repo")
    @classmethod
    def reject_null(cls, v: Optional[str]) -> str:
        if v is None:
            raise ValueError("field may not be null")
        return v


class TaskCreate(CamelModel):
    project_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    assignee: str = Field(..., min_length=1)
    description: Optional[str] = ""
    priority: Optional[Priority] = "medium"
    due_date: Optional[date] = None


class TaskUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    assignee: Optional[str] = Field(None, min_length=1)
    priority: Optional[Priority] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[date] = None

    @field_validator("title", "description", "assignee", "priority", "status")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("field may not be null")
        return v


class AnalyzeRequest(CamelModel):
    project_id: str = Field(..., min_length=1)
    contributor: str = Field(..., min_length=1, description="GitHub login whose commits are analyzed")
    since: Optional[str] = Field(None, description="ISO 8601 timestamp; only commits after it")


class ParseUrlRequest(BaseModel):
    url: str


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class RepositoryCoordinates(BaseModel):
    owner: str
    repo: str


class AnalyzeResponse(CamelModel):
    message: str
    analytics: List[AnalyticsRecord]


class ContributorAnalytics(CamelModel):
    contributor: str
    total_commits: int = Field(..., ge=0)
    scores: ScoreSummary
    analytics: List[AnalyticsRecord]


class InsightsResponse(CamelModel):
    insights: ProjectInsights
    scores: ScoreSummary


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    """Response from GET /health endpoint."""

    status: str = Field(..., description="Service health status")
    store: str = Field(..., description="Active record store backend")
