"""
Application services for DevPulse.
Each service checks ownership, then reads or writes the record store.
"""

import logging
from typing import Callable, Dict, List

from devpulse.aggregator import average_scores
from devpulse.ai_service import AIService, patch_excerpt
from devpulse.auth import create_session_token, require_ownership
from devpulse.exceptions import AccessDeniedError, GitHubAPIError, NotFoundError
from devpulse.github_client import GitHubClient, GitHubOAuthClient
from devpulse.schemas import (
    AnalyticsRecord,
    AnalyzeRequest,
    AnalyzeResponse,
    CommitDetails,
    ContributorAnalytics,
    FileChange,
    Identity,
    InsightsResponse,
    Project,
    ProjectCreate,
    ProjectInsights,
    ProjectUpdate,
    ScoreSummary,
    Task,
    TaskCreate,
    TaskUpdate,
    User,
    utcnow,
)
from devpulse.store import RecordStore

logger = logging.getLogger(__name__)

# Commits requested from GitHub, and how many of those are scored per request
COMMITS_PAGE_SIZE = 10
MAX_COMMITS_PER_ANALYSIS = 5

GitHubClientFactory = Callable[[str], GitHubClient]


def load_user(store: RecordStore, identity: Identity) -> User:
    """
    Stored user record (with GitHub token) for the requester.

    Raises:
        NotFoundError: If the user has no stored record (e.g. the store was reset)
    """
    user = store.get_user(identity.id)
    if user is None:
        raise NotFoundError("User not found")
    return user


class AuthService:
    """Completes GitHub sign-in."""

    def __init__(self, store: RecordStore, oauth_client: GitHubOAuthClient, jwt_secret: str):
        self.store = store
        self.oauth_client = oauth_client
        self.jwt_secret = jwt_secret

    def complete_login(self, code: str) -> str:
        """
        Exchange an OAuth code, save the GitHub user and issue a session token.

        Returns:
            Signed session token

        Raises:
            GitHubAPIError: If GitHub rejects the code or the profile request fails
        """
        access_token = self.oauth_client.exchange_code(code)
        user = self.oauth_client.get_user(access_token)
        self.store.save_user(user)
        return create_session_token(user, self.jwt_secret)


class ProjectService:
    """
    CRUD for projects. Unknown ids are reported as not found before the
    ownership check runs.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def create(self, identity: Identity, data: ProjectCreate) -> Project:
        project = Project(owner_id=identity.id, **data.model_dump())
        return self.store.add_project(project)

    def list(self, identity: Identity) -> List[Project]:
        return self.store.list_projects(identity.id)

    def get(self, identity: Identity, project_id: str) -> Project:
        project = self.store.get_project(project_id)
        if project is None:
            raise NotFoundError("Project not found")
        if project.owner_id != identity.id:
            raise AccessDeniedError()
        return project

    def update(self, identity: Identity, project_id: str, data: ProjectUpdate) -> Project:
        self.get(identity, project_id)
        updated = self.store.update_project(project_id, data.model_dump(exclude_unset=True))
        if updated is None:
            raise NotFoundError("Project not found")
        return updated

    def delete(self, identity: Identity, project_id: str) -> None:
        self.get(identity, project_id)
        self.store.delete_project(project_id)
        logger.info("Project %s deleted by %s", project_id, identity.username)


class TaskService:
    """CRUD for tasks, all gated on owning the task's project."""

    def __init__(self, store: RecordStore):
        self.store = store

    def create(self, identity: Identity, data: TaskCreate) -> Task:
        require_ownership(self.store, data.project_id, identity)
        task = Task(
            project_id=data.project_id,
            title=data.title,
            description=data.description or "",
            assignee=data.assignee,
            priority=data.priority or "medium",
            status="pending",
            due_date=data.due_date,
            created_by=identity.username,
        )
        return self.store.add_task(task)

    def list(self, identity: Identity, project_id: str) -> List[Task]:
        require_ownership(self.store, project_id, identity)
        return self.store.list_tasks(project_id)

    def _owned_task(self, identity: Identity, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        require_ownership(self.store, task.project_id, identity)
        return task

    def update(self, identity: Identity, task_id: str, data: TaskUpdate) -> Task:
        self._owned_task(identity, task_id)
        updated = self.store.update_task(task_id, data.model_dump(exclude_unset=True))
        if updated is None:
            raise NotFoundError("Task not found")
        return updated

    def delete(self, identity: Identity, task_id: str) -> None:
        self._owned_task(identity, task_id)
        self.store.delete_task(task_id)


class AnalyticsService:
    """
    Commit analysis and analytics reads for a project.

    Analysis pulls a contributor's recent commits from GitHub, scores at
    most MAX_COMMITS_PER_ANALYSIS of them and stores one record per commit.
    """

    def __init__(
        self,
        store: RecordStore,
        ai_service: AIService,
        github_client_factory: GitHubClientFactory = GitHubClient,
    ):
        self.store = store
        self.ai_service = ai_service
        self.github_client_factory = github_client_factory

    def analyze(self, identity: Identity, request: AnalyzeRequest) -> AnalyzeResponse:
        """
        Score a contributor's recent commits.

        Args:
            identity: Requester; must own the project
            request: Project, contributor login and optional 'since' timestamp

        Returns:
            The stored analytics records

        Raises:
            AccessDeniedError: If the requester does not own the project
            GitHubAPIError: If the commit list cannot be fetched
        """
        project = require_ownership(self.store, request.project_id, identity)
        user = load_user(self.store, identity)
        client = self.github_client_factory(user.github_token)

        commits = client.get_commits(
            project.owner,
            project.repo,
            author=request.contributor,
            since=request.since,
            per_page=COMMITS_PAGE_SIZE,
        )
        if not commits:
            return AnalyzeResponse(message="No commits found for this contributor", analytics=[])

        analyses: List[AnalyticsRecord] = []
        for commit in commits[:MAX_COMMITS_PER_ANALYSIS]:
            sha = commit.get("sha", "")
            try:
                details = self._commit_details(client, project, commit)
            except (GitHubAPIError, LookupError, TypeError, ValueError) as exc:
                logger.error("Failed to analyze commit %s: %s", sha[:7], exc)
                continue

            score = self.ai_service.score_commit(details, project.name)
            record = AnalyticsRecord(
                project_id=project.id,
                contributor=request.contributor,
                commit_sha=details.sha,
                commit_message=details.message,
                commit_date=details.date,
                analyzed_at=utcnow(),
                **score.model_dump(),
            )
            analyses.append(self.store.add_analytics(record))

        logger.info("Analyzed %d commits by %s in %s", len(analyses), request.contributor, project.name)
        return AnalyzeResponse(message=f"Analyzed {len(analyses)} commits", analytics=analyses)

    @staticmethod
    def _commit_details(client: GitHubClient, project: Project, commit: Dict) -> CommitDetails:
        detail = client.get_commit(project.owner, project.repo, commit["sha"])
        files = detail.get("files") or []
        stats = detail.get("stats") or {}
        return CommitDetails(
            sha=commit["sha"],
            message=commit["commit"]["message"],
            author=commit["commit"]["author"]["name"],
            date=commit["commit"]["author"].get("date"),
            additions=stats.get("additions", 0),
            deletions=stats.get("deletions", 0),
            files=[
                FileChange(
                    filename=f["filename"],
                    additions=f.get("additions", 0),
                    deletions=f.get("deletions", 0),
                )
                for f in files
            ],
            patch=patch_excerpt(files),
        )

    def list_for_project(self, identity: Identity, project_id: str) -> List[AnalyticsRecord]:
        require_ownership(self.store, project_id, identity)
        return self.store.list_analytics(project_id)

    def for_contributor(self, identity: Identity, project_id: str, contributor: str) -> ContributorAnalytics:
        records = [
            record for record in self.list_for_project(identity, project_id)
            if record.contributor == contributor
        ]
        return ContributorAnalytics(
            contributor=contributor,
            total_commits=len(records),
            scores=average_scores(records),
            analytics=records,
        )

    def insights(self, identity: Identity, project_id: str) -> InsightsResponse:
        records = self.list_for_project(identity, project_id)
        if not records:
            return InsightsResponse(
                insights=ProjectInsights(
                    strengths=["No data yet"],
                    focus_areas=["Analyze commits to get insights"],
                    recommendations=["Start by analyzing team commits"],
                ),
                scores=ScoreSummary(),
            )

        scores = average_scores(records)
        insights = self.ai_service.generate_project_insights(scores, len(records))
        return InsightsResponse(insights=insights, scores=scores)
