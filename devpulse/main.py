from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from typing import List, Optional
import logging

from devpulse import schemas
from devpulse.ai_service import AIService
from devpulse.auth import SESSION_COOKIE, SESSION_TTL, decode_session_token
from devpulse.config import Settings, configure_logging
from devpulse.exceptions import DevPulseError
from devpulse.github_client import GitHubClient, GitHubOAuthClient, parse_repo_url
from devpulse.services import (
    AnalyticsService,
    AuthService,
    GitHubClientFactory,
    ProjectService,
    TaskService,
    load_user,
)
from devpulse.store import RecordStore, create_store

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_ai_service(request: Request) -> AIService:
    return request.app.state.ai_service


def get_github_client_factory() -> GitHubClientFactory:
    return GitHubClient


def get_oauth_client(settings: Settings = Depends(get_settings)) -> GitHubOAuthClient:
    return GitHubOAuthClient(settings.github_client_id, settings.github_client_secret)


def get_identity(
    request: Request,
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> schemas.Identity:
    """Requester identity from the session cookie, or a Bearer header."""
    token = request.cookies.get(SESSION_COOKIE)
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):]
    return decode_session_token(token, settings.jwt_secret)


# ---------------------------------------------------------------------------
# Service endpoints
# ---------------------------------------------------------------------------

@router.get("/")
def root():
    return {
        "message": "DevPulse API is running",
        "endpoints": {
            "auth": "/api/auth",
            "github": "/api/github",
            "projects": "/api/projects",
            "tasks": "/api/tasks",
            "analytics": "/api/analytics",
            "health": "/health"
        }
    }


@router.get("/health", response_model=schemas.HealthResponse)
def health(store: RecordStore = Depends(get_store)):
    return {"status": "healthy", "store": store.backend}


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

@router.get("/api/auth/github")
def github_login(oauth_client: GitHubOAuthClient = Depends(get_oauth_client)):
    """Redirect the browser to GitHub's authorization page"""
    try:
        return RedirectResponse(oauth_client.authorize_url(), status_code=302)
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.get("/api/auth/callback")
def github_callback(
    code: Optional[str] = None,
    store: RecordStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    oauth_client: GitHubOAuthClient = Depends(get_oauth_client),
):
    """
    GitHub redirects here with an authorization code.
    On success the session cookie is set and the browser goes to the dashboard.
    """
    failure_url = f"{settings.frontend_url}?error=auth_failed"
    if not code:
        return RedirectResponse(failure_url, status_code=302)

    try:
        token = AuthService(store, oauth_client, settings.jwt_secret).complete_login(code)
    except (DevPulseError, ValueError) as exc:
        logger.error("Auth error: %s", exc)
        return RedirectResponse(failure_url, status_code=302)

    response = RedirectResponse(f"{settings.frontend_url}/dashboard", status_code=302)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=int(SESSION_TTL.total_seconds()),
    )
    return response


@router.get("/api/auth/me", response_model=schemas.UserPublic)
def current_user(identity: schemas.Identity = Depends(get_identity), store: RecordStore = Depends(get_store)):
    """Signed-in user's profile (never includes the GitHub token)"""
    return load_user(store, identity).public()


@router.post("/api/auth/logout", response_model=schemas.MessageResponse)
def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE)
    return {"message": "Logged out successfully"}


# ---------------------------------------------------------------------------
# GitHub proxy
# ---------------------------------------------------------------------------

def _user_client(store: RecordStore, identity: schemas.Identity, factory: GitHubClientFactory) -> GitHubClient:
    return factory(load_user(store, identity).github_token)


@router.get("/api/github/repo/{owner}/{repo}")
def get_repository(
    owner: str,
    repo: str,
    identity: schemas.Identity = Depends(get_identity),
    store: RecordStore = Depends(get_store),
    factory: GitHubClientFactory = Depends(get_github_client_factory),
):
    return _user_client(store, identity, factory).get_repository(owner, repo)


@router.get("/api/github/repo/{owner}/{repo}/contributors")
def get_contributors(
    owner: str,
    repo: str,
    identity: schemas.Identity = Depends(get_identity),
    store: RecordStore = Depends(get_store),
    factory: GitHubClientFactory = Depends(get_github_client_factory),
):
    return _user_client(store, identity, factory).get_contributors(owner, repo)


@router.get("/api/github/repo/{owner}/{repo}/commits")
def get_commits(
    owner: str,
    repo: str,
    author: Optional[str] = None,
    since: Optional[str] = None,
    identity: schemas.Identity = Depends(get_identity),
    store: RecordStore = Depends(get_store),
    factory: GitHubClientFactory = Depends(get_github_client_factory),
):
    """
    Recent commits, optionally filtered
    author: GitHub login (optional)
    since: ISO 8601 timestamp (optional)
    """
    return _user_client(store, identity, factory).get_commits(owner, repo, author=author, since=since)


@router.get("/api/github/repo/{owner}/{repo}/commits/{sha}")
def get_commit(
    owner: str,
    repo: str,
    sha: str,
    identity: schemas.Identity = Depends(get_identity),
    store: RecordStore = Depends(get_store),
    factory: GitHubClientFactory = Depends(get_github_client_factory),
):
    return _user_client(store, identity, factory).get_commit(owner, repo, sha)


@router.post("/api/github/parse-url", response_model=schemas.RepositoryCoordinates)
def parse_url(body: schemas.ParseUrlRequest, identity: schemas.Identity = Depends(get_identity)):
    coordinates = parse_repo_url(body.url)
    if coordinates is None:
        logger.info("Failed to parse repository URL: %s", body.url)
        raise HTTPException(status_code=400, detail="Invalid GitHub repository URL")
    owner, repo = coordinates
    return {"owner": owner, "repo": repo}


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

@router.post("/api/projects", response_model=schemas.Project, status_code=201)
def create_project(
    body: schemas.ProjectCreate,
    identity: schemas.Identity = Depends(get_identity),
    store: RecordStore = Depends(get_store),
):
    return ProjectService(store).create(identity, body)


@router.get("/api/projects", response_model=List[schemas.Project])
def list_projects(identity: schemas.Identity = Depends(get_identity), store: RecordStore = Depends(get_store)):
    return ProjectService(store).list(identity)


@router.get("/api/projects/{project_id}", response_model=schemas.Project)
def get_project(project_id: str, identity: schemas.Identity = Depends(get_identity), store: RecordStore = Depends(get_store)):
    return ProjectService(store).get(identity, project_id)


@router.put("/api/projects/{project_id}", response_model=schemas.Project)
def update_project(
    project_id: str,
    body: schemas.ProjectUpdate,
    identity: schemas.Identity = Depends(get_identity),
    store: RecordStore = Depends(get_store),
):
    return ProjectService(store).update(identity, project_id, body)


@router.delete("/api/projects/{project_id}", response_model=schemas.MessageResponse)
def delete_project(project_id: str, identity: schemas.Identity = Depends(get_identity), store: RecordStore = Depends(get_store)):
    ProjectService(store).delete(identity, project_id)
    return {"message": "Project deleted successfully"}


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

@router.post("/api/tasks", response_model=schemas.Task, status_code=201)
def create_task(
    body: schemas.TaskCreate,
    identity: schemas.Identity = Depends(get_identity),
    store: RecordStore = Depends(get_store),
):
    return TaskService(store).create(identity, body)


@router.get("/api/tasks/project/{project_id}", response_model=List[schemas.Task])
def list_tasks(project_id: str, identity: schemas.Identity = Depends(get_identity), store: RecordStore = Depends(get_store)):
    return TaskService(store).list(identity, project_id)


@router.put("/api/tasks/{task_id}", response_model=schemas.Task)
def update_task(
    task_id: str,
    body: schemas.TaskUpdate,
    identity: schemas.Identity = Depends(get_identity),
    store: RecordStore = Depends(get_store),
):
    return TaskService(store).update(identity, task_id, body)


@router.delete("/api/tasks/{task_id}", response_model=schemas.MessageResponse)
def delete_task(task_id: str, identity: schemas.Identity = Depends(get_identity), store: RecordStore = Depends(get_store)):
    TaskService(store).delete(identity, task_id)
    return {"message": "Task deleted successfully"}


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

def _analytics_service(
    store: RecordStore = Depends(get_store),
    ai_service: AIService = Depends(get_ai_service),
    factory: GitHubClientFactory = Depends(get_github_client_factory),
) -> AnalyticsService:
    return AnalyticsService(store, ai_service, factory)


@router.post("/api/analytics/analyze", response_model=schemas.AnalyzeResponse)
def analyze_commits(
    body: schemas.AnalyzeRequest,
    identity: schemas.Identity = Depends(get_identity),
    service: AnalyticsService = Depends(_analytics_service),
):
    """Score a contributor's most recent commits (at most 5 per request)"""
    return service.analyze(identity, body)


@router.get("/api/analytics/project/{project_id}", response_model=List[schemas.AnalyticsRecord])
def project_analytics(
    project_id: str,
    identity: schemas.Identity = Depends(get_identity),
    service: AnalyticsService = Depends(_analytics_service),
):
    return service.list_for_project(identity, project_id)


@router.get(
    "/api/analytics/project/{project_id}/contributor/{contributor}",
    response_model=schemas.ContributorAnalytics,
)
def contributor_analytics(
    project_id: str,
    contributor: str,
    identity: schemas.Identity = Depends(get_identity),
    service: AnalyticsService = Depends(_analytics_service),
):
    return service.for_contributor(identity, project_id, contributor)


@router.get("/api/analytics/project/{project_id}/insights", response_model=schemas.InsightsResponse)
def project_insights(
    project_id: str,
    identity: schemas.Identity = Depends(get_identity),
    service: AnalyticsService = Depends(_analytics_service),
):
    return service.insights(identity, project_id)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

async def handle_devpulse_error(request: Request, exc: DevPulseError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


def create_app(settings: Optional[Settings] = None, store: Optional[RecordStore] = None) -> FastAPI:
    """
    Build the API. The record store is created here, once per app, and
    handed to request handlers through get_store.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    settings.warn_if_incomplete()

    app = FastAPI(title="DevPulse API")
    app.state.settings = settings
    app.state.store = store or create_store(settings)
    app.state.ai_service = AIService(settings.anthropic_api_key, settings.anthropic_model)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted({"http://localhost:3000", settings.frontend_url}),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept"],
    )
    app.add_exception_handler(DevPulseError, handle_devpulse_error)
    app.include_router(router)

    logger.info("DevPulse API ready (store: %s)", app.state.store.backend)
    return app


app = create_app()
