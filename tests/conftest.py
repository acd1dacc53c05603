import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
import requests
from fastapi.testclient import TestClient

from devpulse.ai_service import AIService
from devpulse.auth import create_session_token
from devpulse.config import Settings
from devpulse.main import create_app, get_ai_service, get_github_client_factory
from devpulse.schemas import User
from devpulse.store import GistRecordStore, MemoryRecordStore, SqlRecordStore

JWT_SECRET = "test-secret"

SCORE_JSON = {
    "codeQuality": 80,
    "impact": 70,
    "documentation": 60,
    "testing": 90,
    "overall": 75,
    "strengths": ["Clear commit message"],
    "improvements": ["Add tests"],
    "summary": "Solid change.",
}


# ---------------------------------------------------------------------------
# Gist API stand-in
# ---------------------------------------------------------------------------

class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, text: str = ""):
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self) -> Any:
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error", response=self)


class FakeGistSession:
    """Serves the handful of Gist endpoints the gist store uses, from memory."""

    def __init__(self):
        self.gists: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        # Called whenever a gist is read; lets tests simulate another writer
        self.before_read = None

    def request(self, method: str, url: str, headers=None, timeout=None, json: Optional[dict] = None, **kwargs):
        self.calls.append(f"{method} {url}")
        path = url.replace("https://api.github.com", "")
        if method == "GET" and path == "/gists":
            return FakeResponse([{"id": gid, "description": g["description"]} for gid, g in self.gists.items()])
        if method == "POST" and path == "/gists":
            gist_id = f"gist-{len(self.gists) + 1}"
            self.gists[gist_id] = {"description": json["description"], "files": json["files"]}
            return FakeResponse({"id": gist_id}, status_code=201)
        gist_id = path.rsplit("/", 1)[-1]
        if gist_id not in self.gists:
            return FakeResponse({"message": "Not Found"}, status_code=404)
        if method == "GET":
            if self.before_read is not None:
                self.before_read(self)
            files = {
                name: {"content": f["content"], "truncated": False}
                for name, f in self.gists[gist_id]["files"].items()
            }
            return FakeResponse({"id": gist_id, "files": files})
        if method == "PATCH":
            for name, f in json["files"].items():
                self.gists[gist_id]["files"][name] = {"content": f["content"]}
            return FakeResponse({"id": gist_id})
        raise AssertionError(f"unexpected request {method} {url}")

    def document(self, gist_id: str = "gist-1") -> Dict[str, Any]:
        return json.loads(self.gists[gist_id]["files"][GistRecordStore.FILENAME]["content"])


# ---------------------------------------------------------------------------
# GitHub REST stand-in
# ---------------------------------------------------------------------------

def make_commit(sha: str, message: str = "Fix bug", author: str = "Alice") -> Dict[str, Any]:
    return {
        "sha": sha,
        "commit": {
            "message": message,
            "author": {"name": author, "date": "2026-02-18T15:20:21Z"},
        },
    }


class FakeGitHubClient:
    """Mimics GitHubClient; class attributes configure what it returns."""

    commits: List[Dict[str, Any]] = []
    failing_shas: set = set()
    instances: List["FakeGitHubClient"] = []

    def __init__(self, token: str):
        self.token = token
        self.commit_requests: List[Dict[str, Any]] = []
        self.detail_requests: List[str] = []
        FakeGitHubClient.instances.append(self)

    def get_repository(self, owner, repo):
        return {"full_name": f"{owner}/{repo}", "token_seen": self.token}

    def get_contributors(self, owner, repo):
        return [{"login": "alice"}, {"login": "bob"}]

    def get_commits(self, owner, repo, author=None, since=None, per_page=30):
        self.commit_requests.append({"owner": owner, "repo": repo, "author": author, "since": since, "per_page": per_page})
        return list(self.commits)

    def get_commit(self, owner, repo, sha):
        from devpulse.exceptions import GitHubAPIError

        self.detail_requests.append(sha)
        if sha in self.failing_shas:
            raise GitHubAPIError("boom", 500)
        return {
            "sha": sha,
            "stats": {"additions": 10, "deletions": 2},
            "files": [{"filename": "app.py", "additions": 10, "deletions": 2, "patch": "+" * 1500}],
        }


@pytest.fixture(autouse=True)
def reset_fake_github():
    FakeGitHubClient.commits = []
    FakeGitHubClient.failing_shas = set()
    FakeGitHubClient.instances = []
    yield


# ---------------------------------------------------------------------------
# LLM stand-in
# ---------------------------------------------------------------------------

class StubMessages:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(
            content=[SimpleNamespace(text=reply)],
            usage=SimpleNamespace(input_tokens=10, output_tokens=20),
        )


def stub_ai_service(*replies) -> AIService:
    client = SimpleNamespace(messages=StubMessages(replies or [json.dumps(SCORE_JSON)]))
    return AIService(api_key=None, client=client)


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@pytest.fixture
def gist_session() -> FakeGistSession:
    return FakeGistSession()


@pytest.fixture(params=["memory", "sql", "gist"])
def store(request, gist_session):
    if request.param == "memory":
        return MemoryRecordStore()
    if request.param == "sql":
        return SqlRecordStore("sqlite://")
    return GistRecordStore(token="gist-token", session=gist_session)


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    return Settings(
        github_client_id="client-id",
        github_client_secret="client-secret",
        jwt_secret=JWT_SECRET,
        anthropic_api_key=None,
    )


@pytest.fixture
def api_store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def ai_service() -> AIService:
    return stub_ai_service()


@pytest.fixture
def app(settings, api_store, ai_service):
    app = create_app(settings=settings, store=api_store)
    app.dependency_overrides[get_ai_service] = lambda: ai_service
    app.dependency_overrides[get_github_client_factory] = lambda: FakeGitHubClient
    return app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


def make_user(user_id: str, username: str) -> User:
    return User(id=user_id, username=username, name=username.title(), github_token=f"gho_{username}")


@pytest.fixture
def alice(api_store) -> User:
    return api_store.save_user(make_user("1001", "alice"))


@pytest.fixture
def bob(api_store) -> User:
    return api_store.save_user(make_user("1002", "bob"))


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_session_token(user, JWT_SECRET)}"}
