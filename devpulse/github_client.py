"""
GitHub API clients for DevPulse.
Handles the OAuth code exchange and read-only REST calls made with a user's token.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import requests

from devpulse.exceptions import GitHubAPIError
from devpulse.schemas import User

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
TOKEN_URL = "https://github.com/login/oauth/access_token"
OAUTH_SCOPE = "repo,read:user,user:email"

_HTTPS_REPO_URL = re.compile(r"^(?:https?://)?(?:www\.)?github\.com/([^/]+)/([^/]+?)(?:\.git)?$", re.IGNORECASE)
_SSH_REPO_URL = re.compile(r"^git@github\.com:([^/]+)/(.+?)(?:\.git)?$", re.IGNORECASE)


def parse_repo_url(url: str) -> Optional[Tuple[str, str]]:
    """
    Extract (owner, repo) from a GitHub repository URL.

    Accepts https://github.com/owner/repo (with or without scheme, www.,
    .git suffix or trailing slashes) and git@github.com:owner/repo.git.

    Returns:
        (owner, repo), or None if url is not a GitHub repository URL
    """
    if not isinstance(url, str):
        return None
    clean_url = url.strip().rstrip("/")
    match = _HTTPS_REPO_URL.match(clean_url) or _SSH_REPO_URL.match(clean_url)
    if not match:
        return None
    owner, repo = match.group(1), re.sub(r"\.git$", "", match.group(2), flags=re.IGNORECASE)
    if not owner or not repo:
        return None
    return owner, repo


def _request(method: str, url: str, headers: Dict[str, str], timeout: int, **kwargs) -> requests.Response:
    """
    Make one HTTP request, converting failures to GitHubAPIError.

    Raises:
        GitHubAPIError: On transport errors or non-2xx responses
    """
    try:
        response = requests.request(method, url, headers=headers, timeout=timeout, **kwargs)
        response.raise_for_status()
        return response
    except requests.exceptions.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else None
        message = None
        if exc.response is not None:
            try:
                message = exc.response.json().get("message")
            except ValueError:
                message = None
        raise GitHubAPIError(f"GitHub API request failed: {message or exc}", status) from exc
    except requests.exceptions.RequestException as exc:
        raise GitHubAPIError(f"GitHub API request failed: {exc}") from exc


class GitHubClient:
    """
    Client for GitHub's REST API, authenticated as a signed-in user.

    Responses are returned as GitHub sends them; callers pick the fields
    they need.
    """

    def __init__(self, token: str):
        """
        Args:
            token: OAuth access token of the requesting user
        """
        self.token = token
        self.base_url = API_URL
        self.headers = {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github.v3+json"
        }
        self.timeout = 30  # seconds

    def _get(self, path: str, params: Optional[Dict] = None) -> Any:
        return _request("GET", f"{self.base_url}{path}", self.headers, self.timeout, params=params).json()

    def get_repository(self, owner: str, repo: str) -> Dict:
        return self._get(f"/repos/{owner}/{repo}")

    def get_contributors(self, owner: str, repo: str) -> List[Dict]:
        return self._get(f"/repos/{owner}/{repo}/contributors")

    def get_commits(
        self,
        owner: str,
        repo: str,
        author: Optional[str] = None,
        since: Optional[str] = None,
        per_page: int = 30
    ) -> List[Dict]:
        """
        Fetch one page of commits for a repository.

        Args:
            owner: Repository owner login
            repo: Repository name
            author: GitHub username to filter commits by author
            since: ISO 8601 timestamp to fetch commits after (e.g., '2026-01-01T00:00:00Z')
            per_page: Page size (GitHub caps this at 100)

        Returns:
            List of commit objects, newest first
        """
        params: Dict[str, Any] = {"per_page": per_page}
        if author:
            params["author"] = author
        if since:
            params["since"] = since
        return self._get(f"/repos/{owner}/{repo}/commits", params)

    def get_commit(self, owner: str, repo: str, sha: str) -> Dict:
        """Single commit with stats and per-file diffs."""
        return self._get(f"/repos/{owner}/{repo}/commits/{sha}")


class GitHubOAuthClient:
    """GitHub OAuth web flow: authorize redirect and code exchange."""

    def __init__(self, client_id: Optional[str], client_secret: Optional[str]):
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = 30  # seconds

    def authorize_url(self) -> str:
        if not self.client_id:
            raise ValueError("GITHUB_CLIENT_ID environment variable is required.")
        return f"{AUTHORIZE_URL}?{urlencode({'client_id': self.client_id, 'scope': OAUTH_SCOPE})}"

    def exchange_code(self, code: str) -> str:
        """
        Exchange an authorization code for an access token.

        Raises:
            GitHubAPIError: If GitHub rejects the code or cannot be reached
        """
        if not self.client_id or not self.client_secret:
            raise ValueError("GITHUB_CLIENT_ID and GITHUB_CLIENT_SECRET environment variables are required.")
        response = _request(
            "POST",
            TOKEN_URL,
            {"Accept": "application/json"},
            self.timeout,
            json={"client_id": self.client_id, "client_secret": self.client_secret, "code": code},
        )
        payload = response.json()
        # GitHub answers 200 with an error body for bad codes
        token = payload.get("access_token")
        if not token:
            raise GitHubAPIError(
                f"GitHub OAuth exchange failed: {payload.get('error_description') or payload.get('error') or 'no access token'}"
            )
        return token

    def get_user(self, token: str) -> User:
        """Fetch the profile that owns token."""
        data = _request(
            "GET",
            f"{API_URL}/user",
            {"Authorization": f"token {token}", "Accept": "application/vnd.github.v3+json"},
            self.timeout,
        ).json()
        return User(
            id=str(data["id"]),
            username=data["login"],
            name=data.get("name"),
            email=data.get("email"),
            avatar=data.get("avatar_url"),
            github_token=token,
        )
