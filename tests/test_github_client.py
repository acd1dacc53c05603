import pytest
import requests

from devpulse.exceptions import GitHubAPIError
from devpulse.github_client import GitHubClient, GitHubOAuthClient, parse_repo_url
from tests.conftest import FakeResponse


@pytest.mark.parametrize("url", [
    "https://github.com/octocat/hello-world",
    "https://github.com/octocat/hello-world.git",
    "https://github.com/octocat/hello-world/",
    "https://github.com/octocat/hello-world///",
    "http://www.github.com/octocat/hello-world",
    "github.com/octocat/hello-world",
    "  https://GitHub.com/octocat/hello-world  ",
    "git@github.com:octocat/hello-world.git",
    "git@github.com:octocat/hello-world",
])
def test_parse_repo_url(url):
    assert parse_repo_url(url) == ("octocat", "hello-world")


@pytest.mark.parametrize("url", [
    "",
    "https://gitlab.com/octocat/hello-world",
    "https://github.com/octocat",
    "https://github.com/octocat/hello-world/tree/main",
    "not a url",
])
def test_parse_repo_url_rejects(url):
    assert parse_repo_url(url) is None


@pytest.fixture
def recorded(monkeypatch):
    calls = []
    replies = []

    def fake_request(method, url, headers=None, timeout=None, **kwargs):
        calls.append({"method": method, "url": url, "headers": headers, **kwargs})
        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr("devpulse.github_client.requests.request", fake_request)
    return calls, replies


class TestGitHubClient:
    def test_get_commits_sends_filters(self, recorded):
        calls, replies = recorded
        replies.append(FakeResponse([{"sha": "abc"}]))

        commits = GitHubClient("gho_token").get_commits("octocat", "devpulse", author="alice", since="2026-01-01T00:00:00Z", per_page=10)

        assert commits == [{"sha": "abc"}]
        assert calls[0]["url"] == "https://api.github.com/repos/octocat/devpulse/commits"
        assert calls[0]["params"] == {"per_page": 10, "author": "alice", "since": "2026-01-01T00:00:00Z"}
        assert calls[0]["headers"]["Authorization"] == "token gho_token"

    def test_get_commits_omits_empty_filters(self, recorded):
        calls, replies = recorded
        replies.append(FakeResponse([]))
        GitHubClient("t").get_commits("o", "r")
        assert calls[0]["params"] == {"per_page": 30}

    def test_http_error_keeps_status(self, recorded):
        _, replies = recorded
        replies.append(FakeResponse({"message": "Not Found"}, status_code=404))

        with pytest.raises(GitHubAPIError) as exc_info:
            GitHubClient("t").get_repository("o", "missing")

        assert exc_info.value.status_code == 404
        assert "Not Found" in str(exc_info.value)

    def test_transport_error_is_bad_gateway(self, recorded):
        _, replies = recorded
        replies.append(requests.exceptions.ConnectionError("down"))

        with pytest.raises(GitHubAPIError) as exc_info:
            GitHubClient("t").get_commit("o", "r", "abc")

        assert exc_info.value.status_code == 502
        assert exc_info.value.upstream_status is None

    def test_no_retries(self, recorded):
        calls, replies = recorded
        replies.append(FakeResponse({"message": "boom"}, status_code=500))
        with pytest.raises(GitHubAPIError):
            GitHubClient("t").get_contributors("o", "r")
        assert len(calls) == 1


class TestGitHubOAuthClient:
    def test_authorize_url(self):
        url = GitHubOAuthClient("cid", "secret").authorize_url()
        assert url.startswith("https://github.com/login/oauth/authorize?")
        assert "client_id=cid" in url
        assert "scope=repo%2Cread%3Auser%2Cuser%3Aemail" in url

    def test_exchange_code(self, recorded):
        calls, replies = recorded
        replies.append(FakeResponse({"access_token": "gho_new", "token_type": "bearer"}))

        assert GitHubOAuthClient("cid", "secret").exchange_code("abc") == "gho_new"
        assert calls[0]["json"] == {"client_id": "cid", "client_secret": "secret", "code": "abc"}

    def test_exchange_rejected_code(self, recorded):
        _, replies = recorded
        replies.append(FakeResponse({"error": "bad_verification_code", "error_description": "The code is incorrect"}))

        with pytest.raises(GitHubAPIError, match="The code is incorrect"):
            GitHubOAuthClient("cid", "secret").exchange_code("expired")

    def test_get_user(self, recorded):
        _, replies = recorded
        replies.append(FakeResponse({
            "id": 583231, "login": "octocat", "name": "The Octocat",
            "email": None, "avatar_url": "https://avatars.githubusercontent.com/u/583231",
        }))

        user = GitHubOAuthClient("cid", "secret").get_user("gho_new")

        assert user.id == "583231"
        assert user.username == "octocat"
        assert user.github_token == "gho_new"
