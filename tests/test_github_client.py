"""Tests for the GitHub client implementation."""
import os
from datetime import datetime, timezone
from unittest.mock import MagicMock, PropertyMock, patch

import pytest
import requests
from github import BadAttributeException, GithubException, RateLimitExceededException, UnknownObjectException

from stalebranches.errors import ConfigurationError, ForbiddenError, GatewayError, NotFoundError, RateLimitError, TransportError
from stalebranches.github.client import GitHubClient
from stalebranches.github.models import RepoRef

REPO = RepoRef("acme", "widgets")


@pytest.fixture
def mock_github():
    """Fixture to mock the PyGithub client."""
    with patch("stalebranches.github.client.Github") as mock:
        yield mock


@pytest.fixture
def mock_repo(mock_github):
    repo = MagicMock()
    mock_github.return_value.get_repo.return_value = repo
    return repo


@pytest.fixture
def no_sleep():
    with patch("stalebranches.github.client.time.sleep") as mock:
        yield mock


@pytest.fixture
def mock_env_vars():
    with patch.dict(os.environ, {"GITHUB_TOKEN": "test_token"}):
        yield


def make_branch(name, protected, sha):
    branch = MagicMock()
    branch.name = name
    branch.protected = protected
    branch.commit.sha = sha
    return branch


def make_issue(number, title, created_at, pull_request=None, state="open"):
    issue = MagicMock()
    issue.number = number
    issue.title = title
    issue.body = None
    issue.state = state
    issue.created_at = created_at
    issue.pull_request = pull_request
    return issue


def test_init_with_token(mock_github):
    client = GitHubClient(token="test_token", load_env=False)
    assert client.token == "test_token"
    assert mock_github.call_args.kwargs["per_page"] == 100


def test_init_with_env_var(mock_github, mock_env_vars):
    client = GitHubClient(load_env=False)
    assert client.token == "test_token"


def test_init_without_token():
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(ConfigurationError) as excinfo:
            GitHubClient(load_env=False)
        assert "GITHUB_TOKEN" in str(excinfo.value)


def test_list_branches(mock_github, mock_repo):
    mock_repo.get_branches.return_value = [make_branch("main", True, "a1"), make_branch("feature/x", False, "b2")]
    client = GitHubClient(token="test_token", load_env=False)
    branches = client.list_branches(REPO)
    assert [(b.name, b.protected, b.head_commit_id) for b in branches] == [("main", True, "a1"), ("feature/x", False, "b2")]
    mock_github.return_value.get_repo.assert_called_with("acme/widgets", lazy=True)


def test_get_commit_normalizes_naive_dates(mock_github, mock_repo):
    gh_commit = MagicMock()
    gh_commit.sha = "a1"
    gh_commit.html_url = "https://github.com/acme/widgets/commit/a1"
    gh_commit.commit.author.date = datetime(2024, 1, 2, 3, 4, 5)
    gh_commit.commit.author.name = "Ada"
    gh_commit.commit.author.email = "ada@example.com"
    mock_repo.get_commit.return_value = gh_commit

    commit = GitHubClient(token="test_token", load_env=False).get_commit(REPO, "a1")
    assert commit.author_date == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert commit.author_name == "Ada"
    assert commit.web_url.endswith("/a1")
    mock_repo.get_commit.assert_called_once_with("a1")


def test_get_commit_without_author(mock_github, mock_repo):
    gh_commit = MagicMock()
    gh_commit.commit.author = None
    mock_repo.get_commit.return_value = gh_commit
    commit = GitHubClient(token="test_token", load_env=False).get_commit(REPO, "a1")
    assert commit.author_date is None


def test_get_commit_with_unparseable_date(mock_github, mock_repo):
    gh_commit = MagicMock()
    type(gh_commit.commit.author).date = PropertyMock(side_effect=BadAttributeException("soon", str, None))
    mock_repo.get_commit.return_value = gh_commit
    commit = GitHubClient(token="test_token", load_env=False).get_commit(REPO, "a1")
    assert commit.author_date is None


def test_list_open_records_skips_pull_requests(mock_github, mock_repo):
    created = datetime(2024, 5, 1, tzinfo=timezone.utc)
    mock_repo.get_issues.return_value = [
        make_issue(1, "The branch `x` has been flagged for deletion", created),
        make_issue(2, "A pull request", created, pull_request=MagicMock()),
    ]
    records = GitHubClient(token="test_token", load_env=False).list_open_labeled_records(REPO, "stale-branch")
    assert [r.id for r in records] == [1]
    assert records[0].body_text == ""
    assert records[0].state == "open"
    mock_repo.get_issues.assert_called_once_with(state="open", labels=["stale-branch"])


def test_create_record(mock_github, mock_repo):
    mock_repo.create_issue.return_value = make_issue(5, "title", datetime(2024, 5, 1, tzinfo=timezone.utc))
    record = GitHubClient(token="test_token", load_env=False).create_record(REPO, "title", "body", "stale-branch")
    assert record.id == 5
    mock_repo.create_issue.assert_called_once_with(title="title", body="body", labels=["stale-branch"])


def test_comment_and_close(mock_github, mock_repo):
    issue = make_issue(5, "title", datetime(2024, 5, 1, tzinfo=timezone.utc))
    mock_repo.get_issue.return_value = issue
    GitHubClient(token="test_token", load_env=False).comment_and_close(REPO, 5, "bye")
    mock_repo.get_issue.assert_called_once_with(number=5)
    issue.create_comment.assert_called_once_with("bye")
    issue.edit.assert_called_once_with(state="closed", state_reason="completed")


def test_delete_branch_ref(mock_github, mock_repo):
    GitHubClient(token="test_token", load_env=False).delete_branch_ref(REPO, "feature/x")
    mock_repo.get_git_ref.assert_called_once_with("heads/feature/x")
    mock_repo.get_git_ref.return_value.delete.assert_called_once()


def test_not_found_is_translated(mock_github, mock_repo):
    mock_repo.get_git_ref.side_effect = UnknownObjectException(404, {"message": "Not Found"}, None)
    with pytest.raises(NotFoundError) as excinfo:
        GitHubClient(token="test_token", load_env=False).delete_branch_ref(REPO, "gone")
    assert excinfo.value.kind == "not-found"
    assert excinfo.value.repo == "acme/widgets"


def test_forbidden_is_translated(mock_github, mock_repo):
    mock_repo.create_issue.side_effect = GithubException(403, {"message": "Resource not accessible"}, None)
    with pytest.raises(ForbiddenError):
        GitHubClient(token="test_token", load_env=False).create_record(REPO, "t", "b", "stale-branch")


def test_validation_error_is_generic_gateway_error(mock_github, mock_repo):
    mock_repo.create_issue.side_effect = GithubException(422, {"message": "Validation Failed"}, None)
    with pytest.raises(GatewayError) as excinfo:
        GitHubClient(token="test_token", load_env=False).create_record(REPO, "t", "b", "stale-branch")
    assert not isinstance(excinfo.value, TransportError)


def test_rate_limit_carries_reset_time(mock_github, mock_repo, no_sleep):
    mock_repo.get_branches.side_effect = RateLimitExceededException(
        403, {"message": "API rate limit exceeded"}, {"X-RateLimit-Reset": "1717243200"})
    with pytest.raises(RateLimitError) as excinfo:
        GitHubClient(token="test_token", load_env=False).list_branches(REPO)
    assert excinfo.value.reset_time_unix == 1717243200
    assert excinfo.value.reset_time_datetime == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    # rate limits are reported, not retried
    assert mock_repo.get_branches.call_count == 1
    no_sleep.assert_not_called()


def test_reads_retry_transient_errors(mock_github, mock_repo, no_sleep):
    mock_repo.get_branches.side_effect = [
        GithubException(502, {"message": "Bad Gateway"}, None),
        [make_branch("main", False, "a1")],
    ]
    branches = GitHubClient(token="test_token", load_env=False).list_branches(REPO)
    assert [b.name for b in branches] == ["main"]
    assert mock_repo.get_branches.call_count == 2
    no_sleep.assert_called_once_with(1.0)


def test_reads_give_up_after_retries(mock_github, mock_repo, no_sleep):
    mock_repo.get_issues.side_effect = requests.exceptions.ConnectionError("connection reset")
    with pytest.raises(TransportError):
        GitHubClient(token="test_token", load_env=False).list_open_labeled_records(REPO, "stale-branch")
    assert mock_repo.get_issues.call_count == 3


def test_writes_are_not_retried(mock_github, mock_repo, no_sleep):
    mock_repo.create_issue.side_effect = GithubException(503, {"message": "Unavailable"}, None)
    with pytest.raises(TransportError):
        GitHubClient(token="test_token", load_env=False).create_record(REPO, "t", "b", "stale-branch")
    assert mock_repo.create_issue.call_count == 1
    no_sleep.assert_not_called()


def test_list_repositories_skips_archived(mock_github):
    active = MagicMock(archived=False)
    active.name = "widgets"
    active.owner.login = "acme"
    archived = MagicMock(archived=True)
    mock_github.return_value.get_organization.return_value.get_repos.return_value = [active, archived]
    repos = GitHubClient(token="test_token", load_env=False).list_repositories("acme", "org")
    assert repos == [REPO]
    mock_github.return_value.get_organization.assert_called_once_with("acme")


def test_list_repositories_for_user(mock_github):
    mock_github.return_value.get_user.return_value.get_repos.return_value = []
    assert GitHubClient(token="test_token", load_env=False).list_repositories("ada", "user") == []
    mock_github.return_value.get_user.return_value.get_repos.assert_called_once_with(type="owner")


def test_get_rate_limit_info(mock_github):
    core = mock_github.return_value.get_rate_limit.return_value.resources.core
    core.remaining = 100
    core.limit = 5000
    core.reset = datetime(2024, 1, 1, tzinfo=timezone.utc)
    info = GitHubClient(token="test_token", load_env=False).check_rate_limit()
    assert info["remaining"] == 100
    assert info["limit"] == 5000
    assert info["reset_time"] == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_get_rate_limit_info_failure(mock_github):
    mock_github.return_value.get_rate_limit.side_effect = GithubException(500, "boom", None)
    assert GitHubClient(token="test_token", load_env=False).get_rate_limit_info() == {}
