"""GitHub API client implementation."""
import os
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Optional, Callable, Any, List

import requests
from dotenv import load_dotenv
from github import (
    Auth,
    BadAttributeException,
    BadCredentialsException,
    Github,
    GithubException,
    RateLimitExceededException,
    UnknownObjectException,
)
from github.Repository import Repository as GHRepository

from common.logging import LoggingManager
from stalebranches.errors import (
    ConfigurationError,
    ForbiddenError,
    GatewayError,
    NotFoundError,
    RateLimitError,
    TransportError,
)

from .gateway import RepositoryGateway
from .models import Branch, Commit, RepoRef, TrackingRecord

logger = LoggingManager.get_logger('stalebranches.github_client')


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _reset_time_from_headers(headers) -> Optional[int]:
    if not headers:
        return None
    for key, value in headers.items():
        if key.lower() == "x-ratelimit-reset":
            try:
                return int(value)
            except (TypeError, ValueError):
                return None
    return None


def translate_github_errors(operation: str) -> Callable:
    """Decorator mapping PyGithub and requests exceptions onto the gateway error types.

    The wrapped method must take the RepoRef (or owner name) as its first argument after self.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, target, *args, **kwargs) -> Any:
            where = str(target)
            try:
                return func(self, target, *args, **kwargs)
            except GatewayError:
                raise
            except RateLimitExceededException as e:
                reset_unix = _reset_time_from_headers(getattr(e, "headers", None))
                logger.error(f"GitHub API rate limit exceeded during '{operation}' on {where}: {e}")
                raise RateLimitError(f"Rate limit exceeded during {operation}", repo=where,
                                     reset_time_unix=reset_unix) from e
            except UnknownObjectException as e:
                raise NotFoundError(f"Not found during {operation}: {e.status}", repo=where) from e
            except BadCredentialsException as e:
                raise ForbiddenError(f"Bad credentials during {operation}", repo=where) from e
            except GithubException as e:
                if e.status in (401, 403):
                    raise ForbiddenError(f"Forbidden during {operation}: {e.status} {e.data}", repo=where) from e
                if e.status == 404:
                    raise NotFoundError(f"Not found during {operation}", repo=where) from e
                if e.status is None or e.status >= 500:
                    raise TransportError(f"Server error during {operation}: {e.status}", repo=where) from e
                raise GatewayError(f"GitHub rejected {operation}: {e.status} {e.data}", repo=where) from e
            except requests.exceptions.RequestException as e:
                raise TransportError(f"Network error during {operation}: {e}", repo=where) from e

        return wrapper

    return decorator


def retry_on_failure(max_retries: int = 2, delay: float = 1.0, backoff: float = 2.0):
    """Decorator to retry a read operation on transient transport failures.

    Rate limits are not retried, they are reported to the caller.

    Args:
        max_retries: Maximum number of retry attempts.
        delay: Initial delay between retries in seconds.
        backoff: Multiplier for delay after each retry.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            current_delay = delay
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except RateLimitError:
                    raise
                except TransportError as e:
                    logger.warning(f"Attempt {attempt + 1}/{max_retries + 1} of {func.__name__} failed: {e.message}")
                    if attempt >= max_retries:
                        logger.error(f"All {max_retries + 1} attempts of {func.__name__} failed. Last error: {e.message}")
                        raise
                    logger.info(f"Retrying in {current_delay:.2f} seconds...")
                    time.sleep(current_delay)
                    current_delay *= backoff
            return None

        return wrapper

    return decorator


class GitHubClient(RepositoryGateway):
    """Client for interacting with the GitHub API."""

    def __init__(self, token: Optional[str] = None, load_env: bool = True, base_url: Optional[str] = None):
        """Initialize the GitHub client.

        Args:
            token: GitHub token. If not provided, will try to load from GITHUB_TOKEN env var.
            load_env: Whether to load environment variables from .env file (default: True).
            base_url: API root for GitHub Enterprise installations.
        """
        if load_env:
            load_dotenv()
        self.token = token or os.getenv("GITHUB_TOKEN")
        if not self.token:
            logger.error("GitHub token not found in environment variables")
            raise ConfigurationError("GitHub token is required. Set GITHUB_TOKEN environment variable or pass token directly.")

        logger.info("Initializing GitHub client")
        kwargs = {"auth": Auth.Token(self.token), "per_page": 100}
        if base_url:
            kwargs["base_url"] = base_url
        self.gh = Github(**kwargs)

    def _repo(self, repo: RepoRef) -> GHRepository:
        # lazy: no request until the first real call on the repository
        return self.gh.get_repo(repo.full_name, lazy=True)

    def get_rate_limit_info(self) -> dict:
        """Get the core REST rate limit, or an empty dict if it cannot be read."""
        try:
            overview = self.gh.get_rate_limit()
            resources = getattr(overview, "resources", overview)
            core = resources.core
            info = {
                "remaining": core.remaining,
                "limit": core.limit,
                "reset_time": _as_utc(core.reset),
            }
            logger.debug(f"Rate limit info: {info}")
            return info
        except (GithubException, requests.exceptions.RequestException) as e:
            logger.warning(f"Could not retrieve rate limit: {e}")
            return {}

    def check_rate_limit(self, min_remaining: int = 50) -> dict:
        """Log the current core rate limit, warning when it runs low."""
        info = self.get_rate_limit_info()
        if not info:
            return info
        reset_time_str = info['reset_time'].strftime('%Y-%m-%d %H:%M:%S UTC') if info.get('reset_time') else 'unknown'
        if info["remaining"] < min_remaining:
            logger.warning(f"Rate limit is low: {info['remaining']}/{info['limit']} remaining, resets at {reset_time_str}")
        else:
            logger.info(f"GitHub API rate limit: {info['remaining']}/{info['limit']} remaining.")
        return info

    @retry_on_failure()
    @translate_github_errors("list repositories")
    def list_repositories(self, owner: str, owner_type: str = "org") -> List[RepoRef]:
        """All non-archived repositories of an organization or user."""
        logger.info(f"Listing repositories for {owner_type} {owner}")
        if owner_type == "org":
            paginated = self.gh.get_organization(owner).get_repos(type="all")
        elif owner_type == "user":
            paginated = self.gh.get_user(owner).get_repos(type="owner")
        else:
            raise ConfigurationError(f"Unknown owner type '{owner_type}'. Use 'org' or 'user'.")

        repos = []
        for gh_repo in paginated:
            if gh_repo.archived:
                logger.debug(f"Skipping archived repository {gh_repo.full_name}")
                continue
            repos.append(RepoRef(owner=gh_repo.owner.login, name=gh_repo.name))
        logger.info(f"Found {len(repos)} repositories for {owner_type} {owner}")
        return repos

    @retry_on_failure()
    @translate_github_errors("list branches")
    def list_branches(self, repo: RepoRef) -> List[Branch]:
        logger.debug(f"Listing branches of {repo}")
        branches = [
            Branch(name=b.name, protected=bool(b.protected), head_commit_id=b.commit.sha)
            for b in self._repo(repo).get_branches()
        ]
        logger.debug(f"{len(branches)} branches returned for {repo}")
        return branches

    @retry_on_failure()
    @translate_github_errors("get commit")
    def get_commit(self, repo: RepoRef, commit_id: str) -> Commit:
        gh_commit = self._repo(repo).get_commit(commit_id)
        author = gh_commit.commit.author
        author_date = None
        author_name = author_email = None
        if author is not None:
            author_name = author.name
            author_email = author.email
            try:
                author_date = _as_utc(author.date)
            except BadAttributeException:
                logger.debug(f"Commit {commit_id} in {repo} has an unparseable author date")
        return Commit(
            id=gh_commit.sha,
            author_date=author_date,
            author_name=author_name,
            author_email=author_email,
            web_url=gh_commit.html_url,
        )

    def _records(self, repo: RepoRef, label: str, state: str) -> List[TrackingRecord]:
        records = []
        for issue in self._repo(repo).get_issues(state=state, labels=[label]):
            # The issues endpoint also returns pull requests.
            if issue.pull_request is not None:
                continue
            records.append(self._to_record(issue))
        return records

    @retry_on_failure()
    @translate_github_errors("list open records")
    def list_open_labeled_records(self, repo: RepoRef, label: str) -> List[TrackingRecord]:
        records = self._records(repo, label, "open")
        logger.debug(f"{len(records)} open '{label}' records in {repo}")
        return records

    @retry_on_failure()
    @translate_github_errors("list closed records")
    def list_closed_labeled_records(self, repo: RepoRef, label: str) -> List[TrackingRecord]:
        return self._records(repo, label, "closed")

    @translate_github_errors("create record")
    def create_record(self, repo: RepoRef, title: str, body: str, label: str) -> TrackingRecord:
        logger.info(f"Creating record '{title}' in {repo}")
        issue = self._repo(repo).create_issue(title=title, body=body, labels=[label])
        return self._to_record(issue)

    @translate_github_errors("close record")
    def comment_and_close(self, repo: RepoRef, record_id: int, comment: str) -> TrackingRecord:
        logger.info(f"Closing record #{record_id} in {repo}")
        issue = self._repo(repo).get_issue(number=record_id)
        issue.create_comment(comment)
        issue.edit(state="closed", state_reason="completed")
        return self._to_record(issue)

    @translate_github_errors("delete branch")
    def delete_branch_ref(self, repo: RepoRef, branch_name: str) -> None:
        logger.info(f"Deleting branch '{branch_name}' in {repo}")
        self._repo(repo).get_git_ref(f"heads/{branch_name}").delete()

    @staticmethod
    def _to_record(issue) -> TrackingRecord:
        return TrackingRecord(
            id=issue.number,
            title=issue.title,
            body_text=issue.body or "",
            state=issue.state,
            created_at=_as_utc(issue.created_at),
        )
