"""Plain data objects for repository, branch, commit and tracking record state."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import quote


@dataclass(frozen=True)
class RepoRef:
    """Identity of a repository, threaded explicitly through every call."""
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class Branch:
    name: str
    protected: bool
    head_commit_id: str


@dataclass(frozen=True)
class Commit:
    """Head commit of a branch. author_date is None when the API gave no usable timestamp."""
    id: str
    author_date: Optional[datetime]
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    web_url: Optional[str] = None


@dataclass(frozen=True)
class FlaggedBranch:
    """A non-protected branch whose last commit predates the branch cutoff. Recomputed every run."""
    repo: RepoRef
    branch_name: str
    last_commit: Commit

    @property
    def branch_url(self) -> str:
        return f"https://github.com/{self.repo.full_name}/tree/{quote(self.branch_name, safe='/')}"


@dataclass(frozen=True)
class TrackingRecord:
    """A remote issue used as the durable marker that a branch was flagged."""
    id: int
    title: str
    body_text: str
    state: str  # "open" or "closed"
    created_at: datetime
