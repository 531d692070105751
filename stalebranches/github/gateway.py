"""
The narrow interface the sweep pipeline uses to reach the hosting platform.

GitHubClient implements it against the GitHub REST API; the test suite
implements it in memory.
"""
from abc import ABC, abstractmethod
from typing import List

from .models import Branch, Commit, RepoRef, TrackingRecord


class RepositoryGateway(ABC):
    """
    Blocking request/response operations on one hosting platform.

    Every method raises a subclass of stalebranches.errors.GatewayError on failure.
    """

    @abstractmethod
    def list_branches(self, repo: RepoRef) -> List[Branch]:
        """All branches of repo, every page exhausted, in platform order."""
        ...

    @abstractmethod
    def get_commit(self, repo: RepoRef, commit_id: str) -> Commit:
        ...

    @abstractmethod
    def list_open_labeled_records(self, repo: RepoRef, label: str) -> List[TrackingRecord]:
        """Open tracking records carrying label."""
        ...

    @abstractmethod
    def list_closed_labeled_records(self, repo: RepoRef, label: str) -> List[TrackingRecord]:
        """Closed tracking records carrying label. Used only to report inconsistencies."""
        ...

    @abstractmethod
    def create_record(self, repo: RepoRef, title: str, body: str, label: str) -> TrackingRecord:
        ...

    @abstractmethod
    def comment_and_close(self, repo: RepoRef, record_id: int, comment: str) -> TrackingRecord:
        """Adds comment to the record, then closes it as completed."""
        ...

    @abstractmethod
    def delete_branch_ref(self, repo: RepoRef, branch_name: str) -> None:
        ...
