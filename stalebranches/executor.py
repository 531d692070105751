"""Carries out reconciler decisions through the repository gateway."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from common.logging import LoggingManager
from stalebranches.errors import GatewayError, NotFoundError
from stalebranches.github.gateway import RepositoryGateway
from stalebranches.github.models import FlaggedBranch, TrackingRecord
from stalebranches.reconciler import Action, tracking_title

logger = LoggingManager.get_logger('stalebranches.executor')

DATE_FORMAT = "%Y-%m-%d %H:%M:%S%z"
PROJECT_URL = "https://github.com/stalebranches/stalebranches"
DEFAULT_CLOSE_MESSAGE = "This branch has been deleted after the grace period elapsed without new activity."


def format_date(value: Optional[datetime]) -> str:
    if value is None:
        return "Unknown"
    return value.strftime(DATE_FORMAT)


def compose_record_body(branch: FlaggedBranch, delete_after: datetime) -> str:
    commit = branch.last_commit
    lines = [
        "# Stale Branch Deletion Notice",
        "",
        f"The branch [`{branch.branch_name}`][0] has been flagged for deletion by [stalebranches][1] "
        f"due to a lack of activity.",
        "",
        "## Further Details",
        "",
        f"- Will be deleted after: {format_date(delete_after)}.",
        f"- Branch URL: {branch.branch_url}",
        f"- Last commit by: {commit.author_name or 'Unknown'} <{commit.author_email or 'Unknown'}>",
        f"- Last commit on: {format_date(commit.author_date)}.",
        f"- Last commit URL: {commit.web_url or 'Unknown'}",
        "",
        "Push a commit to the branch to keep it; it will be flagged again only after a new period of inactivity.",
        "",
        f"[0]: {branch.branch_url}",
        f"[1]: {PROJECT_URL}",
    ]
    return "\n".join(lines)


def compose_close_comment(branch: FlaggedBranch, message: Optional[str] = None) -> str:
    return f"{message or DEFAULT_CLOSE_MESSAGE}\n\nDeleted branch: `{branch.branch_name}`"


@dataclass
class Outcome:
    """Result of executing one action. error is set only when ok is False."""
    action: Action
    branch_name: str
    ok: bool
    record: Optional[TrackingRecord] = None
    error: Optional[GatewayError] = None
    note: str = ""

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error else None


class ActionExecutor:
    def __init__(self, gateway: RepositoryGateway, label: str, close_message: Optional[str] = None):
        self.gateway = gateway
        self.label = label
        self.close_message = close_message

    def create_record(self, branch: FlaggedBranch, delete_after: datetime) -> Outcome:
        """Opens the tracking record announcing the branch's deletion.

        Not guarded locally against double creation: the next run finds a
        record that was accepted remotely by its title.
        """
        title = tracking_title(branch.branch_name)
        body = compose_record_body(branch, delete_after)
        try:
            record = self.gateway.create_record(branch.repo, title, body, self.label)
        except GatewayError as e:
            logger.error(f"Could not create tracking record for '{branch.branch_name}' in {branch.repo}: "
                         f"[{e.kind}] {e.message}")
            return Outcome(Action.CREATE_RECORD, branch.branch_name, ok=False, error=e)
        LoggingManager.success(logger, f"Created tracking record #{record.id} for '{branch.branch_name}' in {branch.repo}")
        return Outcome(Action.CREATE_RECORD, branch.branch_name, ok=True, record=record)

    def delete_and_close(self, branch: FlaggedBranch, record: TrackingRecord) -> Outcome:
        """Comments on and closes record, then deletes the branch.

        If the deletion fails the branch is still there with a closed record,
        which the next run treats like a branch without a record.
        """
        repo = branch.repo
        try:
            closed = self.gateway.comment_and_close(repo, record.id, compose_close_comment(branch, self.close_message))
        except NotFoundError:
            logger.info(f"Tracking record #{record.id} for '{branch.branch_name}' in {repo} is gone, "
                        f"treating as already resolved")
            return Outcome(Action.DELETE_AND_CLOSE, branch.branch_name, ok=True, record=record,
                           note="record vanished")
        except GatewayError as e:
            logger.error(f"Could not close tracking record #{record.id} in {repo}: [{e.kind}] {e.message}")
            return Outcome(Action.DELETE_AND_CLOSE, branch.branch_name, ok=False, record=record, error=e)

        try:
            self.gateway.delete_branch_ref(repo, branch.branch_name)
        except NotFoundError:
            logger.info(f"Branch '{branch.branch_name}' in {repo} was already deleted")
            return Outcome(Action.DELETE_AND_CLOSE, branch.branch_name, ok=True, record=closed,
                           note="branch already deleted")
        except GatewayError as e:
            logger.error(f"Closed record #{record.id} but could not delete '{branch.branch_name}' in {repo}: "
                         f"[{e.kind}] {e.message}")
            return Outcome(Action.DELETE_AND_CLOSE, branch.branch_name, ok=False, record=closed, error=e)

        LoggingManager.success(logger, f"Deleted branch '{branch.branch_name}' in {repo} and closed record #{record.id}")
        return Outcome(Action.DELETE_AND_CLOSE, branch.branch_name, ok=True, record=closed)
