"""
Staleness scanner: turns a repository's branches and head commits into the
list of branches that have gone without activity since the branch cutoff.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from common.logging import LoggingManager
from stalebranches.errors import GatewayError, InvalidDataError, NotFoundError
from stalebranches.github.gateway import RepositoryGateway
from stalebranches.github.models import Branch, Commit, FlaggedBranch, RepoRef

logger = LoggingManager.get_logger('stalebranches.scanner')

SCAN_OK = "ok"
SCAN_EMPTY = "empty"
SCAN_FAILED = "failed"


@dataclass
class ScanResult:
    """Outcome of scanning one repository.

    status is "ok" (flagged may still be empty), "empty" (the repository has no
    branches at all) or "failed" (flagged is always empty, error is set).
    """
    repo: RepoRef
    status: str
    flagged: List[FlaggedBranch] = field(default_factory=list)
    branch_count: int = 0
    error: Optional[GatewayError] = None


def is_stale(commit: Commit, branch_cutoff: datetime) -> bool:
    """True iff the commit has a valid author date strictly before branch_cutoff."""
    if commit.author_date is None:
        raise InvalidDataError(f"Commit {commit.id} has no usable author date")
    return branch_cutoff > commit.author_date


class StalenessScanner:
    def __init__(self, gateway: RepositoryGateway):
        self.gateway = gateway

    def scan(self, repo: RepoRef, branch_cutoff: datetime) -> ScanResult:
        """Flags every non-protected branch whose head commit predates branch_cutoff.

        Gateway order is preserved. Any gateway failure other than a single
        vanished commit aborts the scan with a "failed" result, so callers
        never act on a partial branch list.
        """
        logger.info(f"Scanning {repo} for branches without commits since {branch_cutoff.isoformat()}")
        try:
            branches = self.gateway.list_branches(repo)
        except GatewayError as e:
            logger.error(f"Could not list branches of {repo}: [{e.kind}] {e.message}")
            return ScanResult(repo=repo, status=SCAN_FAILED, error=e)

        if not branches:
            logger.info(f"{repo} is an empty repository.")
            return ScanResult(repo=repo, status=SCAN_EMPTY)

        flagged = []
        for branch in branches:
            try:
                candidate = self._evaluate(repo, branch, branch_cutoff)
            except NotFoundError:
                logger.info(f"Branch '{branch.name}' in {repo} vanished during the scan, skipping")
                continue
            except GatewayError as e:
                logger.error(f"Scan of {repo} aborted at branch '{branch.name}': [{e.kind}] {e.message}")
                return ScanResult(repo=repo, status=SCAN_FAILED, branch_count=len(branches), error=e)
            if candidate is not None:
                flagged.append(candidate)

        logger.info(f"{len(flagged)} of {len(branches)} branches in {repo} are stale")
        return ScanResult(repo=repo, status=SCAN_OK, flagged=flagged, branch_count=len(branches))

    def _evaluate(self, repo: RepoRef, branch: Branch, branch_cutoff: datetime) -> Optional[FlaggedBranch]:
        logger.debug(f"Processing branch: {branch.name}")
        if branch.protected:
            logger.info(f"Skipping protected branch: {branch.name}")
            return None

        commit = self.gateway.get_commit(repo, branch.head_commit_id)
        try:
            stale = is_stale(commit, branch_cutoff)
        except InvalidDataError as e:
            logger.warning(f"Skipping branch '{branch.name}' in {repo}: {e}")
            return None
        if not stale:
            return None

        LoggingManager.success(logger, f"Found a stale branch: {branch.name} "
                                       f"(last commit {commit.author_date:%Y-%m-%d}, cutoff {branch_cutoff:%Y-%m-%d})")
        return FlaggedBranch(repo=repo, branch_name=branch.name, last_commit=commit)
