"""
Stale branch service: runs scan -> reconcile -> execute for each repository.

Branches of one repository are handled strictly one after another, so a
search-then-create for a branch never races another one from this process.
Independent repositories may be fanned out over a bounded thread pool; each
worker returns its own report and nothing mutable is shared between them.
"""
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from common.logging import LoggingManager
from stalebranches.config import DEFAULT_LABEL
from stalebranches.errors import ConsistencyError, GatewayError
from stalebranches.executor import ActionExecutor
from stalebranches.github.gateway import RepositoryGateway
from stalebranches.github.models import FlaggedBranch, RepoRef, TrackingRecord
from stalebranches.reconciler import Action, TrackingReconciler, find_record
from stalebranches.scanner import SCAN_EMPTY, SCAN_FAILED, ScanResult, StalenessScanner

logger = LoggingManager.get_logger('stalebranches.service')

STATUS_OK = "ok"
STATUS_EMPTY = "empty"
STATUS_SCAN_FAILED = "scan-failed"
STATUS_CANCELLED = "cancelled"


@dataclass(frozen=True)
class RunCutoffs:
    """The single notion of "now" shared by every branch in one run."""
    now: datetime
    branch_cutoff: datetime
    issue_cutoff: datetime
    delete_after: datetime

    @classmethod
    def compute(cls, branch_age: timedelta, issue_age: timedelta, now: Optional[datetime] = None) -> "RunCutoffs":
        now = now or datetime.now(timezone.utc)
        return cls(
            now=now,
            branch_cutoff=now - branch_age,
            issue_cutoff=now - issue_age,
            delete_after=now + issue_age,
        )


class RunDeadline:
    """Cooperative cancellation. Once expired no new branch or repository is started."""

    def __init__(self, expires_at: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.expires_at = expires_at
        self._clock = clock

    @classmethod
    def from_time_limit(cls, time_limit: Optional[timedelta], clock: Callable[[], float] = time.monotonic) -> "RunDeadline":
        if time_limit is None:
            return cls(None, clock)
        return cls(clock() + time_limit.total_seconds(), clock)

    def expired(self) -> bool:
        return self.expires_at is not None and self._clock() >= self.expires_at


@dataclass
class BranchFailure:
    branch_name: str
    action: str
    kind: str
    message: str


@dataclass
class RepositoryReport:
    repo: RepoRef
    status: str = STATUS_OK
    flagged: int = 0
    created: int = 0
    waiting: int = 0
    deleted: int = 0
    # True when the deadline stopped the branch loop early
    interrupted: bool = False
    error: Optional[str] = None
    failures: List[BranchFailure] = field(default_factory=list)
    inconsistencies: List[ConsistencyError] = field(default_factory=list)

    @property
    def processed(self) -> bool:
        return self.status in (STATUS_OK, STATUS_EMPTY)

    def summary_line(self) -> str:
        if self.status == STATUS_SCAN_FAILED:
            return f"{self.repo}: scan failed ({self.error})"
        if self.status == STATUS_EMPTY:
            return f"{self.repo}: empty repository"
        if self.status == STATUS_CANCELLED:
            return f"{self.repo}: skipped, time limit reached"
        line = (f"{self.repo}: flagged {self.flagged}, created {self.created}, waiting {self.waiting}, "
                f"deleted {self.deleted}, failed {len(self.failures)}")
        if self.interrupted:
            line += " (stopped early, time limit reached)"
        return line


@dataclass
class RunSummary:
    reports: List[RepositoryReport] = field(default_factory=list)

    def _total(self, attribute: str) -> int:
        return sum(getattr(report, attribute) for report in self.reports)

    @property
    def flagged(self) -> int:
        return self._total("flagged")

    @property
    def created(self) -> int:
        return self._total("created")

    @property
    def waiting(self) -> int:
        return self._total("waiting")

    @property
    def deleted(self) -> int:
        return self._total("deleted")

    @property
    def failed(self) -> int:
        return sum(len(report.failures) for report in self.reports)

    @property
    def inconsistencies(self) -> int:
        return sum(len(report.inconsistencies) for report in self.reports)

    @property
    def exit_code(self) -> int:
        """1 when not a single repository could be processed, 0 otherwise."""
        return 0 if any(report.processed for report in self.reports) else 1

    def outputs(self) -> Dict[str, int]:
        return {
            "flagged-count": self.flagged,
            "created-count": self.created,
            "waiting-count": self.waiting,
            "deleted-count": self.deleted,
            "failed-count": self.failed,
        }


class StaleBranchService:
    def __init__(self, gateway: RepositoryGateway, cutoffs: RunCutoffs, label: str = DEFAULT_LABEL,
                 max_workers: int = 1, deadline: Optional[RunDeadline] = None,
                 close_message: Optional[str] = None):
        self.gateway = gateway
        self.cutoffs = cutoffs
        self.label = label
        self.max_workers = max(1, max_workers)
        self.deadline = deadline or RunDeadline()
        self.scanner = StalenessScanner(gateway)
        self.reconciler = TrackingReconciler()
        self.executor = ActionExecutor(gateway, label, close_message=close_message)
        logger.info(f"Branch cutoff: {cutoffs.branch_cutoff.isoformat()}, "
                    f"issue cutoff: {cutoffs.issue_cutoff.isoformat()}, label: '{label}'")

    def scan(self, repo: RepoRef) -> ScanResult:
        """Report-only: the stale branches of repo, nothing is created or deleted."""
        return self.scanner.scan(repo, self.cutoffs.branch_cutoff)

    def run_repository(self, repo: RepoRef) -> RepositoryReport:
        report = RepositoryReport(repo=repo)
        if self.deadline.expired():
            logger.warning(f"Time limit reached, not starting {repo}")
            report.status = STATUS_CANCELLED
            return report

        scan = self.scan(repo)
        if scan.status == SCAN_FAILED:
            report.status = STATUS_SCAN_FAILED
            report.error = f"[{scan.error.kind}] {scan.error.message}" if scan.error else "unknown error"
            return report
        if scan.status == SCAN_EMPTY:
            report.status = STATUS_EMPTY
            return report

        report.flagged = len(scan.flagged)
        if not scan.flagged:
            LoggingManager.success(logger, f"No stale branches in {repo}.")
            return report

        closed_cache: Dict[str, List[TrackingRecord]] = {}
        for flagged in scan.flagged:
            if self.deadline.expired():
                logger.warning(f"Time limit reached, leaving remaining branches of {repo} for the next run")
                report.interrupted = True
                break
            try:
                self._process_branch(flagged, report, closed_cache)
            except Exception as e:
                logger.error(f"Unexpected error processing '{flagged.branch_name}' in {repo}: {e}", exc_info=True)
                report.failures.append(BranchFailure(flagged.branch_name, "process", "error", str(e)))
        return report

    def _closed_records(self, repo: RepoRef, cache: Dict[str, List[TrackingRecord]]) -> List[TrackingRecord]:
        if "records" not in cache:
            try:
                cache["records"] = self.gateway.list_closed_labeled_records(repo, self.label)
            except GatewayError as e:
                logger.warning(f"Could not list closed '{self.label}' records in {repo}: [{e.kind}] {e.message}")
                cache["records"] = []
        return cache["records"]

    def _process_branch(self, flagged: FlaggedBranch, report: RepositoryReport,
                        closed_cache: Dict[str, List[TrackingRecord]]) -> None:
        repo = flagged.repo
        try:
            open_records = self.gateway.list_open_labeled_records(repo, self.label)
        except GatewayError as e:
            logger.error(f"Could not search tracking records for '{flagged.branch_name}' in {repo}: "
                         f"[{e.kind}] {e.message}")
            report.failures.append(BranchFailure(flagged.branch_name, "search", e.kind, e.message))
            return

        closed_records: List[TrackingRecord] = []
        if find_record(open_records, flagged.branch_name)[0] is None:
            closed_records = self._closed_records(repo, closed_cache)

        decision = self.reconciler.reconcile(flagged, self.cutoffs.issue_cutoff, open_records, closed_records)
        report.inconsistencies.extend(decision.inconsistencies)

        if decision.action is Action.WAIT_FOR_GRACE_PERIOD:
            report.waiting += 1
            return

        if decision.action is Action.CREATE_RECORD:
            outcome = self.executor.create_record(flagged, self.cutoffs.delete_after)
            if outcome.ok:
                report.created += 1
        else:
            outcome = self.executor.delete_and_close(flagged, decision.record)
            if outcome.ok and outcome.note != "record vanished":
                report.deleted += 1

        if not outcome.ok:
            report.failures.append(BranchFailure(flagged.branch_name, decision.action.value,
                                                 outcome.error_kind or "error",
                                                 outcome.error.message if outcome.error else ""))

    def run(self, repos: List[RepoRef]) -> RunSummary:
        """Runs every repository, in parallel up to max_workers, and collects the reports in input order."""
        if not repos:
            logger.warning("No repositories to process")
            return RunSummary()

        if self.max_workers == 1 or len(repos) == 1:
            return RunSummary([self._run_isolated(repo) for repo in repos])

        reports: Dict[RepoRef, RepositoryReport] = {}
        workers = min(self.max_workers, len(repos))
        logger.info(f"Processing {len(repos)} repositories with {workers} workers")
        with ThreadPoolExecutor(max_workers=workers) as pool:
            future_to_repo = {pool.submit(self._run_isolated, repo): repo for repo in repos}
            for future in as_completed(future_to_repo):
                repo = future_to_repo[future]
                reports[repo] = future.result()
        return RunSummary([reports[repo] for repo in repos])

    def _run_isolated(self, repo: RepoRef) -> RepositoryReport:
        try:
            report = self.run_repository(repo)
        except Exception as e:
            logger.error(f"Error processing repository {repo}: {e}", exc_info=True)
            report = RepositoryReport(repo=repo, status=STATUS_SCAN_FAILED, error=str(e))
        logger.info(report.summary_line())
        return report
