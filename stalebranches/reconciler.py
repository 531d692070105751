"""
Tracking reconciler.

There is no local state: whether a stale branch was already announced is
decided by finding its tracking record, by exact title, among the open
records that carry the stale-branch label. The title template embeds the
branch name verbatim, so the lookup is a round trip of tracking_title().
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from common.logging import LoggingManager
from stalebranches.errors import ConsistencyError
from stalebranches.github.models import FlaggedBranch, TrackingRecord

logger = LoggingManager.get_logger('stalebranches.reconciler')

TITLE_TEMPLATE = "The branch `{branch_name}` has been flagged for deletion"


def tracking_title(branch_name: str) -> str:
    return TITLE_TEMPLATE.format(branch_name=branch_name)


class Action(enum.Enum):
    CREATE_RECORD = "create"
    WAIT_FOR_GRACE_PERIOD = "wait"
    DELETE_AND_CLOSE = "delete"


@dataclass
class Decision:
    action: Action
    branch: FlaggedBranch
    record: Optional[TrackingRecord] = None
    inconsistencies: List[ConsistencyError] = field(default_factory=list)


def find_record(records: Iterable[TrackingRecord], branch_name: str) -> Tuple[Optional[TrackingRecord], List[TrackingRecord]]:
    """Returns the earliest-created record titled for branch_name and any later duplicates."""
    title = tracking_title(branch_name)
    matches = [record for record in records if record.title == title]
    if not matches:
        return None, []
    # ties on created_at fall back to the lower record id
    matches.sort(key=lambda record: (record.created_at, record.id))
    return matches[0], matches[1:]


class TrackingReconciler:
    """Decides the next action for a flagged branch from the records observed for it."""

    def reconcile(self, flagged: FlaggedBranch, issue_cutoff: datetime,
                  open_records: Iterable[TrackingRecord],
                  closed_records: Iterable[TrackingRecord] = ()) -> Decision:
        """
        Args:
            flagged: The stale branch.
            issue_cutoff: Records created strictly before this instant have
                outlived the grace period. Computed once per run.
            open_records: Open records carrying the stale-branch label.
            closed_records: Closed records with that label; only consulted to
                report a branch that survived its closed record.

        Returns:
            Decision: CREATE_RECORD when no open record matches,
            DELETE_AND_CLOSE when the matching record predates issue_cutoff,
            WAIT_FOR_GRACE_PERIOD otherwise.
        """
        branch_name = flagged.branch_name
        record, orphans = find_record(open_records, branch_name)
        inconsistencies = []

        if orphans:
            ids = ", ".join(f"#{o.id}" for o in orphans)
            message = (f"Branch '{branch_name}' in {flagged.repo} has {len(orphans) + 1} open tracking records; "
                       f"using #{record.id}, ignoring {ids}")
            logger.warning(message)
            inconsistencies.append(ConsistencyError(message, branch_name=branch_name))

        if record is None:
            closed = self._latest_closed(closed_records, branch_name)
            head_date = flagged.last_commit.author_date
            # a record older than the head commit was about an earlier branch of the same name
            if closed is not None and (head_date is None or closed.created_at > head_date):
                message = (f"Branch '{branch_name}' in {flagged.repo} still exists although tracking record "
                           f"#{closed.id} was closed; flagging it again")
                logger.warning(message)
                inconsistencies.append(ConsistencyError(message, branch_name=branch_name))
            logger.debug(f"No open tracking record for '{branch_name}' in {flagged.repo}")
            return Decision(Action.CREATE_RECORD, flagged, inconsistencies=inconsistencies)

        if record.created_at < issue_cutoff:
            logger.info(f"Grace period for '{branch_name}' elapsed (record #{record.id} opened "
                        f"{record.created_at.isoformat()})")
            action = Action.DELETE_AND_CLOSE
        else:
            logger.info(f"Branch '{branch_name}' is within its grace period (record #{record.id})")
            action = Action.WAIT_FOR_GRACE_PERIOD
        return Decision(action, flagged, record=record, inconsistencies=inconsistencies)

    @staticmethod
    def _latest_closed(closed_records: Iterable[TrackingRecord], branch_name: str) -> Optional[TrackingRecord]:
        title = tracking_title(branch_name)
        matches = [record for record in closed_records if record.title == title]
        return max(matches, key=lambda record: (record.created_at, record.id), default=None)
