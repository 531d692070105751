"""Tests for the tracking reconciler."""
from datetime import datetime, timedelta, timezone

from stalebranches.github.models import Commit, FlaggedBranch, RepoRef, TrackingRecord
from stalebranches.reconciler import Action, TrackingReconciler, find_record, tracking_title

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
ISSUE_CUTOFF = NOW - timedelta(days=3)
REPO = RepoRef("acme", "widgets")


def flagged(name="old-feature"):
    commit = Commit(id="abc", author_date=NOW - timedelta(days=40))
    return FlaggedBranch(repo=REPO, branch_name=name, last_commit=commit)


def record(record_id, branch_name, created_at, state="open"):
    return TrackingRecord(id=record_id, title=tracking_title(branch_name), body_text="",
                          state=state, created_at=created_at)


def test_title_embeds_branch_name():
    assert tracking_title("feature/x") == "The branch `feature/x` has been flagged for deletion"


def test_title_round_trip_and_no_collision():
    records = [record(1, "feature/x", NOW), record(2, "feature/x-2", NOW), record(3, "x", NOW)]
    found, orphans = find_record(records, "feature/x")
    assert found.id == 1
    assert orphans == []
    assert find_record(records, "feature")[0] is None


def test_no_record_creates():
    decision = TrackingReconciler().reconcile(flagged(), ISSUE_CUTOFF, [])
    assert decision.action is Action.CREATE_RECORD
    assert decision.record is None
    assert decision.inconsistencies == []


def test_record_past_grace_period_deletes():
    existing = record(7, "old-feature", NOW - timedelta(days=4))
    decision = TrackingReconciler().reconcile(flagged(), ISSUE_CUTOFF, [existing])
    assert decision.action is Action.DELETE_AND_CLOSE
    assert decision.record == existing


def test_record_within_grace_period_waits():
    existing = record(7, "old-feature", NOW - timedelta(days=1))
    decision = TrackingReconciler().reconcile(flagged(), ISSUE_CUTOFF, [existing])
    assert decision.action is Action.WAIT_FOR_GRACE_PERIOD


def test_record_created_exactly_at_cutoff_waits():
    existing = record(7, "old-feature", ISSUE_CUTOFF)
    decision = TrackingReconciler().reconcile(flagged(), ISSUE_CUTOFF, [existing])
    assert decision.action is Action.WAIT_FOR_GRACE_PERIOD


def test_other_branches_records_are_ignored():
    other = record(3, "another-branch", NOW - timedelta(days=30))
    decision = TrackingReconciler().reconcile(flagged(), ISSUE_CUTOFF, [other])
    assert decision.action is Action.CREATE_RECORD


def test_duplicates_pick_earliest_and_report_inconsistency():
    later = record(9, "old-feature", NOW - timedelta(days=1))
    earliest = record(4, "old-feature", NOW - timedelta(days=5))
    decision = TrackingReconciler().reconcile(flagged(), ISSUE_CUTOFF, [later, earliest])
    assert decision.record.id == 4
    assert decision.action is Action.DELETE_AND_CLOSE
    assert len(decision.inconsistencies) == 1
    assert "ignoring #9" in decision.inconsistencies[0].message
    assert decision.inconsistencies[0].branch_name == "old-feature"


def test_closed_record_with_surviving_branch_recreates():
    closed = record(2, "old-feature", NOW - timedelta(days=20), state="closed")
    decision = TrackingReconciler().reconcile(flagged(), ISSUE_CUTOFF, [], [closed])
    assert decision.action is Action.CREATE_RECORD
    assert len(decision.inconsistencies) == 1
    assert "#2" in decision.inconsistencies[0].message


def test_closed_record_of_earlier_branch_with_same_name_is_not_inconsistent():
    # the old branch was deleted long ago; a new branch reused its name
    closed = record(1, "old-feature", NOW - timedelta(days=400), state="closed")
    decision = TrackingReconciler().reconcile(flagged(), ISSUE_CUTOFF, [], [closed])
    assert decision.action is Action.CREATE_RECORD
    assert decision.inconsistencies == []


def test_latest_closed_record_is_checked():
    old = record(1, "old-feature", NOW - timedelta(days=400), state="closed")
    recent = record(2, "old-feature", NOW - timedelta(days=20), state="closed")
    decision = TrackingReconciler().reconcile(flagged(), ISSUE_CUTOFF, [], [old, recent])
    assert len(decision.inconsistencies) == 1
    assert "#2" in decision.inconsistencies[0].message


def test_reconcile_is_idempotent_without_state_change():
    reconciler = TrackingReconciler()
    first = reconciler.reconcile(flagged(), ISSUE_CUTOFF, [])
    second = reconciler.reconcile(flagged(), ISSUE_CUTOFF, [])
    assert first.action is second.action is Action.CREATE_RECORD

    existing = record(1, "old-feature", NOW)
    for _ in range(2):
        assert reconciler.reconcile(flagged(), ISSUE_CUTOFF, [existing]).action is Action.WAIT_FOR_GRACE_PERIOD
