"""Tests for the run and item ledgers."""

from datetime import datetime, timedelta

from app.models.run import Run
from app.services.dispatcher import LeaseKeeper
from app.services.ledger import ItemLedger, RunLedger


def create_run(runs, run_id="run-1", target_ids=(101, 102, 103), lock_token="token-a"):
    return runs.create(
        run_id=run_id,
        model_id=1,
        run_type="MODEL_CHAPTER",
        scope="book",
        scope_ids={"bookId": 1},
        limit=None,
        skip=None,
        target_type="chapter",
        target_ids=list(target_ids),
        lock_token=lock_token,
    )


def assert_metrics_consistent(state):
    metrics = state.metrics
    assert metrics["succeeded"] + metrics["failed"] + metrics["skipped"] + metrics["pending"] == metrics["total"]


def test_create_run_with_items(session_factory):
    """Test a new run starts pending with every item pending."""
    runs = RunLedger(session_factory)
    items = ItemLedger(session_factory)

    state = create_run(runs)

    assert state.status == "pending"
    assert state.metrics == {"total": 3, "succeeded": 0, "failed": 0, "skipped": 0, "pending": 3}
    assert items.pending_targets("run-1") == [101, 102, 103]


def test_create_existing_run_returns_none(session_factory):
    """Test the primary key rejects a second run with the same id."""
    runs = RunLedger(session_factory)
    create_run(runs)

    assert create_run(runs, target_ids=(201,)) is None
    assert runs.get("run-1").metrics["total"] == 3


def test_claim_is_compare_and_set(session_factory):
    """Test only one claim of a pending item succeeds."""
    runs = RunLedger(session_factory)
    items = ItemLedger(session_factory)
    create_run(runs)

    assert items.claim("run-1", 101) == 1
    assert items.claim("run-1", 101) is None
    assert items.running_targets("run-1", [101, 102]) == [101]


def test_outcomes_keep_metrics_consistent(session_factory):
    """Test counters move with item outcomes and always add up."""
    runs = RunLedger(session_factory)
    items = ItemLedger(session_factory)
    create_run(runs)

    items.claim("run-1", 101)
    assert_metrics_consistent(runs.get("run-1"))
    assert items.record_success("run-1", 101, "ref-1", [])

    items.claim("run-1", 102)
    assert items.record_failure("run-1", 102, "Mock provider failure")

    state = runs.get("run-1")
    assert state.metrics == {"total": 3, "succeeded": 1, "failed": 1, "skipped": 0, "pending": 1}
    assert_metrics_consistent(state)


def test_outcome_requires_running_item(session_factory):
    """Test outcomes are not recorded for items that were never claimed."""
    runs = RunLedger(session_factory)
    items = ItemLedger(session_factory)
    create_run(runs)

    assert not items.record_success("run-1", 101, "ref-1", [])
    assert not items.record_failure("run-1", 101, "boom")
    assert runs.get("run-1").metrics["pending"] == 3


def test_reset_failed(session_factory):
    """Test failed items go back to pending with counters adjusted."""
    runs = RunLedger(session_factory)
    items = ItemLedger(session_factory)
    create_run(runs)
    items.claim("run-1", 102)
    items.record_failure("run-1", 102, "boom")

    assert items.reset_failed("run-1") == [102]

    state = runs.get("run-1")
    assert state.metrics["failed"] == 0
    assert state.metrics["pending"] == 3
    assert_metrics_consistent(state)
    assert items.failed_targets("run-1") == []


def test_reset_stale_running(session_factory):
    """Test items left running by a dead dispatcher become pending."""
    runs = RunLedger(session_factory)
    items = ItemLedger(session_factory)
    create_run(runs)
    items.claim("run-1", 101)

    assert items.reset_stale_running("run-1") == 1
    assert items.pending_targets("run-1") == [101, 102, 103]


def test_lock_is_exclusive(session_factory):
    """Test a held lease blocks other callers until released."""
    runs = RunLedger(session_factory)
    create_run(runs)

    assert not runs.acquire_lock("run-1", "token-b", ttl_seconds=3600)

    runs.release_lock("run-1", "token-a")
    assert runs.acquire_lock("run-1", "token-b", ttl_seconds=3600)
    assert not runs.acquire_lock("run-1", "token-c", ttl_seconds=3600)


def test_expired_lock_can_be_taken_over(test_db, session_factory):
    """Test a lease older than the TTL is treated as abandoned."""
    runs = RunLedger(session_factory)
    create_run(runs)
    test_db.query(Run).filter(Run.run_id == "run-1").update(
        {Run.locked_at: datetime.utcnow() - timedelta(hours=2)}
    )
    test_db.commit()

    assert runs.acquire_lock("run-1", "token-b", ttl_seconds=3600)


def test_cancel_only_when_running(session_factory):
    """Test cancellation is only recorded on a running run and cleared on the next pass."""
    runs = RunLedger(session_factory)
    create_run(runs)

    assert not runs.request_cancel("run-1")

    runs.mark_running("run-1", "token-a")
    assert runs.request_cancel("run-1")
    assert runs.is_cancel_requested("run-1")

    runs.mark_running("run-1", "token-a")
    assert not runs.is_cancel_requested("run-1")


def test_finalize_statuses(session_factory):
    """Test finalize settles the status from what is left pending."""
    runs = RunLedger(session_factory)
    items = ItemLedger(session_factory)
    create_run(runs)
    runs.mark_running("run-1", "token-a")
    items.claim("run-1", 101)
    items.record_failure("run-1", 101, "boom")

    cancelled = runs.finalize("run-1", "token-a", cancelled=True)
    assert cancelled.status == "cancelled"
    assert cancelled.error_summary["failed_count"] == 1
    assert cancelled.error_summary["last_error"] == "boom"
    assert_metrics_consistent(cancelled)

    for target_id in (102, 103):
        items.claim("run-1", target_id)
        items.record_success("run-1", target_id, f"ref-{target_id}", [])

    completed = runs.finalize("run-1", "token-a", cancelled=False)
    assert completed.status == "completed"
    assert completed.metrics == {"total": 3, "succeeded": 2, "failed": 1, "skipped": 0, "pending": 0}


def test_list_runs_filters(session_factory):
    """Test filtering and paging of the run listing."""
    runs = RunLedger(session_factory)
    create_run(runs, run_id="run-1")
    create_run(runs, run_id="run-2")

    page, total = runs.list_runs(status="pending", limit=1)
    assert total == 2
    assert len(page) == 1

    assert runs.list_runs(model_id=99) == ([], 0)


def test_refresh_lock_needs_the_holding_token(session_factory):
    """Test only the lease holder can push the lease forward."""
    runs = RunLedger(session_factory)
    create_run(runs)

    assert runs.refresh_lock("run-1", "token-a")
    assert not runs.refresh_lock("run-1", "token-b")


def test_lease_keeper_notices_takeover(test_db, session_factory):
    """Test the keeper reports a lease taken over by another token."""
    runs = RunLedger(session_factory)
    create_run(runs)
    keeper = LeaseKeeper(runs, "run-1", "token-a", ttl_seconds=3600)

    assert keeper.refresh()
    test_db.query(Run).filter(Run.run_id == "run-1").update({Run.lock_token: "token-b"})
    test_db.commit()

    assert not keeper.refresh()
    assert keeper.lost
