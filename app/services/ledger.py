"""Durable run and run-item ledgers.

Every public method opens its own short session so that the dispatcher's
worker threads never share one. Metric counters on the run row are changed
with SQL increments in the same transaction as the item status change they
reflect, which keeps ``succeeded + failed + skipped + pending == total`` true
for any reader at any time. Items that are ``running`` count as pending.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.models.result import ComparisonResult
from app.models.run import Run, RunItem

logger = logging.getLogger(__name__)


@dataclass
class RunState:
    """Detached snapshot of a run row."""

    run_id: str
    model_id: int
    run_type: str
    scope: str
    scope_ids: Dict[str, int]
    limit: Optional[int]
    skip: Optional[int]
    status: str
    cancel_requested: bool
    metrics: Dict[str, int] = field(default_factory=dict)
    error_summary: Optional[Dict[str, Any]] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    @classmethod
    def from_row(cls, run: Run) -> "RunState":
        return cls(
            run_id=run.run_id,
            model_id=run.model_id,
            run_type=run.run_type,
            scope=run.scope,
            scope_ids=dict(run.scope_ids or {}),
            limit=run.limit,
            skip=run.skip,
            status=run.status,
            cancel_requested=bool(run.cancel_requested),
            metrics=run.metrics(),
            error_summary=run.error_summary,
            created_by=run.created_by,
            created_at=run.created_at,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_ms=run.duration_ms,
        )

    def same_parameters(self, model_id, run_type, scope, scope_ids, limit, skip) -> bool:
        return (
            self.model_id == model_id
            and self.run_type == run_type
            and self.scope == scope
            and self.scope_ids == dict(scope_ids or {})
            and self.limit == limit
            and self.skip == skip
        )


class RunLedger:
    """Run records: identity, status, dispatch lease and metric counters."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get(self, run_id: str) -> Optional[RunState]:
        with self.session_factory() as db:
            run = db.query(Run).filter(Run.run_id == run_id).first()
            return RunState.from_row(run) if run else None

    def create(
        self,
        run_id: str,
        model_id: int,
        run_type: str,
        scope: str,
        scope_ids: Dict[str, int],
        limit: Optional[int],
        skip: Optional[int],
        target_type: str,
        target_ids: List[int],
        lock_token: str,
        created_by: str = "admin",
    ) -> Optional[RunState]:
        """
        Insert a pending run, locked by ``lock_token``, together with its items.

        Returns:
            The new run, or None if a run with this id already exists
        """
        now = datetime.utcnow()
        with self.session_factory() as db:
            run = Run(
                run_id=run_id,
                model_id=model_id,
                run_type=run_type,
                scope=scope,
                scope_ids=dict(scope_ids),
                limit=limit,
                skip=skip,
                status="pending",
                cancel_requested=False,
                total=len(target_ids),
                succeeded=0,
                failed=0,
                skipped=0,
                pending=len(target_ids),
                lock_token=lock_token,
                locked_at=now,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
            db.add(run)
            try:
                # The run row goes first so the primary key decides concurrent creators
                db.flush()
                db.add_all(
                    [
                        RunItem(
                            run_id=run_id,
                            target_type=target_type,
                            target_id=target_id,
                            position=position,
                            status="pending",
                            attempt=0,
                            updated_at=now,
                        )
                        for position, target_id in enumerate(target_ids)
                    ]
                )
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info(f"Run {run_id} already exists")
                return None

            db.refresh(run)
            logger.info(f"Created run {run_id} with {len(target_ids)} {target_type} items")
            return RunState.from_row(run)

    def acquire_lock(self, run_id: str, token: str, ttl_seconds: int) -> bool:
        """Take the dispatch lease if it is free or its holder went away."""
        now = datetime.utcnow()
        cutoff = now - timedelta(seconds=ttl_seconds)
        with self.session_factory() as db:
            updated = (
                db.query(Run)
                .filter(
                    Run.run_id == run_id,
                    (Run.lock_token.is_(None)) | (Run.locked_at < cutoff),
                )
                .update(
                    {Run.lock_token: token, Run.locked_at: now, Run.updated_at: now},
                    synchronize_session=False,
                )
            )
            db.commit()
        return updated == 1

    def refresh_lock(self, run_id: str, token: str) -> bool:
        """Push the lease forward. Returns False if ``token`` no longer holds it."""
        now = datetime.utcnow()
        with self.session_factory() as db:
            updated = (
                db.query(Run)
                .filter(Run.run_id == run_id, Run.lock_token == token)
                .update({Run.locked_at: now}, synchronize_session=False)
            )
            db.commit()
        return updated == 1

    def release_lock(self, run_id: str, token: str):
        with self.session_factory() as db:
            db.query(Run).filter(Run.run_id == run_id, Run.lock_token == token).update(
                {Run.lock_token: None, Run.locked_at: None},
                synchronize_session=False,
            )
            db.commit()

    def mark_running(self, run_id: str, token: str):
        """Flag the run as dispatching and clear any earlier cancellation request."""
        now = datetime.utcnow()
        with self.session_factory() as db:
            db.query(Run).filter(Run.run_id == run_id, Run.lock_token == token).update(
                {
                    Run.status: "running",
                    Run.cancel_requested: False,
                    Run.started_at: now,
                    Run.completed_at: None,
                    Run.locked_at: now,
                    Run.updated_at: now,
                },
                synchronize_session=False,
            )
            db.commit()

    def request_cancel(self, run_id: str) -> bool:
        """Set cancel_requested on a running run. Returns False if it is not running."""
        with self.session_factory() as db:
            updated = (
                db.query(Run)
                .filter(Run.run_id == run_id, Run.status == "running")
                .update(
                    {Run.cancel_requested: True, Run.updated_at: datetime.utcnow()},
                    synchronize_session=False,
                )
            )
            db.commit()
        return updated == 1

    def is_cancel_requested(self, run_id: str) -> bool:
        with self.session_factory() as db:
            flag = db.query(Run.cancel_requested).filter(Run.run_id == run_id).scalar()
            return bool(flag)

    def finalize(
        self,
        run_id: str,
        token: str,
        cancelled: bool,
        previous_status: Optional[str] = None,
    ) -> RunState:
        """
        Recompute metrics from the item ledger, settle the status and release the lease.

        Args:
            run_id: Run to finalize
            token: Lease token held by the caller
            cancelled: Whether the dispatch pass observed a cancellation request
            previous_status: Status before this pass, used when untouched items remain

        Returns:
            Snapshot of the finalized run
        """
        now = datetime.utcnow()
        with self.session_factory() as db:
            run = db.query(Run).filter(Run.run_id == run_id).with_for_update().one()
            counts = dict(
                db.query(RunItem.status, func.count(RunItem.item_pk))
                .filter(RunItem.run_id == run_id)
                .group_by(RunItem.status)
                .all()
            )

            succeeded = counts.get("succeeded", 0)
            failed = counts.get("failed", 0)
            pending = counts.get("pending", 0) + counts.get("running", 0)

            run.total = succeeded + failed + pending
            run.succeeded = succeeded
            run.failed = failed
            run.skipped = 0
            run.pending = pending

            if pending == 0:
                run.status = "completed"
            elif cancelled or previous_status == "cancelled":
                run.status = "cancelled"
            else:
                run.status = "running"

            if failed:
                last = (
                    db.query(RunItem)
                    .filter(RunItem.run_id == run_id, RunItem.status == "failed")
                    .order_by(RunItem.updated_at.desc(), RunItem.item_pk.desc())
                    .first()
                )
                run.error_summary = {
                    "failed_count": failed,
                    "last_error": last.last_error,
                    "last_error_at": last.updated_at.isoformat() if last.updated_at else None,
                }
            else:
                run.error_summary = None

            run.completed_at = now
            if run.started_at:
                run.duration_ms = int((now - run.started_at).total_seconds() * 1000)
            if run.lock_token == token:
                run.lock_token = None
                run.locked_at = None
            run.updated_at = now

            db.commit()
            db.refresh(run)
            logger.info(
                f"Run {run_id} finalized as {run.status}: "
                f"{succeeded} succeeded, {failed} failed, {pending} pending"
            )
            return RunState.from_row(run)

    def mark_failed(self, run_id: str, token: str, message: str):
        """Mark the run failed after a fatal error and release the lease."""
        now = datetime.utcnow()
        with self.session_factory() as db:
            db.query(Run).filter(Run.run_id == run_id, Run.lock_token == token).update(
                {
                    Run.status: "failed",
                    Run.error_summary: {
                        "failed_count": 0,
                        "last_error": message,
                        "last_error_at": now.isoformat(),
                    },
                    Run.completed_at: now,
                    Run.lock_token: None,
                    Run.locked_at: None,
                    Run.updated_at: now,
                },
                synchronize_session=False,
            )
            db.commit()

    def list_runs(
        self,
        run_type: Optional[str] = None,
        status: Optional[str] = None,
        model_id: Optional[int] = None,
        offset: int = 0,
        limit: int = 50,
    ):
        """Return (runs, total) newest first."""
        with self.session_factory() as db:
            query = db.query(Run)
            if run_type:
                query = query.filter(Run.run_type == run_type)
            if status:
                query = query.filter(Run.status == status)
            if model_id is not None:
                query = query.filter(Run.model_id == model_id)

            total = query.count()
            runs = query.order_by(Run.created_at.desc()).offset(offset).limit(limit).all()
            return [RunState.from_row(r) for r in runs], total


class ItemLedger:
    """Run item records: claims, outcomes and retry resets."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _targets_with_status(self, run_id: str, status: str) -> List[int]:
        with self.session_factory() as db:
            rows = (
                db.query(RunItem.target_id)
                .filter(RunItem.run_id == run_id, RunItem.status == status)
                .order_by(RunItem.position)
                .all()
            )
            return [row.target_id for row in rows]

    def pending_targets(self, run_id: str) -> List[int]:
        return self._targets_with_status(run_id, "pending")

    def failed_targets(self, run_id: str) -> List[int]:
        return self._targets_with_status(run_id, "failed")

    def reset_stale_running(self, run_id: str) -> int:
        """Return items abandoned by a dead dispatcher to pending."""
        with self.session_factory() as db:
            updated = (
                db.query(RunItem)
                .filter(RunItem.run_id == run_id, RunItem.status == "running")
                .update(
                    {RunItem.status: "pending", RunItem.updated_at: datetime.utcnow()},
                    synchronize_session=False,
                )
            )
            db.commit()
        if updated:
            logger.warning(f"Run {run_id}: reset {updated} stale running items to pending")
        return updated

    def reset_failed(self, run_id: str) -> List[int]:
        """Move every failed item back to pending. Returns their target ids."""
        with self.session_factory() as db:
            targets = [
                row.target_id
                for row in db.query(RunItem.target_id)
                .filter(RunItem.run_id == run_id, RunItem.status == "failed")
                .order_by(RunItem.position)
                .all()
            ]
            if not targets:
                return []

            now = datetime.utcnow()
            updated = (
                db.query(RunItem)
                .filter(
                    RunItem.run_id == run_id,
                    RunItem.status == "failed",
                    RunItem.target_id.in_(targets),
                )
                .update(
                    {RunItem.status: "pending", RunItem.updated_at: now},
                    synchronize_session=False,
                )
            )
            db.query(Run).filter(Run.run_id == run_id).update(
                {
                    Run.failed: Run.failed - updated,
                    Run.pending: Run.pending + updated,
                    Run.updated_at: now,
                },
                synchronize_session=False,
            )
            db.commit()
            return targets

    def claim(self, run_id: str, target_id: int) -> Optional[int]:
        """
        Atomically move an item from pending to running.

        Returns:
            The new attempt number, or None if the item was not pending
        """
        with self.session_factory() as db:
            updated = (
                db.query(RunItem)
                .filter(
                    RunItem.run_id == run_id,
                    RunItem.target_id == target_id,
                    RunItem.status == "pending",
                )
                .update(
                    {
                        RunItem.status: "running",
                        RunItem.attempt: RunItem.attempt + 1,
                        RunItem.updated_at: datetime.utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            if updated != 1:
                return None
            return (
                db.query(RunItem.attempt)
                .filter(RunItem.run_id == run_id, RunItem.target_id == target_id)
                .scalar()
            )

    def record_success(
        self,
        run_id: str,
        target_id: int,
        result_ref: str,
        results: List[ComparisonResult],
    ) -> bool:
        """Persist comparison results and mark the item succeeded in one transaction."""
        now = datetime.utcnow()
        with self.session_factory() as db:
            updated = (
                db.query(RunItem)
                .filter(
                    RunItem.run_id == run_id,
                    RunItem.target_id == target_id,
                    RunItem.status == "running",
                )
                .update(
                    {
                        RunItem.status: "succeeded",
                        RunItem.result_ref: result_ref,
                        RunItem.last_error: None,
                        RunItem.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                db.rollback()
                return False

            db.add_all(results)
            db.query(Run).filter(Run.run_id == run_id).update(
                {
                    Run.pending: Run.pending - 1,
                    Run.succeeded: Run.succeeded + 1,
                    Run.updated_at: now,
                },
                synchronize_session=False,
            )
            db.commit()
            return True

    def record_failure(self, run_id: str, target_id: int, error: str) -> bool:
        """Mark a running item failed with its error."""
        now = datetime.utcnow()
        with self.session_factory() as db:
            updated = (
                db.query(RunItem)
                .filter(
                    RunItem.run_id == run_id,
                    RunItem.target_id == target_id,
                    RunItem.status == "running",
                )
                .update(
                    {RunItem.status: "failed", RunItem.last_error: error, RunItem.updated_at: now},
                    synchronize_session=False,
                )
            )
            if updated != 1:
                db.rollback()
                return False

            db.query(Run).filter(Run.run_id == run_id).update(
                {
                    Run.pending: Run.pending - 1,
                    Run.failed: Run.failed + 1,
                    Run.updated_at: now,
                },
                synchronize_session=False,
            )
            db.commit()
            return True

    def running_targets(self, run_id: str, target_ids: List[int]) -> List[int]:
        if not target_ids:
            return []
        with self.session_factory() as db:
            rows = (
                db.query(RunItem.target_id)
                .filter(
                    RunItem.run_id == run_id,
                    RunItem.status == "running",
                    RunItem.target_id.in_(target_ids),
                )
                .all()
            )
            return [row.target_id for row in rows]

    def list_items(self, run_id: str) -> List[Dict[str, Any]]:
        with self.session_factory() as db:
            items = (
                db.query(RunItem)
                .filter(RunItem.run_id == run_id)
                .order_by(RunItem.position)
                .all()
            )
            return [
                {
                    "target_id": item.target_id,
                    "target_type": item.target_type,
                    "status": item.status,
                    "attempt": item.attempt,
                    "last_error": item.last_error,
                    "result_ref": item.result_ref,
                }
                for item in items
            ]
