"""Run coordinator: idempotent start, resume, retry and cancellation of runs."""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.errors import (
    ModelNotFound,
    PersistenceFailure,
    RunBusy,
    RunConflict,
    RunError,
    RunNotFound,
    RunNotRunning,
)
from app.models.language_model import LanguageModel
from app.services.dispatcher import CancellationToken, Dispatcher, LeaseKeeper
from app.services.expander import expand, target_type_for
from app.services.ledger import ItemLedger, RunLedger, RunState
from app.services.model_invoker import ModelInvoker, ModelSpec
from app.services.transforms import resolve_output_profile

logger = logging.getLogger(__name__)


@dataclass
class StartRunCommand:
    """Validated request to start (or idempotently re-start) a run."""

    model_id: int
    run_type: str
    scope: str
    scope_ids: Dict[str, int]
    run_id: Optional[str] = None
    limit: Optional[int] = None
    skip: Optional[int] = None
    created_by: str = "admin"


@dataclass
class RunOutcome:
    run_id: str
    run_type: str
    status: str
    metrics: Dict[str, int] = field(default_factory=dict)
    idempotent: bool = False

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    @classmethod
    def from_state(cls, state: RunState, idempotent: bool = False) -> "RunOutcome":
        return cls(
            run_id=state.run_id,
            run_type=state.run_type,
            status=state.status,
            metrics=dict(state.metrics),
            idempotent=idempotent,
        )


class RunCoordinator:
    """Public entry points of the run orchestrator."""

    def __init__(
        self,
        session_factory,
        invoker=None,
        score=None,
        parallelism: Optional[int] = None,
        call_timeout: Optional[float] = None,
        lock_ttl_seconds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.runs = RunLedger(session_factory)
        self.items = ItemLedger(session_factory)
        self.lock_ttl_seconds = lock_ttl_seconds or settings.RUN_LOCK_TTL_SECONDS

        dispatcher_kwargs = {}
        if score is not None:
            dispatcher_kwargs["score"] = score
        self.dispatcher = Dispatcher(
            session_factory,
            self.runs,
            self.items,
            invoker or ModelInvoker(),
            parallelism=parallelism,
            call_timeout=call_timeout,
            **dispatcher_kwargs,
        )

    def _load_model(self, model_id: int) -> ModelSpec:
        with self.session_factory() as db:
            model = (
                db.query(LanguageModel)
                .filter(LanguageModel.model_id == model_id, LanguageModel.is_active.is_(True))
                .first()
            )
            if not model:
                raise ModelNotFound(f"Model {model_id} not found or inactive.")
            profile = resolve_output_profile(db, model)
            return ModelSpec(
                model_id=model.model_id,
                provider=model.provider,
                display_name=model.display_name,
                model_name=model.model_name,
                api_config=dict(model.api_config or {}),
                output_steps=list(profile.steps or []) if profile else None,
            )

    def get_run(self, run_id: str) -> RunState:
        run = self.runs.get(run_id)
        if not run:
            raise RunNotFound(f"Run {run_id} not found.")
        return run

    def _acquire(self, run_id: str) -> str:
        lock_token = uuid.uuid4().hex
        if not self.runs.acquire_lock(run_id, lock_token, self.lock_ttl_seconds):
            raise RunBusy(f"Run {run_id} is already being dispatched.")
        return lock_token

    def start_run(self, command: StartRunCommand) -> RunOutcome:
        """
        Start a run, or return/resume the run already bound to ``command.run_id``.

        A completed run is returned as it is, even if its model has since been
        deactivated.

        Raises:
            ModelNotFound: Unknown or inactive model
            InvalidScope: Scope does not resolve to canonical content
            RunConflict: run_id already used with different parameters
            RunBusy: Another caller is dispatching this run
            PersistenceFailure: The ledger could not be written
        """
        if command.run_id:
            existing = self.runs.get(command.run_id)
            if existing:
                return self._start_existing(existing, command)

        model = self._load_model(command.model_id)
        target_type = target_type_for(command.run_type)

        run_id = command.run_id or str(uuid.uuid4())
        with self.session_factory() as db:
            target_ids = expand(
                db,
                command.run_type,
                command.scope,
                command.scope_ids,
                limit=command.limit,
                skip=command.skip,
            )

        lock_token = uuid.uuid4().hex
        try:
            created = self.runs.create(
                run_id=run_id,
                model_id=command.model_id,
                run_type=command.run_type,
                scope=command.scope,
                scope_ids=command.scope_ids,
                limit=command.limit,
                skip=command.skip,
                target_type=target_type,
                target_ids=target_ids,
                lock_token=lock_token,
                created_by=command.created_by,
            )
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not create run {run_id}: {e}") from e

        if created is None:
            # Lost the race against a concurrent creator of the same run_id
            return self._start_existing(self.get_run(run_id), command)

        logger.info(f"Run {run_id} started for model {command.model_id}")
        return self._run_pass(created, model, lock_token, target_ids)

    def _start_existing(self, run: RunState, command: StartRunCommand) -> RunOutcome:
        if not run.same_parameters(
            command.model_id,
            command.run_type,
            command.scope,
            command.scope_ids,
            command.limit,
            command.skip,
        ):
            raise RunConflict(f"Run {run.run_id} already exists with different parameters.")

        if run.status == "completed":
            logger.info(f"Run {run.run_id} already completed, returning prior outcome")
            return RunOutcome.from_state(run, idempotent=True)

        return self._resume(run, self._load_model(run.model_id))

    def resume_run(self, run_id: str) -> RunOutcome:
        """Dispatch every unfinished item of an existing run."""
        run = self.get_run(run_id)
        if run.status == "completed":
            return RunOutcome.from_state(run, idempotent=True)
        return self._resume(run, self._load_model(run.model_id))

    def _resume(self, run: RunState, model: ModelSpec) -> RunOutcome:
        lock_token = self._acquire(run.run_id)
        try:
            self.items.reset_stale_running(run.run_id)
            target_ids = self.items.pending_targets(run.run_id)
        except SQLAlchemyError as e:
            self.runs.release_lock(run.run_id, lock_token)
            raise PersistenceFailure(f"Could not resume run {run.run_id}: {e}") from e

        logger.info(f"Resuming run {run.run_id} with {len(target_ids)} pending items")
        return self._run_pass(run, model, lock_token, target_ids, previous_status=run.status)

    def retry_failed_items(self, run_id: str) -> RunOutcome:
        """
        Re-dispatch only the failed items of a run.

        The lease is taken before looking for failed items, so of two
        concurrent retries one dispatches and the other gets RunBusy. A run
        without failed items is returned unchanged.

        Raises:
            RunNotFound: Unknown run_id
            RunBusy: Another caller is dispatching this run
            ModelNotFound: The run's model is no longer active
        """
        run = self.get_run(run_id)
        lock_token = self._acquire(run_id)
        try:
            if not self.items.failed_targets(run_id):
                logger.info(f"Run {run_id} has no failed items, nothing to retry")
                self.runs.release_lock(run_id, lock_token)
                return RunOutcome.from_state(self.get_run(run_id))

            model = self._load_model(run.model_id)
            target_ids = self.items.reset_failed(run_id)
        except RunError:
            self.runs.release_lock(run_id, lock_token)
            raise
        except SQLAlchemyError as e:
            self.runs.release_lock(run_id, lock_token)
            raise PersistenceFailure(f"Could not reset failed items of run {run_id}: {e}") from e

        logger.info(f"Retrying {len(target_ids)} failed items of run {run_id}")
        return self._run_pass(run, model, lock_token, target_ids, previous_status=run.status)

    def _run_pass(
        self,
        run: RunState,
        model: ModelSpec,
        lock_token: str,
        target_ids: List[int],
        previous_status: Optional[str] = None,
    ) -> RunOutcome:
        """Dispatch under the held lease, then finalize the run."""
        try:
            self.runs.mark_running(run.run_id, lock_token)
            token = CancellationToken(self.runs, run.run_id)
            with LeaseKeeper(self.runs, run.run_id, lock_token, self.lock_ttl_seconds) as lease:
                report = self.dispatcher.dispatch(run, model, target_ids, token, lease=lease)
            if report.lease_lost:
                # The new lease holder finalizes the run
                return RunOutcome.from_state(self.get_run(run.run_id))
            state = self.runs.finalize(run.run_id, lock_token, report.cancelled, previous_status)
        except PersistenceFailure as e:
            self._mark_failed(run.run_id, lock_token, e.message)
            raise
        except SQLAlchemyError as e:
            self._mark_failed(run.run_id, lock_token, str(e))
            raise PersistenceFailure(f"Run {run.run_id} could not be recorded: {e}") from e
        finally:
            try:
                self.runs.release_lock(run.run_id, lock_token)
            except SQLAlchemyError as e:
                logger.error(f"Could not release lock of run {run.run_id}: {e}")

        return RunOutcome.from_state(state)

    def _mark_failed(self, run_id: str, lock_token: str, message: str):
        try:
            self.runs.mark_failed(run_id, lock_token, message)
        except SQLAlchemyError as e:
            logger.error(f"Could not mark run {run_id} failed: {e}")

    def request_cancel(self, run_id: str) -> Dict[str, Any]:
        """Ask a running run to stop claiming new items."""
        run = self.get_run(run_id)
        if run.status == "running" and run.cancel_requested:
            return {"run_id": run_id, "message": "Cancellation already requested."}

        if run.status != "running" or not self.runs.request_cancel(run_id):
            raise RunNotRunning(
                f'Cannot cancel run with status "{run.status}". Only running runs can be cancelled.'
            )

        logger.info(f"Cancellation requested for run {run_id}")
        return {
            "run_id": run_id,
            "message": "Cancellation requested. Run will stop after in-flight items complete.",
        }

    def get_progress(self, run_id: str) -> Dict[str, Any]:
        """Read-only polling view of a run and its items."""
        run = self.get_run(run_id)
        return {
            "run_id": run.run_id,
            "status": run.status,
            "cancel_requested": run.cancel_requested,
            "metrics": run.metrics,
            "items": self.items.list_items(run_id),
        }
