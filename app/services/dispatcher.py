"""Bounded-concurrency dispatch of run items to a model."""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.errors import ComparatorFailure, ItemDispatchFailure, ItemTimeout, PersistenceFailure
from app.models.canon import Chapter, Verse
from app.models.result import ComparisonResult
from app.services import comparator
from app.services.ledger import ItemLedger, RunLedger, RunState
from app.services.model_invoker import CanonicalVerse, ModelSpec, Target
from app.services.transforms import apply_profile
from app.services.verse_parser import map_to_canonical, parse_chapter_response, parse_verse_response

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation for one dispatch pass.

    Set locally with ``cancel()`` or remotely through the run's
    ``cancel_requested`` flag, which is read on every check. Once observed,
    the token stays cancelled.
    """

    def __init__(self, run_ledger: Optional[RunLedger] = None, run_id: Optional[str] = None):
        self.run_ledger = run_ledger
        self.run_id = run_id
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self.run_ledger is not None and self.run_ledger.is_cancel_requested(self.run_id):
            logger.info(f"Run {self.run_id}: cancellation requested")
            self._event.set()
            return True
        return False

    @property
    def observed(self) -> bool:
        return self._event.is_set()


class LeaseKeeper:
    """Keeps a run's dispatch lease fresh while a pass is in flight.

    A background thread refreshes ``locked_at`` every third of the lease TTL.
    If a refresh finds the lease held by another token, the keeper stops and
    ``lost`` becomes true; workers then stop claiming.
    """

    def __init__(self, run_ledger: RunLedger, run_id: str, lock_token: str, ttl_seconds: float):
        self.run_ledger = run_ledger
        self.run_id = run_id
        self.lock_token = lock_token
        self.interval = max(0.05, ttl_seconds / 3)
        self._stop = threading.Event()
        self._lost = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def lost(self) -> bool:
        return self._lost.is_set()

    def refresh(self) -> bool:
        try:
            held = self.run_ledger.refresh_lock(self.run_id, self.lock_token)
        except SQLAlchemyError as e:
            logger.warning(f"Run {self.run_id}: could not refresh lease: {e}")
            return True
        if not held:
            logger.error(f"Run {self.run_id}: dispatch lease lost to another caller")
            self._lost.set()
        return held

    def _beat(self):
        while not self._stop.wait(self.interval):
            if not self.refresh():
                return

    def __enter__(self) -> "LeaseKeeper":
        self._thread = threading.Thread(target=self._beat, name=f"lease-{self.run_id[:8]}", daemon=True)
        self._thread.start()
        return self

    def __exit__(self, *exc_info):
        self._stop.set()
        if self._thread is not None:
            self._thread.join()


@dataclass
class DispatchReport:
    """What one dispatch pass did."""

    claimed: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: bool = False
    lease_lost: bool = False
    metrics: Dict[str, int] = field(default_factory=dict)


class _TargetQueue:
    """Thread-safe iterator over the targets of a pass."""

    def __init__(self, target_ids: Iterable[int]):
        self._iter = iter(list(target_ids))
        self._lock = threading.Lock()

    def next(self) -> Optional[int]:
        with self._lock:
            return next(self._iter, None)


class Dispatcher:
    """Runs pending items of one run through the model and the comparator."""

    def __init__(
        self,
        session_factory,
        run_ledger: RunLedger,
        item_ledger: ItemLedger,
        invoker,
        score: Callable = comparator.score,
        parallelism: Optional[int] = None,
        call_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.run_ledger = run_ledger
        self.item_ledger = item_ledger
        self.invoker = invoker
        self.score = score
        self.parallelism = max(1, parallelism or settings.DISPATCH_PARALLELISM)
        self.call_timeout = call_timeout or settings.MODEL_CALL_TIMEOUT
        # Held from submit until the model call returns, including calls abandoned on timeout
        self._call_slots = threading.BoundedSemaphore(self.parallelism)

    def dispatch(
        self,
        run: RunState,
        model: ModelSpec,
        target_ids: List[int],
        token: CancellationToken,
        lease: Optional[LeaseKeeper] = None,
    ) -> DispatchReport:
        """
        Process the given targets with at most ``parallelism`` in flight.

        Items are claimed one at a time; the token and the lease are checked
        before each claim. Unclaimed items stay pending when the pass is
        cancelled or the lease is lost.

        Raises:
            PersistenceFailure: If the ledger cannot be written
        """
        report = DispatchReport()
        queue = _TargetQueue(target_ids)
        claimed: List[int] = []
        lock = threading.Lock()
        fatal: List[BaseException] = []

        logger.info(
            f"Run {run.run_id}: dispatching {len(target_ids)} items "
            f"with parallelism {self.parallelism}"
        )

        def worker():
            while not fatal:
                if lease is not None and lease.lost:
                    return
                if token.is_cancelled():
                    return
                target_id = queue.next()
                if target_id is None:
                    return

                attempt = self.item_ledger.claim(run.run_id, target_id)
                if attempt is None:
                    logger.info(f"Run {run.run_id}: item {target_id} already claimed, skipping")
                    continue

                with lock:
                    claimed.append(target_id)
                    report.claimed += 1

                succeeded = self._process(run, model, target_id, attempt)
                with lock:
                    if succeeded:
                        report.succeeded += 1
                    else:
                        report.failed += 1

        def guarded_worker():
            try:
                worker()
            except (SQLAlchemyError, PersistenceFailure) as e:
                logger.error(f"Run {run.run_id}: ledger write failed: {e}", exc_info=True)
                fatal.append(e)
                token.cancel()

        workers = min(self.parallelism, max(1, len(target_ids)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"run-{run.run_id[:8]}") as pool:
            futures = [pool.submit(guarded_worker) for _ in range(workers)]
            for future in futures:
                future.result()

        report.lease_lost = lease is not None and lease.lost
        if report.lease_lost:
            # Items this pass claimed now belong to the new lease holder
            logger.warning(f"Run {run.run_id}: pass stopped after losing the lease")
        else:
            self._sweep(run.run_id, claimed)

        if fatal:
            raise PersistenceFailure(f"Ledger write failed during dispatch: {fatal[0]}") from fatal[0]

        report.cancelled = token.observed
        state = self.run_ledger.get(run.run_id)
        report.metrics = state.metrics if state else {}

        logger.info(
            f"Run {run.run_id}: pass finished, {report.claimed} claimed, "
            f"{report.succeeded} succeeded, {report.failed} failed"
            + (" (cancelled)" if report.cancelled else "")
        )
        return report

    def _process(self, run: RunState, model: ModelSpec, target_id: int, attempt: int) -> bool:
        """Evaluate one claimed item and record its outcome. Ledger errors propagate."""
        target_type = "chapter" if run.run_type == "MODEL_CHAPTER" else "verse"
        try:
            result_ref, results = self._evaluate(run, model, target_type, target_id, attempt)
        except SQLAlchemyError:
            raise
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.warning(f"Run {run.run_id}: item {target_id} failed (attempt {attempt}): {message}")
            self.item_ledger.record_failure(run.run_id, target_id, message)
            return False

        return self.item_ledger.record_success(run.run_id, target_id, result_ref, results)

    def _compare(self, verse: CanonicalVerse, processed: str) -> comparator.ComparisonScore:
        try:
            return self.score(verse.text_processed, processed, verse.hash_processed)
        except ComparatorFailure:
            raise
        except Exception as e:
            raise ComparatorFailure(f"Comparison failed: {e}") from e

    def _evaluate(self, run: RunState, model: ModelSpec, target_type: str, target_id: int, attempt: int):
        target = self._load_target(target_type, target_id)
        evaluated_at = datetime.utcnow()

        started = time.monotonic()
        raw = self._invoke_with_timeout(model, target)
        latency_ms = int((time.monotonic() - started) * 1000)

        if target_type == "chapter":
            parsed = parse_chapter_response(raw)
            mapped = map_to_canonical(parsed, [v.verse_number for v in target.verses])
            pairs = [(v, m.candidate, m.matched) for v, m in zip(target.verses, mapped)]
            latency_per_verse = round(latency_ms / len(target.verses))
        else:
            pairs = [(target.verses[0], parse_verse_response(raw), True)]
            latency_per_verse = latency_ms

        result_ref = uuid.uuid4().hex
        results = []
        for verse, candidate, matched in pairs:
            if model.output_steps is not None:
                processed = apply_profile(candidate, model.output_steps)
            else:
                processed = comparator.normalize_text(candidate)
            if matched:
                verdict = self._compare(verse, processed)
                hash_match, fidelity, diff = verdict.hash_match, verdict.fidelity_score, verdict.diff
            else:
                hash_match, fidelity, diff = False, 0.0, {"missing": True}

            results.append(
                ComparisonResult(
                    result_ref=result_ref,
                    run_id=run.run_id,
                    model_id=model.model_id,
                    target_id=target_id,
                    verse_id=verse.verse_id,
                    chapter_id=target.chapter_id,
                    book_id=target.book_id,
                    bible_id=target.bible_id,
                    attempt=attempt,
                    response_raw=candidate if target_type == "chapter" else raw,
                    response_processed=processed,
                    hash_raw=comparator.sha256(candidate if target_type == "chapter" else raw),
                    hash_processed=comparator.sha256(processed),
                    hash_match=hash_match,
                    fidelity_score=fidelity,
                    diff=diff,
                    latency_ms=latency_per_verse,
                    evaluated_at=evaluated_at,
                )
            )
        return result_ref, results

    def _invoke_with_timeout(self, model: ModelSpec, target: Target) -> str:
        """
        Call the model, giving up after ``call_timeout`` seconds.

        A call that times out keeps its slot until it actually returns, so
        abandoned calls still count against ``parallelism``.
        """
        if not self._call_slots.acquire(timeout=self.call_timeout):
            raise ItemTimeout(f"No model call slot freed up within {self.call_timeout}s")

        def call():
            try:
                return self.invoker.invoke(model, target)
            finally:
                self._call_slots.release()

        pool = ThreadPoolExecutor(max_workers=1)
        try:
            try:
                future = pool.submit(call)
            except RuntimeError:
                self._call_slots.release()
                raise
            try:
                return future.result(timeout=self.call_timeout)
            except FutureTimeout:
                raise ItemTimeout(f"Model call timed out after {self.call_timeout}s")
        finally:
            pool.shutdown(wait=False)

    def _load_target(self, target_type: str, target_id: int) -> Target:
        with self.session_factory() as db:
            if target_type == "chapter":
                chapter = db.query(Chapter).filter(Chapter.chapter_id == target_id).first()
                if not chapter:
                    raise ItemDispatchFailure("Chapter not found.")
                verses = (
                    db.query(Verse)
                    .filter(Verse.chapter_id == chapter.chapter_id)
                    .order_by(Verse.verse_number)
                    .all()
                )
                if not verses:
                    raise ItemDispatchFailure("No canonical verses found for chapter.")
                reference = chapter.reference
                bible_id, book_id, chapter_id = chapter.bible_id, chapter.book_id, chapter.chapter_id
            else:
                verse = db.query(Verse).filter(Verse.verse_id == target_id).first()
                if not verse:
                    raise ItemDispatchFailure("Verse not found.")
                verses = [verse]
                reference = verse.reference
                bible_id, book_id, chapter_id = verse.bible_id, verse.book_id, verse.chapter_id

            return Target(
                target_type=target_type,
                target_id=target_id,
                reference=reference,
                bible_id=bible_id,
                book_id=book_id,
                chapter_id=chapter_id,
                verses=[
                    CanonicalVerse(
                        verse_id=v.verse_id,
                        verse_number=v.verse_number,
                        text_raw=v.text_raw,
                        text_processed=v.text_processed,
                        hash_processed=v.hash_processed,
                    )
                    for v in verses
                ],
            )

    def _sweep(self, run_id: str, claimed: List[int]):
        """Fail any item this pass claimed that is somehow still running."""
        try:
            stuck = self.item_ledger.running_targets(run_id, claimed)
            for target_id in stuck:
                self.item_ledger.record_failure(
                    run_id, target_id, "Dispatch ended before the item finished."
                )
        except SQLAlchemyError as e:
            logger.error(f"Run {run_id}: could not sweep running items: {e}")
            return
        if stuck:
            logger.warning(f"Run {run_id}: swept {len(stuck)} items left running")
