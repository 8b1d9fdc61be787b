"""Bounded-concurrency batch verification.

schedule() is the primitive: it runs a worker over items with at most
``concurrency`` in flight and yields outcomes as they finish. A failing
item becomes an outcome with ``error`` set; its siblings keep running.

BatchScheduler builds on it for a list of references (process_batch) and
for one job per input file (process_jobs).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Generic,
    Iterable,
    Optional,
    TypeVar,
)

from .double_check import RawChat, double_check_reference
from .exceptions import ConfigurationError
from .models import BatchJob, JobStatus, ProgressEvent, Reference, ReferenceStatus
from .tools import display_name
from .verifier import Verifier, verify_reference

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[ProgressEvent], None]
TerminalEvent = Callable[[R], tuple[str, str]]

CONCURRENCY = 3
FILE_CONCURRENCY = 5
PACE_DELAY = 0.1  # seconds a slot stays taken after an item finishes


@dataclass
class ScheduledOutcome(Generic[R]):
    index: int
    key: str
    result: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def schedule(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int = CONCURRENCY,
    *,
    key: Optional[Callable[[T], str]] = None,
    on_progress: Optional[ProgressCallback] = None,
    pace_delay: float = 0.0,
    terminal_event: Optional[TerminalEvent] = None,
) -> AsyncIterator[ScheduledOutcome[R]]:
    """Run ``worker`` over ``items``, yielding outcomes in completion order.

    Ends only once every item has a terminal outcome. ``terminal_event``
    maps a returned result to the (status, message) of its final progress
    event; without it every returned result is reported as complete.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    items = list(items)
    semaphore = asyncio.Semaphore(concurrency)
    emit = on_progress or (lambda event: None)

    async def run(index: int, item: T) -> ScheduledOutcome[R]:
        item_key = key(item) if key else str(index)
        async with semaphore:
            emit(ProgressEvent(id=item_key, status="processing"))
            try:
                result = await worker(item)
            except Exception as e:
                logger.warning("Item %s failed: %s", item_key, e)
                emit(ProgressEvent(id=item_key, status="error", message=str(e)))
                outcome = ScheduledOutcome(index, item_key, error=e)
            else:
                status, message = terminal_event(result) if terminal_event else ("complete", "")
                emit(ProgressEvent(id=item_key, status=status, message=message))
                outcome = ScheduledOutcome(index, item_key, result=result)
            if pace_delay > 0:
                await asyncio.sleep(pace_delay)
        return outcome

    tasks = [asyncio.create_task(run(i, item)) for i, item in enumerate(items)]
    try:
        for next_done in asyncio.as_completed(tasks):
            yield await next_done
    finally:
        pending = [t for t in tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


def _error_reference(reference: Reference, error: BaseException) -> Reference:
    return reference.model_copy(
        update={"status": ReferenceStatus.ERROR, "message": f"Verification failed: {error}"}
    )


def _reference_event(reference: Reference) -> tuple[str, str]:
    if reference.status == ReferenceStatus.ERROR:
        return "error", reference.message or "Verification failed"
    return "complete", reference.message or ""


class BatchScheduler:
    def __init__(
        self,
        verifier: Verifier,
        concurrency: int = CONCURRENCY,
        file_concurrency: int = FILE_CONCURRENCY,
        pace_delay: float = PACE_DELAY,
        on_progress: Optional[ProgressCallback] = None,
        llm: Optional[RawChat] = None,
    ):
        self.verifier = verifier
        self.concurrency = concurrency
        self.file_concurrency = file_concurrency
        self.pace_delay = pace_delay
        self.on_progress = on_progress
        self.llm = llm

    def _emit(self, event: ProgressEvent) -> None:
        if self.on_progress:
            self.on_progress(event)

    async def _verify_one(self, reference: Reference) -> Reference:
        def status_update(step: str, args: Optional[dict] = None) -> None:
            self._emit(
                ProgressEvent(id=reference.id, status="processing", message=display_name(step))
            )

        return await verify_reference(reference, status_update, verifier=self.verifier)

    async def process_batch(
        self,
        references: list[Reference],
        on_batch_complete: Optional[Callable[[Reference], None]] = None,
    ) -> list[Reference]:
        """Verify references concurrently. Results keep the input order.

        Results are keyed by position, so duplicate ids are safe.
        ``on_batch_complete`` is called with each reference as it finishes.
        """
        results: list[Optional[Reference]] = [None] * len(references)

        async for outcome in schedule(
            references,
            self._verify_one,
            self.concurrency,
            key=lambda ref: ref.id,
            on_progress=self.on_progress,
            pace_delay=self.pace_delay,
            terminal_event=_reference_event,
        ):
            if outcome.ok:
                ref = outcome.result
            else:
                ref = _error_reference(references[outcome.index], outcome.error)
            results[outcome.index] = ref
            if on_batch_complete:
                on_batch_complete(ref)

        return results

    async def _double_check_all(self, references: list[Reference]) -> list[Reference]:
        if self.llm is None:
            raise ConfigurationError("High-accuracy mode needs an LLM client")

        corrected: list[list[Reference]] = [[ref] for ref in references]
        async for outcome in schedule(
            references,
            lambda ref: double_check_reference(ref, self.llm),
            self.concurrency,
            key=lambda ref: ref.id,
        ):
            if outcome.ok:
                corrected[outcome.index] = outcome.result
        return [ref for refs in corrected for ref in refs]

    async def _run_job(self, job: BatchJob) -> BatchJob:
        job.status = JobStatus.PROCESSING
        references = job.payload.references
        logger.info("Job %s: %d references from %s", job.id, len(references), job.payload.name)

        if job.high_accuracy_mode:
            references = await self._double_check_all(references)
        job.results = await self.process_batch(references)
        job.status = JobStatus.COMPLETE
        return job

    async def process_jobs(self, jobs: list[BatchJob]) -> list[BatchJob]:
        """Run one job per input file, at most ``file_concurrency`` at a time."""
        async for outcome in schedule(
            jobs,
            self._run_job,
            self.file_concurrency,
            key=lambda job: job.id,
            on_progress=self.on_progress,
        ):
            if not outcome.ok:
                job = jobs[outcome.index]
                job.status = JobStatus.ERROR
                job.error = str(outcome.error)
                logger.error("Job %s failed: %s", job.id, outcome.error)
        return jobs
