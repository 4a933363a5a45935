from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from roadmapper.cancellation import PAUSE_REASON, CancellationToken, GenerationInterrupted
from roadmapper.errors import CheckpointError, RoadmapGenerationError, RoadmapNotFoundError
from roadmapper.models import Roadmap, RoadmapJob, utcnow_iso
from roadmapper.phases import GenerationStep, PhaseStateMachine
from roadmapper.prompts import PhaseSettings, phase_detail_prompt, structure_prompt
from roadmapper.providers.base import CompletionProvider, ProviderError
from roadmapper.queue import GenerationQueue
from roadmapper.retrier import EventHook, ModelFallbackRetrier, RetryPolicy
from roadmapper.store import RoadmapStore, StoreError

logger = logging.getLogger(__name__)


class JobOutcome(str, Enum):
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    FAILED = "failed"


@dataclass(slots=True)
class OrchestratorState:
    queue: GenerationQueue = field(default_factory=GenerationQueue)
    current_job: RoadmapJob | None = None
    is_paused: bool = False
    is_processing: bool = False
    token: CancellationToken = field(default_factory=CancellationToken)

    @property
    def interrupt_requested(self) -> bool:
        return self.token.cancelled


class Orchestrator:
    """Single-worker roadmap generation queue.

    Control methods are synchronous and may be called at any time, including
    while the worker awaits a provider response. The worker only observes pause
    and interrupt requests between provider calls: one request that is already
    in flight completes in the background and its result is dropped, so a
    caller may see activity for up to one request's latency after stopping.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        store: RoadmapStore,
        models: Sequence[str],
        *,
        retry_policy: RetryPolicy | None = None,
        phase_settings: PhaseSettings | None = None,
        yield_seconds: float = 0.05,
        event_hook: EventHook | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not models:
            raise ValueError("At least one model identifier is required.")
        self.provider = provider
        self.store = store
        self.models = list(models)
        self.retry_policy = retry_policy or RetryPolicy()
        self.phase_settings = phase_settings or PhaseSettings()
        self.yield_seconds = yield_seconds
        self.event_hook = event_hook
        self.state = OrchestratorState()
        self.current_roadmap: Roadmap | None = None
        self.last_error: str | None = None
        self._sleep = sleep
        self._worker: asyncio.Task[None] | None = None

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    # Control surface

    def enqueue(self, job: RoadmapJob) -> bool:
        queue = self.state.queue
        current = self.state.current_job
        if queue.contains_id(job.job_id) or (current is not None and current.job_id == job.job_id):
            logger.info("Rejected duplicate job id %s", job.job_id)
            return False
        if queue.find_equivalent(job) is not None or (
            current is not None and current.is_equivalent(job)
        ):
            logger.info(
                "Rejected job %s: an equivalent roadmap is already queued or generating",
                job.job_id,
            )
            self._emit({"event": "job_rejected", "job_id": job.job_id, "reason": "duplicate"})
            return False

        job.enqueued_at = utcnow_iso()
        queue.append(job)
        logger.info("Queued job %s (%s -> %s)", job.job_id, job.objective, job.final_goal)
        self._emit({"event": "job_enqueued", "job_id": job.job_id, "position": len(queue) - 1})
        self._trigger()
        return True

    def remove_from_queue(self, reference: str) -> bool:
        removed = self.state.queue.remove(reference)
        current = self.state.current_job
        interrupted = False
        if current is not None and current.matches(reference):
            self.state.token.cancel("removed")
            interrupted = True
        if removed or interrupted:
            self._emit(
                {
                    "event": "job_removed",
                    "reference": reference,
                    "removed": [job.job_id for job in removed],
                    "interrupted_current": interrupted,
                }
            )
        return bool(removed) or interrupted

    def pause_queue(self) -> None:
        if self.state.is_paused:
            return
        self.state.is_paused = True
        current = self.state.current_job
        if current is not None:
            self.state.token.cancel(PAUSE_REASON)
            if not self.state.queue.contains_id(current.job_id):
                self.state.queue.push_front(current)
        logger.info("Queue paused")
        self._emit(
            {
                "event": "queue_paused",
                "current_job_id": current.job_id if current is not None else None,
            }
        )

    def resume_queue(self) -> None:
        self.state.is_paused = False
        token = self.state.token
        current = self.state.current_job
        if token.paused_only:
            token.clear()
            if current is not None:
                # The worker never observed the pause, so it keeps the same job.
                self.state.queue.discard(current)
        logger.info("Queue resumed")
        self._emit({"event": "queue_resumed", "queued": len(self.state.queue)})
        self._trigger()

    def clear_queue(self) -> int:
        removed = self.state.queue.clear()
        current = self.state.current_job
        if current is not None:
            self.state.token.cancel("cleared")
        self._emit({"event": "queue_cleared", "removed": len(removed)})
        return len(removed)

    def reorder(self, job_id: str, index: int) -> bool:
        moved = self.state.queue.move(job_id, index)
        if moved:
            self._emit({"event": "job_moved", "job_id": job_id, "index": index})
        return moved

    def retry(self, roadmap_id: str) -> bool:
        roadmap = self.store.get(roadmap_id)
        if roadmap is None:
            raise RoadmapNotFoundError(f"Roadmap not found: {roadmap_id}")
        if roadmap.generation_state == "completed":
            logger.info("Roadmap %s is already complete", roadmap_id)
            return False
        return self.enqueue(RoadmapJob.for_roadmap(roadmap))

    def resume_incomplete(self) -> int:
        queued = 0
        for roadmap in self.store.list_incomplete():
            if roadmap.id and self.enqueue(RoadmapJob.for_roadmap(roadmap)):
                queued += 1
        return queued

    def delete_roadmap(self, roadmap_id: str) -> bool:
        self.remove_from_queue(roadmap_id)
        if self.current_roadmap is not None and self.current_roadmap.id == roadmap_id:
            self.current_roadmap = None
        return self.store.remove(roadmap_id)

    def status(self) -> dict[str, Any]:
        current = self.state.current_job
        roadmap = self.current_roadmap
        roadmap_summary = None
        if roadmap is not None:
            roadmap_summary = {
                "id": roadmap.id,
                "title": roadmap.title,
                "generationState": roadmap.generation_state,
                "phases": len(roadmap.phases),
                "detailedPhases": sum(1 for phase in roadmap.phases if phase.is_detailed),
            }
        return {
            "current_job": current.to_dict() if current is not None else None,
            "queue": [job.to_dict() for job in self.state.queue],
            "is_paused": self.state.is_paused,
            "is_processing": self.state.is_processing,
            "interrupt_requested": self.state.interrupt_requested,
            "last_error": self.last_error,
            "current_roadmap": roadmap_summary,
        }

    async def drain(self) -> None:
        """Run the worker until the queue is empty or paused."""
        self._trigger()
        while self._worker is not None and not self._worker.done():
            await self._worker
            self._trigger()

    # Worker

    def _trigger(self) -> None:
        if self.state.is_processing or self.state.is_paused or not self.state.queue:
            return
        if self._worker is not None and not self._worker.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; the queue starts on drain()")
            return
        self._worker = loop.create_task(self._process_queue())

    async def _process_queue(self) -> None:
        if self.state.is_processing:
            return
        self.state.is_processing = True
        try:
            while True:
                if self.state.is_paused or not self.state.queue:
                    break
                job = self.state.queue.pop_head()
                if job is None:
                    break
                token = CancellationToken()
                self.state.token = token
                self.state.current_job = job

                outcome = await self._execute(job, token)

                self.state.current_job = None
                if outcome is JobOutcome.INTERRUPTED:
                    # Only a pause puts the job back; any stop ends this drain.
                    break
                self.state.queue.discard(job)
                if self.state.is_paused or not self.state.queue:
                    break
                await self._sleep(self.yield_seconds)
        finally:
            self.state.current_job = None
            self.state.is_processing = False

    async def _execute(self, job: RoadmapJob, token: CancellationToken) -> JobOutcome:
        logger.info("Starting job %s", job.job_id)
        self._emit({"event": "job_started", "job_id": job.job_id, "is_resume": job.is_resume})
        try:
            roadmap = await self._run_job(job, token)
        except GenerationInterrupted as exc:
            logger.info("Job %s interrupted (%s)", job.job_id, exc)
            self._emit(
                {
                    "event": "job_interrupted",
                    "job_id": job.job_id,
                    "roadmap_id": job.roadmap_id,
                    "reason": str(exc),
                }
            )
            return JobOutcome.INTERRUPTED
        except (RoadmapGenerationError, ProviderError) as exc:
            self.last_error = f"Failed to generate roadmap '{job.objective}': {exc}"
            logger.error("Job %s failed: %s", job.job_id, exc)
            self._emit(
                {
                    "event": "job_failed",
                    "job_id": job.job_id,
                    "roadmap_id": job.roadmap_id,
                    "error": str(exc),
                    "error_type": exc.__class__.__name__,
                }
            )
            return JobOutcome.FAILED
        except Exception as exc:
            self.last_error = f"Unexpected error while generating '{job.objective}': {exc}"
            logger.exception("Job %s crashed", job.job_id)
            self._emit(
                {
                    "event": "job_failed",
                    "job_id": job.job_id,
                    "roadmap_id": job.roadmap_id,
                    "error": str(exc),
                    "error_type": exc.__class__.__name__,
                }
            )
            return JobOutcome.FAILED

        logger.info("Job %s completed roadmap %s", job.job_id, roadmap.id)
        self._emit({"event": "job_completed", "job_id": job.job_id, "roadmap_id": roadmap.id})
        return JobOutcome.COMPLETED

    def _load_roadmap(self, job: RoadmapJob) -> Roadmap | None:
        if not job.roadmap_id:
            return None
        try:
            roadmap = self.store.get(job.roadmap_id)
        except StoreError as exc:
            raise CheckpointError(f"Could not load roadmap {job.roadmap_id}: {exc}") from exc
        if roadmap is None:
            raise RoadmapNotFoundError(f"Roadmap {job.roadmap_id} no longer exists.")
        return roadmap

    def _checkpoint(self, machine: PhaseStateMachine, job: RoadmapJob) -> Roadmap:
        roadmap = machine.roadmap
        if roadmap is None:
            raise RuntimeError("Nothing to checkpoint before the structure exists.")
        self.current_roadmap = roadmap
        try:
            stored = self.store.save(roadmap)
        except StoreError as exc:
            raise CheckpointError(f"Checkpoint failed for '{roadmap.title}': {exc}") from exc
        machine.roadmap = stored
        self.current_roadmap = stored
        job.roadmap_id = stored.id
        job.is_resume = True
        return stored

    async def _run_job(self, job: RoadmapJob, token: CancellationToken) -> Roadmap:
        machine = PhaseStateMachine(self._load_roadmap(job))
        self.current_roadmap = machine.roadmap
        retrier = ModelFallbackRetrier(
            self.provider,
            self.models,
            retry_policy=self.retry_policy,
            event_hook=self._emit,
            sleep=self._sleep,
        )

        if machine.step is GenerationStep.NEEDS_STRUCTURE:
            payload = await retrier.generate(
                structure_prompt(job, self.phase_settings), token, call_name="structure"
            )
            token.raise_if_cancelled()
            machine.apply_structure(payload, job)
            roadmap = self._checkpoint(machine, job)
            self._emit(
                {
                    "event": "structure_generated",
                    "job_id": job.job_id,
                    "roadmap_id": roadmap.id,
                    "phases": len(roadmap.phases),
                }
            )

        while (index := machine.next_phase_index()) is not None:
            if machine.roadmap is None:
                raise RuntimeError("Cannot detail phases before the structure exists.")
            payload = await retrier.generate(
                phase_detail_prompt(machine.roadmap, index),
                token,
                call_name=f"phase-{index + 1}",
            )
            token.raise_if_cancelled()
            machine.merge_phase(index, payload)
            roadmap = self._checkpoint(machine, job)
            logger.info(
                "Checkpointed phase %d/%d of %s", index + 1, len(roadmap.phases), roadmap.id
            )
            self._emit(
                {
                    "event": "phase_generated",
                    "job_id": job.job_id,
                    "roadmap_id": roadmap.id,
                    "phase_index": index,
                    "phases": len(roadmap.phases),
                }
            )

        machine.mark_complete()
        return self._checkpoint(machine, job)
