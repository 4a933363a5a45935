from __future__ import annotations

from collections.abc import Iterator

from roadmapper.models import RoadmapJob


class GenerationQueue:
    """Ordered list of pending jobs. Mutations are synchronous."""

    def __init__(self, jobs: list[RoadmapJob] | None = None) -> None:
        self._jobs: list[RoadmapJob] = list(jobs or [])

    def __len__(self) -> int:
        return len(self._jobs)

    def __bool__(self) -> bool:
        return bool(self._jobs)

    def __iter__(self) -> Iterator[RoadmapJob]:
        return iter(list(self._jobs))

    @property
    def head(self) -> RoadmapJob | None:
        return self._jobs[0] if self._jobs else None

    def snapshot(self) -> list[RoadmapJob]:
        return list(self._jobs)

    def contains_id(self, job_id: str) -> bool:
        return any(job.job_id == job_id for job in self._jobs)

    def find_equivalent(self, candidate: RoadmapJob) -> RoadmapJob | None:
        for job in self._jobs:
            if job.is_equivalent(candidate):
                return job
        return None

    def append(self, job: RoadmapJob) -> None:
        self._jobs.append(job)

    def push_front(self, job: RoadmapJob) -> None:
        self._jobs.insert(0, job)

    def pop_head(self) -> RoadmapJob | None:
        if not self._jobs:
            return None
        return self._jobs.pop(0)

    def remove(self, reference: str) -> list[RoadmapJob]:
        """Drop every job whose job id or roadmap id equals ``reference``."""
        removed = [job for job in self._jobs if job.matches(reference)]
        if removed:
            self._jobs = [job for job in self._jobs if not job.matches(reference)]
        return removed

    def discard(self, job: RoadmapJob) -> bool:
        for index, queued in enumerate(self._jobs):
            if queued is job:
                del self._jobs[index]
                return True
        return False

    def move(self, job_id: str, index: int) -> bool:
        for position, job in enumerate(self._jobs):
            if job.job_id == job_id:
                del self._jobs[position]
                target = max(0, min(index, len(self._jobs)))
                self._jobs.insert(target, job)
                return True
        return False

    def clear(self) -> list[RoadmapJob]:
        removed, self._jobs = self._jobs, []
        return removed
