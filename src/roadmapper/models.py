from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar, Literal
from uuid import uuid4

PENDING_SENTINEL = "..."

GenerationState = Literal["queued", "in-progress", "completed"]


def utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def normalize_text(value: str | None) -> str:
    return (value or "").strip().lower()


def new_job_id() -> str:
    return f"job-{uuid4().hex[:12]}"


def _percentage(done: int, total: int) -> int:
    if total == 0:
        return 0
    return round(100 * done / total)


def _as_list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, list) else []


def _as_dict(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


@dataclass(slots=True)
class MiniGoal:
    id: str
    title: str = ""
    description: str = ""
    estimated_time: str = ""
    priority: str = "medium"
    completed: bool = False
    completed_date: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    KNOWN_KEYS: ClassVar[frozenset[str]] = frozenset(
        {
            "id",
            "title",
            "description",
            "estimatedTime",
            "priority",
            "completed",
            "completedDate",
        }
    )

    def set_completed(self, completed: bool, *, at: str | None = None) -> None:
        self.completed = completed
        self.completed_date = (at or utcnow_iso()) if completed else None

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, default_id: str) -> MiniGoal:
        raw_id = data.get("id")
        goal = cls(
            id=str(raw_id) if raw_id else default_id,
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            estimated_time=str(data.get("estimatedTime") or ""),
            priority=str(data.get("priority") or "medium"),
            extra={key: value for key, value in data.items() if key not in cls.KNOWN_KEYS},
        )
        completed_date = data.get("completedDate")
        goal.set_completed(
            bool(data.get("completed", False)),
            at=str(completed_date) if completed_date else None,
        )
        return goal

    def to_dict(self) -> dict[str, Any]:
        payload = dict(self.extra)
        payload.update(
            {
                "id": self.id,
                "title": self.title,
                "description": self.description,
                "estimatedTime": self.estimated_time,
                "priority": self.priority,
                "completed": self.completed,
                "completedDate": self.completed_date,
            }
        )
        return payload


@dataclass(slots=True)
class Phase:
    phase_number: int
    title: str
    duration: str = PENDING_SENTINEL
    goal: str = PENDING_SENTINEL
    mini_goals: list[MiniGoal] = field(default_factory=list)
    resources: list[dict[str, Any]] = field(default_factory=list)
    project: dict[str, Any] = field(default_factory=dict)
    skills: list[str] = field(default_factory=list)
    milestone: str = PENDING_SENTINEL
    progress_percentage: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    KNOWN_KEYS: ClassVar[frozenset[str]] = frozenset(
        {
            "phaseNumber",
            "title",
            "duration",
            "goal",
            "miniGoals",
            "resources",
            "project",
            "skills",
            "milestone",
            "progressPercentage",
        }
    )

    @property
    def is_detailed(self) -> bool:
        return self.goal != PENDING_SENTINEL

    def recompute_progress(self) -> int:
        done = sum(1 for goal in self.mini_goals if goal.completed)
        self.progress_percentage = _percentage(done, len(self.mini_goals))
        return self.progress_percentage

    @classmethod
    def placeholder(cls, phase_number: int, title: str) -> Phase:
        return cls(phase_number=phase_number, title=title)

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, index: int) -> Phase:
        mini_goals = [
            MiniGoal.from_dict(item, default_id=f"mini-goal-{index + 1}-{position + 1}")
            for position, item in enumerate(_as_list(data.get("miniGoals")))
            if isinstance(item, dict)
        ]
        try:
            phase_number = int(data.get("phaseNumber") or index + 1)
        except (TypeError, ValueError):
            phase_number = index + 1
        phase = cls(
            phase_number=phase_number,
            title=str(data.get("title") or f"Phase {index + 1}"),
            duration=str(data.get("duration") or PENDING_SENTINEL),
            goal=str(data.get("goal") or PENDING_SENTINEL),
            mini_goals=mini_goals,
            resources=[item for item in _as_list(data.get("resources")) if isinstance(item, dict)],
            project=_as_dict(data.get("project")),
            skills=[str(item) for item in _as_list(data.get("skills"))],
            milestone=str(data.get("milestone") or PENDING_SENTINEL),
            extra={key: value for key, value in data.items() if key not in cls.KNOWN_KEYS},
        )
        phase.recompute_progress()
        return phase

    def to_dict(self) -> dict[str, Any]:
        payload = dict(self.extra)
        payload.update(
            {
                "phaseNumber": self.phase_number,
                "title": self.title,
                "duration": self.duration,
                "goal": self.goal,
                "miniGoals": [goal.to_dict() for goal in self.mini_goals],
                "resources": [dict(item) for item in self.resources],
                "project": dict(self.project),
                "skills": list(self.skills),
                "milestone": self.milestone,
                "progressPercentage": self.progress_percentage,
            }
        )
        return payload


@dataclass(slots=True)
class Roadmap:
    """A generated learning roadmap.

    ``generation_state`` is ``"completed"`` exactly when every phase carries a
    real goal; :meth:`refresh_generation_state` re-derives it from the phases.
    """

    title: str
    objective: str
    final_goal: str
    id: str | None = None
    starting_level: str = ""
    generation_state: GenerationState = "queued"
    phases: list[Phase] = field(default_factory=list)
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = field(default_factory=utcnow_iso)
    details: dict[str, Any] = field(default_factory=dict)

    KNOWN_KEYS: ClassVar[frozenset[str]] = frozenset(
        {
            "id",
            "title",
            "objective",
            "finalGoal",
            "startingLevel",
            "generationState",
            "phases",
            "createdAt",
            "updatedAt",
        }
    )

    @property
    def needs_structure(self) -> bool:
        return not self.phases

    @property
    def all_phases_detailed(self) -> bool:
        return bool(self.phases) and all(phase.is_detailed for phase in self.phases)

    def first_pending_index(self) -> int | None:
        for index, phase in enumerate(self.phases):
            if not phase.is_detailed:
                return index
        return None

    def refresh_generation_state(self) -> GenerationState:
        if self.all_phases_detailed:
            self.generation_state = "completed"
        elif self.phases:
            self.generation_state = "in-progress"
        else:
            self.generation_state = "queued"
        return self.generation_state

    def overall_progress(self) -> int:
        total = sum(len(phase.mini_goals) for phase in self.phases)
        done = sum(1 for phase in self.phases for goal in phase.mini_goals if goal.completed)
        return _percentage(done, total)

    def toggle_mini_goal(self, phase_index: int, mini_goal_id: str) -> MiniGoal:
        if not 0 <= phase_index < len(self.phases):
            raise IndexError(f"Roadmap has no phase at index {phase_index}")
        phase = self.phases[phase_index]
        for goal in phase.mini_goals:
            if goal.id == mini_goal_id:
                goal.set_completed(not goal.completed)
                phase.recompute_progress()
                return goal
        raise KeyError(f"Phase {phase.phase_number} has no mini-goal '{mini_goal_id}'")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Roadmap:
        raw_id = data.get("id")
        phases = [
            Phase.from_dict(item, index=index)
            for index, item in enumerate(_as_list(data.get("phases")))
            if isinstance(item, dict)
        ]
        roadmap = cls(
            id=str(raw_id) if raw_id not in (None, "") else None,
            title=str(data.get("title") or ""),
            objective=str(data.get("objective") or ""),
            final_goal=str(data.get("finalGoal") or ""),
            starting_level=str(data.get("startingLevel") or ""),
            phases=phases,
            created_at=str(data.get("createdAt") or utcnow_iso()),
            updated_at=str(data.get("updatedAt") or utcnow_iso()),
            details={key: value for key, value in data.items() if key not in cls.KNOWN_KEYS},
        )
        roadmap.refresh_generation_state()
        return roadmap

    def to_dict(self) -> dict[str, Any]:
        payload = dict(self.details)
        payload.update(
            {
                "id": self.id,
                "title": self.title,
                "objective": self.objective,
                "finalGoal": self.final_goal,
                "startingLevel": self.starting_level,
                "generationState": self.generation_state,
                "phases": [phase.to_dict() for phase in self.phases],
                "createdAt": self.created_at,
                "updatedAt": self.updated_at,
            }
        )
        return payload


@dataclass(slots=True)
class RoadmapJob:
    objective: str
    final_goal: str
    starting_level: str = ""
    job_id: str = field(default_factory=new_job_id)
    roadmap_id: str | None = None
    is_resume: bool = False
    is_regeneration: bool = False
    original_roadmap_id: str | None = None
    enqueued_at: str | None = None

    def dedup_key(self) -> tuple[str, str, str | None]:
        # Regenerations of different source roadmaps may share objective and goal.
        origin = self.original_roadmap_id if self.is_regeneration else None
        return normalize_text(self.objective), normalize_text(self.final_goal), origin

    def is_equivalent(self, other: RoadmapJob) -> bool:
        return self.dedup_key() == other.dedup_key()

    def matches(self, reference: str) -> bool:
        return self.job_id == reference or (
            self.roadmap_id is not None and self.roadmap_id == reference
        )

    @classmethod
    def for_roadmap(cls, roadmap: Roadmap) -> RoadmapJob:
        return cls(
            objective=roadmap.objective,
            final_goal=roadmap.final_goal,
            starting_level=roadmap.starting_level,
            roadmap_id=roadmap.id,
            is_resume=True,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "objective": self.objective,
            "finalGoal": self.final_goal,
            "startingLevel": self.starting_level,
            "roadmapId": self.roadmap_id,
            "isResume": self.is_resume,
            "isRegeneration": self.is_regeneration,
            "originalRoadmapId": self.original_roadmap_id,
            "enqueuedAt": self.enqueued_at,
        }
