from __future__ import annotations

from enum import Enum
from typing import Any

from roadmapper.errors import ResponseParseError, StructureValidationError
from roadmapper.models import PENDING_SENTINEL, Phase, Roadmap, RoadmapJob, utcnow_iso


class GenerationStep(str, Enum):
    NEEDS_STRUCTURE = "needs_structure"
    STRUCTURE_GENERATED = "structure_generated"
    DETAILING = "detailing"
    COMPLETE = "complete"


class PhaseStateMachine:
    """Tracks which phases of one roadmap still need a detail call.

    The next phase is always re-derived from the sentinel goals rather than from
    a stored cursor, so re-entering a half-finished roadmap after a restart
    continues at the first undetailed phase.
    """

    def __init__(self, roadmap: Roadmap | None = None) -> None:
        self.roadmap = roadmap
        self._structure_fresh = False

    @property
    def step(self) -> GenerationStep:
        if self.roadmap is None or self.roadmap.needs_structure:
            return GenerationStep.NEEDS_STRUCTURE
        if self.roadmap.first_pending_index() is None:
            return GenerationStep.COMPLETE
        if self._structure_fresh:
            return GenerationStep.STRUCTURE_GENERATED
        return GenerationStep.DETAILING

    def next_phase_index(self) -> int | None:
        if self.roadmap is None:
            return None
        return self.roadmap.first_pending_index()

    def apply_structure(self, payload: dict[str, Any], job: RoadmapJob) -> Roadmap:
        raw_phases = payload.get("phases")
        if not isinstance(raw_phases, list) or not raw_phases:
            raise StructureValidationError(
                "The model did not return a valid roadmap structure (missing phases)."
            )

        phases: list[Phase] = []
        for index, item in enumerate(raw_phases):
            if isinstance(item, dict):
                title = str(item.get("title") or f"Phase {index + 1}")
                raw_number = item.get("phaseNumber")
            else:
                title = str(item)
                raw_number = None
            try:
                phase_number = int(raw_number or index + 1)
            except (TypeError, ValueError):
                phase_number = index + 1
            phases.append(Phase.placeholder(phase_number, title))

        details = {key: value for key, value in payload.items() if key not in Roadmap.KNOWN_KEYS}
        title = str(payload.get("title") or job.objective[:80] or "Roadmap")

        if self.roadmap is None:
            self.roadmap = Roadmap(
                title=title,
                objective=job.objective,
                final_goal=job.final_goal,
                starting_level=job.starting_level,
            )
        roadmap = self.roadmap
        roadmap.title = roadmap.title or title
        roadmap.phases = phases
        roadmap.details.update(details)
        roadmap.generation_state = "in-progress"
        roadmap.updated_at = utcnow_iso()
        self._structure_fresh = True
        return roadmap

    def merge_phase(self, index: int, payload: dict[str, Any]) -> Phase:
        if self.roadmap is None:
            raise RuntimeError("Cannot merge phase details before the structure exists.")
        goal = payload.get("goal")
        if not isinstance(goal, str) or not goal.strip() or goal.strip() == PENDING_SENTINEL:
            raise ResponseParseError(
                f"Phase detail response for phase {index + 1} has no usable goal."
            )
        current = self.roadmap.phases[index]
        merged = current.to_dict()
        merged.update(payload)
        # Identity of the phase comes from the structure, not from the detail call.
        merged["phaseNumber"] = current.phase_number
        merged["title"] = current.title
        phase = Phase.from_dict(merged, index=index)
        self.roadmap.phases[index] = phase
        self.roadmap.updated_at = utcnow_iso()
        self._structure_fresh = False
        return phase

    def mark_complete(self) -> Roadmap:
        if self.roadmap is None or self.roadmap.first_pending_index() is not None:
            raise RuntimeError("Roadmap still has undetailed phases.")
        self.roadmap.generation_state = "completed"
        self.roadmap.updated_at = utcnow_iso()
        return self.roadmap
