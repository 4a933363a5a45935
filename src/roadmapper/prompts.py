from __future__ import annotations

import math
from dataclasses import dataclass

from roadmapper.models import Phase, Roadmap, RoadmapJob, normalize_text

DIFFICULTY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "easy": ("basic", "beginner", "introduction", "fundamentals", "getting started", "simple"),
    "medium": ("intermediate", "practical", "hands-on", "project", "application"),
    "hard": ("advanced", "complex", "professional", "enterprise", "architecture", "system"),
    "expert": ("expert", "mastery", "research", "cutting-edge", "innovation", "leadership"),
}
# Order matters: the first matching level wins.
DIFFICULTY_PRECEDENCE = ("easy", "expert", "hard", "medium")
DIFFICULTY_CUTS = {
    "easy": (0.0, 0.3),
    "medium": (0.3, 0.6),
    "hard": (0.6, 0.8),
    "expert": (0.8, 1.0),
}

JSON_ONLY_FOOTER = (
    "CRITICAL: Your entire response MUST be valid JSON only. No markdown formatting, "
    "no explanations, no additional text - just pure, valid JSON."
)


@dataclass(slots=True)
class PhaseSettings:
    min_phases: int = 15
    max_phases: int = 50
    adaptive_difficulty: bool = True


def classify_difficulty(objective: str, final_goal: str) -> str:
    haystack = f"{normalize_text(objective)}\n{normalize_text(final_goal)}"
    for level in DIFFICULTY_PRECEDENCE:
        if any(keyword in haystack for keyword in DIFFICULTY_KEYWORDS[level]):
            return level
    return "medium"


def phase_range(min_phases: int, max_phases: int, difficulty: str) -> tuple[int, int]:
    low_cut, high_cut = DIFFICULTY_CUTS[difficulty]
    span = max_phases - min_phases
    low = min_phases if low_cut == 0.0 else math.ceil(min_phases + span * low_cut)
    high = max_phases if high_cut == 1.0 else math.ceil(min_phases + span * high_cut)
    return low, high


def requested_phase_range(job: RoadmapJob, settings: PhaseSettings) -> tuple[int, int]:
    if not settings.adaptive_difficulty:
        return settings.min_phases, settings.max_phases
    difficulty = classify_difficulty(job.objective, job.final_goal)
    return phase_range(settings.min_phases, settings.max_phases, difficulty)


def structure_prompt(job: RoadmapJob, settings: PhaseSettings) -> str:
    low, high = requested_phase_range(job, settings)
    guidance_lines: list[str] = []
    for level in ("easy", "medium", "hard", "expert"):
        level_low, level_high = phase_range(settings.min_phases, settings.max_phases, level)
        guidance_lines.append(f"- {level.upper()} topics: {level_low}-{level_high} phases")
    guidance = "\n".join(guidance_lines)
    starting_level = job.starting_level.strip() or "not specified"
    return f"""
Create a high-level study roadmap structure for: "{job.objective}"
Final Goal: "{job.final_goal}"
Learner's starting level: {starting_level}

Provide the overall roadmap details and a list of phase titles.
The roadmap should have {low} to {high} DISTINCT, PROGRESSIVELY CHALLENGING PHASES.

Scale the phase count with the complexity of the subject:
{guidance}

Format as JSON with this EXACT structure:
{{
  "title": "Comprehensive Study Roadmap Title",
  "totalDuration": "Realistic total duration",
  "difficultyLevel": "Beginner/Intermediate/Advanced/Expert",
  "totalEstimatedHours": "Realistic total hour commitment",
  "phases": [
    {{"phaseNumber": 1, "title": "Descriptive Phase Title"}}
  ],
  "motivationMilestones": ["Achievements that maintain long-term motivation"],
  "careerProgression": ["Career steps this knowledge opens up"],
  "tips": ["Strategic advice for succeeding and avoiding common pitfalls"],
  "prerequisites": ["Knowledge the learner should have before starting"],
  "marketDemand": "Current demand and outlook for these skills",
  "communityResources": ["Communities, forums and networking opportunities"]
}}

{JSON_ONLY_FOOTER}
""".strip()


def _outline(roadmap: Roadmap, current: Phase) -> str:
    lines = []
    for phase in roadmap.phases:
        marker = "->" if phase is current else "  "
        lines.append(f"{marker} Phase {phase.phase_number}: {phase.title}")
    return "\n".join(lines)


def phase_detail_prompt(roadmap: Roadmap, phase_index: int) -> str:
    phase = roadmap.phases[phase_index]
    return f"""
You are generating one phase of a larger study roadmap for: "{roadmap.objective}"
with the final goal: "{roadmap.final_goal}".
Roadmap: "{roadmap.title}"

Roadmap outline:
{_outline(roadmap, phase)}

The current phase is Phase {phase.phase_number}: "{phase.title}".
Generate the detailed content for this single phase only.

Generate 7-12 actionable, detailed mini-goals, several high-quality resources and one
practical project for this phase.

Format as JSON with this EXACT structure for the phase object:
{{
  "duration": "Realistic timeframe",
  "goal": "Specific, measurable goal with clear success criteria",
  "miniGoals": [
    {{
      "id": "mini-goal-{phase_index + 1}-1",
      "title": "Actionable mini-goal title",
      "description": "Expected outcomes and deliverables",
      "estimatedTime": "Realistic time estimate",
      "priority": "high/medium/low",
      "completed": false,
      "completedDate": null
    }}
  ],
  "resources": [
    {{
      "name": "Resource Name",
      "url": "https://example.com",
      "type": "documentation/course/book/paper/project/tool",
      "description": "Why this resource is valuable"
    }}
  ],
  "project": {{
    "title": "Practical Project Title",
    "description": "Project description with clear objectives",
    "deliverables": ["Specific, measurable deliverables"]
  }},
  "skills": ["Skills gained in this phase"],
  "milestone": "Measurable achievement marking phase completion"
}}

{JSON_ONLY_FOOTER}
""".strip()
