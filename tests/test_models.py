import pytest

from roadmapper.models import PENDING_SENTINEL, MiniGoal, Phase, Roadmap, RoadmapJob


def _document(goals: list[str]) -> dict:
    return {
        "id": "rust-1",
        "title": "Rust",
        "objective": "Learn Rust",
        "finalGoal": "Write a CLI tool",
        "generationState": "completed",
        "tips": ["read the book"],
        "phases": [
            {
                "phaseNumber": index + 1,
                "title": f"Step {index + 1}",
                "goal": goal,
                "miniGoals": [{"title": "a"}, {"id": "custom", "title": "b", "completed": True}],
                "customField": 7,
            }
            for index, goal in enumerate(goals)
        ],
    }


def test_generation_state_follows_phase_goals() -> None:
    assert Roadmap.from_dict(_document(["x", PENDING_SENTINEL])).generation_state == "in-progress"
    assert Roadmap.from_dict(_document(["x", "y"])).generation_state == "completed"
    assert Roadmap.from_dict(_document([])).generation_state == "queued"


def test_missing_fields_get_defaults_and_unknown_keys_survive() -> None:
    data = _document(["x"])
    data["phases"][0].pop("goal")
    roadmap = Roadmap.from_dict(data)
    phase = roadmap.phases[0]

    assert phase.goal == PENDING_SENTINEL
    assert phase.duration == PENDING_SENTINEL
    assert [goal.id for goal in phase.mini_goals] == ["mini-goal-1-1", "custom"]
    assert phase.progress_percentage == 50

    dumped = roadmap.to_dict()
    assert dumped["tips"] == ["read the book"]
    assert dumped["phases"][0]["customField"] == 7
    assert dumped["phases"][0]["miniGoals"][1]["completedDate"] is not None


def test_toggle_mini_goal_updates_phase_and_overall_progress() -> None:
    roadmap = Roadmap.from_dict(_document(["x", "y"]))

    goal = roadmap.toggle_mini_goal(0, "mini-goal-1-1")

    assert goal.completed is True
    assert goal.completed_date
    assert roadmap.phases[0].progress_percentage == 100
    assert roadmap.overall_progress() == 75

    roadmap.toggle_mini_goal(0, "custom")
    assert roadmap.phases[0].mini_goals[1].completed_date is None
    assert roadmap.phases[0].progress_percentage == 50


def test_toggle_mini_goal_rejects_unknown_targets() -> None:
    roadmap = Roadmap.from_dict(_document(["x"]))

    with pytest.raises(IndexError):
        roadmap.toggle_mini_goal(3, "custom")
    with pytest.raises(KeyError):
        roadmap.toggle_mini_goal(0, "nope")


def test_progress_of_empty_phase_is_zero() -> None:
    phase = Phase.placeholder(1, "Intro")

    assert phase.recompute_progress() == 0
    assert phase.is_detailed is False


def test_mini_goal_completion_date_tracks_flag() -> None:
    goal = MiniGoal(id="g")
    goal.set_completed(True, at="2024-01-01T00:00:00+00:00")
    assert goal.completed_date == "2024-01-01T00:00:00+00:00"
    goal.set_completed(False)
    assert goal.completed_date is None


def test_dedup_key_normalizes_case_and_whitespace() -> None:
    first = RoadmapJob(objective=" Learn X ", final_goal="Build Y")
    second = RoadmapJob(objective="learn x", final_goal="  build y")

    assert first.job_id != second.job_id
    assert first.is_equivalent(second)
    assert not first.is_equivalent(RoadmapJob(objective="Learn X", final_goal="Build Z"))


def test_job_for_roadmap_is_a_resume() -> None:
    roadmap = Roadmap.from_dict(_document(["x", PENDING_SENTINEL]))
    job = RoadmapJob.for_roadmap(roadmap)

    assert job.is_resume is True
    assert job.roadmap_id == "rust-1"
    assert job.matches("rust-1")
    assert job.matches(job.job_id)
    assert job.to_dict()["finalGoal"] == "Write a CLI tool"
