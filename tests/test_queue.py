from roadmapper.models import RoadmapJob
from roadmapper.queue import GenerationQueue


def _jobs() -> list[RoadmapJob]:
    return [
        RoadmapJob(objective="A", final_goal="x", job_id="job-a"),
        RoadmapJob(objective="B", final_goal="x", job_id="job-b", roadmap_id="roadmap-b"),
        RoadmapJob(objective="C", final_goal="x", job_id="job-c"),
    ]


def _ids(queue: GenerationQueue) -> list[str]:
    return [job.job_id for job in queue]


def test_pop_and_push_front_preserve_order() -> None:
    queue = GenerationQueue(_jobs())

    head = queue.pop_head()
    assert head.job_id == "job-a"
    assert _ids(queue) == ["job-b", "job-c"]

    queue.push_front(head)
    assert queue.head is head
    assert len(queue) == 3


def test_remove_matches_job_or_roadmap_id() -> None:
    queue = GenerationQueue(_jobs())

    assert [job.job_id for job in queue.remove("roadmap-b")] == ["job-b"]
    assert [job.job_id for job in queue.remove("job-c")] == ["job-c"]
    assert queue.remove("missing") == []
    assert _ids(queue) == ["job-a"]


def test_move_clamps_target_index() -> None:
    queue = GenerationQueue(_jobs())

    assert queue.move("job-a", 99) is True
    assert _ids(queue) == ["job-b", "job-c", "job-a"]
    assert queue.move("job-c", -4) is True
    assert _ids(queue) == ["job-c", "job-b", "job-a"]
    assert queue.move("job-z", 0) is False


def test_discard_uses_identity_and_clear_empties() -> None:
    jobs = _jobs()
    queue = GenerationQueue(jobs)
    lookalike = RoadmapJob(objective="A", final_goal="x", job_id="job-a")

    assert queue.discard(lookalike) is False
    assert queue.discard(jobs[0]) is True
    assert queue.find_equivalent(lookalike) is None
    assert queue.find_equivalent(RoadmapJob(objective="b ", final_goal="X")) is jobs[1]
    assert len(queue.clear()) == 2
    assert not queue
    assert queue.pop_head() is None
