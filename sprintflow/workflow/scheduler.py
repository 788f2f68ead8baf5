"""Which sprints can run next."""

from sprintflow.data.models import Phase, Sprint


def select_runnable(sprints: list[Sprint]) -> list[Sprint]:
    """
    Sprints that may run now, in the order they should be started.

    A sprint is runnable when it is neither DONE nor BLOCKED and every known
    dependency is DONE. While any must_complete_first sprint is unfinished,
    only those foundation sprints are runnable.

    Order: in-progress first, then must_complete_first, then lowest id.
    """
    by_id = {s.id: s for s in sprints}

    def deps_done(sprint: Sprint) -> bool:
        return all(
            by_id[dep].phase is Phase.DONE
            for dep in sprint.dependencies
            if dep in by_id
        )

    candidates = [
        s for s in sprints
        if s.phase not in (Phase.DONE, Phase.BLOCKED) and deps_done(s)
    ]

    if any(s.must_complete_first and s.phase is not Phase.DONE for s in sprints):
        candidates = [s for s in candidates if s.must_complete_first]

    return sorted(candidates, key=lambda s: (not s.is_in_progress, not s.must_complete_first, s.id))
