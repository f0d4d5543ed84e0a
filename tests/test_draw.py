import threading

import pytest

from app.db import RaffleStatus, get_session, repo
from app.services import assignment_store, raffle_flow
from app.services.errors import (
    AlreadyDrawn,
    DuplicateExclusion,
    InfeasibleConstraints,
    InsufficientMembers,
    LockedError,
    NotDrawnYet,
    NotFound,
    PermissionDenied,
    ProfileIncomplete,
)


def test_draw_commits_valid_permutation(make_raffle):
    raffle = make_raffle(5)
    result = raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=4)

    assert result.member_count == 5
    assert len(result.notifications) == 5
    with get_session() as session:
        stored = assignment_store.as_mapping(session, raffle.raffle_id)
        assert stored == result.assignments
        assert set(stored) == set(raffle.member_ids)
        assert set(stored.values()) == set(raffle.member_ids)
        assert all(giver != receiver for giver, receiver in stored.items())
        row = repo.get_raffle_by_id(session, raffle.raffle_id)
        assert row.status == RaffleStatus.DRAWN
        assert row.drawn_at is not None


def test_second_draw_fails_and_keeps_first(make_raffle):
    raffle = make_raffle(4)
    first = raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=1)

    with pytest.raises(AlreadyDrawn):
        raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=2)

    with get_session() as session:
        assert assignment_store.as_mapping(session, raffle.raffle_id) == first.assignments


def test_concurrent_draws_commit_once(make_raffle):
    raffle = make_raffle(5)
    start = threading.Barrier(6)
    results = []
    errors = []

    def attempt(seed):
        start.wait()
        try:
            results.append(raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=seed))
        except AlreadyDrawn as exc:
            errors.append(exc)

    threads = [threading.Thread(target=attempt, args=(seed,)) for seed in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 1
    assert len(errors) == 5
    with get_session() as session:
        stored = assignment_store.as_mapping(session, raffle.raffle_id)
    assert stored == results[0].assignments
    assert len(stored) == len(raffle.member_ids)


def test_only_owner_can_draw(make_raffle):
    raffle = make_raffle(3)
    with pytest.raises(PermissionDenied):
        raffle_flow.draw(raffle.raffle_id, raffle.user_ids[1])


def test_draw_needs_three_members(make_raffle):
    raffle = make_raffle(2)
    with pytest.raises(InsufficientMembers) as excinfo:
        raffle_flow.draw(raffle.raffle_id, raffle.owner_id)
    assert excinfo.value.required == 3


def test_draw_requires_complete_profiles(make_raffle):
    raffle = make_raffle(3, ready=False)
    with pytest.raises(ProfileIncomplete) as excinfo:
        raffle_flow.draw(raffle.raffle_id, raffle.owner_id)
    assert len(excinfo.value.missing) == 3


def test_draw_unknown_raffle(engine):
    with pytest.raises(NotFound):
        raffle_flow.draw(999, 1)


def test_infeasible_exclusions_leave_raffle_open(make_raffle):
    raffle = make_raffle(3)
    a, b, _ = raffle.member_ids
    raffle_flow.add_exclusion(raffle.raffle_id, raffle.owner_id, a, b)

    with pytest.raises(InfeasibleConstraints):
        raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=1)

    with get_session() as session:
        assert not assignment_store.exists(session, raffle.raffle_id)
        assert not repo.get_raffle_by_id(session, raffle.raffle_id).is_drawn


def test_draw_respects_exclusions(make_raffle):
    raffle = make_raffle(6)
    ids = raffle.member_ids
    raffle_flow.add_exclusion(raffle.raffle_id, raffle.owner_id, ids[0], ids[1])
    raffle_flow.add_exclusion(raffle.raffle_id, raffle.owner_id, ids[2], ids[3])

    result = raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=9)
    forbidden = {frozenset((ids[0], ids[1])), frozenset((ids[2], ids[3]))}
    assert all(frozenset(pair) not in forbidden for pair in result.assignments.items())


def test_failed_write_rolls_back_whole_draw(make_raffle, monkeypatch):
    raffle = make_raffle(4)
    original = repo.create_assignments

    def broken_create(session, raffle_id, assignments):
        original(session, raffle_id, dict(list(assignments.items())[:2]))
        raise RuntimeError("disk full")

    monkeypatch.setattr(repo, "create_assignments", broken_create)
    with pytest.raises(RuntimeError):
        raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=3)

    with get_session() as session:
        assert repo.count_assignments(session, raffle.raffle_id) == 0
        assert repo.get_raffle_by_id(session, raffle.raffle_id).status == RaffleStatus.OPEN

    monkeypatch.setattr(repo, "create_assignments", original)
    result = raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=3)
    assert result.member_count == 4


def test_exclusions_locked_after_draw(make_raffle):
    raffle = make_raffle(4)
    ids = raffle.member_ids
    pair = raffle_flow.add_exclusion(raffle.raffle_id, raffle.owner_id, ids[0], ids[1])
    raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=2)

    with pytest.raises(LockedError):
        raffle_flow.add_exclusion(raffle.raffle_id, raffle.owner_id, ids[2], ids[3])
    with pytest.raises(LockedError):
        raffle_flow.remove_exclusion(raffle.raffle_id, raffle.owner_id, pair.id)

    with get_session() as session:
        rows = repo.list_exclusions(session, raffle.raffle_id)
        assert [(row.member_a_id, row.member_b_id) for row in rows] == [tuple(sorted((ids[0], ids[1])))]


def test_exclusion_rules(make_raffle):
    raffle = make_raffle(3)
    other = make_raffle(3)
    a, b, c = raffle.member_ids

    pair = raffle_flow.add_exclusion(raffle.raffle_id, raffle.owner_id, b, a)
    with pytest.raises(DuplicateExclusion):
        raffle_flow.add_exclusion(raffle.raffle_id, raffle.owner_id, a, b)
    with pytest.raises(PermissionDenied):
        raffle_flow.add_exclusion(raffle.raffle_id, raffle.user_ids[1], a, c)
    with pytest.raises(NotFound):
        raffle_flow.add_exclusion(raffle.raffle_id, raffle.owner_id, a, other.member_ids[0])

    with get_session() as session:
        views = raffle_flow.list_exclusions(session, raffle.raffle_id, raffle.owner_id)
    assert [(view.id, view.member_a_id, view.member_b_id) for view in views] == [(pair.id, a, b)]

    raffle_flow.remove_exclusion(raffle.raffle_id, raffle.owner_id, pair.id)
    with pytest.raises(NotFound):
        raffle_flow.remove_exclusion(raffle.raffle_id, raffle.owner_id, pair.id)


def test_join_and_leave_closed_after_draw(make_raffle):
    raffle = make_raffle(3)
    late = make_raffle(1)

    result = raffle_flow.join_raffle(raffle.raffle_id, late.owner_id)
    assert result.added
    assert not raffle_flow.join_raffle(raffle.raffle_id, late.owner_id).added
    raffle_flow.leave_raffle(raffle.raffle_id, late.owner_id)

    raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=5)
    with pytest.raises(LockedError):
        raffle_flow.join_raffle(raffle.raffle_id, late.owner_id)
    with pytest.raises(LockedError):
        raffle_flow.leave_raffle(raffle.raffle_id, raffle.user_ids[1])


def test_leaving_drops_member_exclusions(make_raffle):
    raffle = make_raffle(4)
    ids = raffle.member_ids
    raffle_flow.add_exclusion(raffle.raffle_id, raffle.owner_id, ids[1], ids[2])
    raffle_flow.leave_raffle(raffle.raffle_id, raffle.user_ids[1])

    with get_session() as session:
        assert repo.list_exclusions(session, raffle.raffle_id) == []
        assert repo.count_members(session, raffle.raffle_id) == 3


def test_my_assignment(make_raffle):
    raffle = make_raffle(3)
    with get_session() as session:
        with pytest.raises(NotDrawnYet):
            raffle_flow.get_my_assignment(session, raffle.raffle_id, raffle.user_ids[1])

    result = raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=8)
    with get_session() as session:
        mine = raffle_flow.get_my_assignment(session, raffle.raffle_id, raffle.user_ids[1])
    assert mine.member_id == raffle.member_ids[1]
    assert mine.receiver_id == result.assignments[raffle.member_ids[1]]
    assert mine.receiver_name.startswith("User ")


def test_delete_raffle_removes_everything(make_raffle):
    raffle = make_raffle(3)
    raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=1)

    with pytest.raises(PermissionDenied):
        raffle_flow.delete_raffle(raffle.raffle_id, raffle.user_ids[2])
    raffle_flow.delete_raffle(raffle.raffle_id, raffle.owner_id)

    with get_session() as session:
        assert repo.get_raffle_by_id(session, raffle.raffle_id) is None
        assert repo.count_members(session, raffle.raffle_id) == 0
        assert repo.count_assignments(session, raffle.raffle_id) == 0
