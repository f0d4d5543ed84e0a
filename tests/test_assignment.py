import itertools
import random

import pytest

from app.services.assignment import (
    check_assignments,
    find_perfect_matching,
    generate_assignments,
)
from app.services.errors import AssignmentError, InfeasibleConstraints, InsufficientMembers
from app.services.exclusions import ExclusionSet


def assert_valid(assignments, participants, exclusions=None):
    assert set(assignments.keys()) == set(participants)
    assert set(assignments.values()) == set(participants)
    assert all(giver != receiver for giver, receiver in assignments.items())
    if exclusions is not None:
        assert not any(exclusions.contains(g, r) for g, r in assignments.items())


def test_assignment_basic_bijection():
    participants = [1, 2, 3, 4]
    assignments = generate_assignments(participants, seed=42)
    assert_valid(assignments, participants)


def test_assignment_two_people():
    assignments = generate_assignments([10, 20], seed=1)
    assert assignments == {10: 20, 20: 10}


def test_assignment_deterministic_seed():
    participants = [1, 2, 3, 4, 5]
    first = generate_assignments(participants, seed=123)
    second = generate_assignments(participants, seed=123)
    assert first == second


def test_assignment_without_seed_is_valid():
    participants = list(range(1, 21))
    assert_valid(generate_assignments(participants), participants)


def test_assignment_respects_exclusions():
    participants = list(range(1, 9))
    exclusions = ExclusionSet.from_pairs([(1, 2), (3, 4), (5, 6), (7, 8), (1, 3)])
    for seed in range(25):
        assignments = generate_assignments(participants, exclusions=exclusions, seed=seed)
        assert_valid(assignments, participants, exclusions)


@pytest.mark.parametrize("pair", [(1, 2), (1, 3), (2, 3)])
def test_three_members_with_one_exclusion_is_infeasible(pair):
    exclusions = ExclusionSet.from_pairs([pair])
    with pytest.raises(InfeasibleConstraints) as excinfo:
        generate_assignments([1, 2, 3], exclusions=exclusions, seed=3)
    assert excinfo.value.member_count == 3
    assert excinfo.value.exclusion_count == 1
    assert "remove some exclusions" in str(excinfo.value)


def test_three_members_only_produce_three_cycles():
    seen = set()
    for seed in range(50):
        assignments = generate_assignments([1, 2, 3], seed=seed)
        seen.add(tuple(sorted(assignments.items())))
    assert seen <= {((1, 2), (2, 3), (3, 1)), ((1, 3), (2, 1), (3, 2))}
    assert len(seen) == 2


def test_exact_matching_fallback_when_random_budget_is_zero():
    participants = [1, 2, 3, 4]
    exclusions = ExclusionSet.from_pairs([(1, 2), (3, 4)])
    assignments = generate_assignments(participants, exclusions=exclusions, seed=11, max_attempts=0)
    assert_valid(assignments, participants, exclusions)


def test_exact_matching_detects_infeasibility():
    # 1 is excluded from everyone, so nobody can give to or receive from them.
    exclusions = ExclusionSet.from_pairs([(1, 2), (1, 3), (1, 4)])
    assert find_perfect_matching([1, 2, 3, 4], exclusions, random.Random(0)) is None
    with pytest.raises(InfeasibleConstraints):
        generate_assignments([1, 2, 3, 4], exclusions=exclusions, seed=0)


def test_exact_matching_returns_valid_draw():
    participants = [1, 2, 3, 4]
    exclusions = ExclusionSet.from_pairs([(1, 2), (3, 4)])
    matching = find_perfect_matching(participants, exclusions, random.Random(5))
    assert_valid(matching, participants, exclusions)


def test_assignment_fails_for_too_few_participants():
    with pytest.raises(InsufficientMembers):
        generate_assignments([1])
    with pytest.raises(InsufficientMembers):
        generate_assignments([])


def test_assignment_fails_for_tight_constraints():
    exclusions = ExclusionSet.from_pairs([(1, 2)])
    with pytest.raises(InfeasibleConstraints):
        generate_assignments([1, 2], exclusions=exclusions, seed=7)


def test_assignment_rejects_duplicate_ids():
    with pytest.raises(AssignmentError):
        generate_assignments([1, 2, 2])


def test_assignment_unique_receivers():
    participants = [1, 2, 3, 4, 5, 6]
    assignments = generate_assignments(participants, seed=77)
    assert len(set(assignments.values())) == len(participants)


def test_every_feasible_small_instance_is_solved():
    participants = [1, 2, 3, 4]
    all_pairs = list(itertools.combinations(participants, 2))
    for size in range(3):
        for pairs in itertools.combinations(all_pairs, size):
            exclusions = ExclusionSet.from_pairs(pairs)
            feasible = any(
                all(g != r and not exclusions.contains(g, r) for g, r in zip(participants, perm))
                for perm in itertools.permutations(participants)
            )
            if feasible:
                assignments = generate_assignments(participants, exclusions=exclusions, seed=1)
                assert_valid(assignments, participants, exclusions)
            else:
                with pytest.raises(InfeasibleConstraints):
                    generate_assignments(participants, exclusions=exclusions, seed=1)


def test_check_assignments_rejects_broken_permutations():
    check_assignments({1: 2, 2: 3, 3: 1}, [1, 2, 3])
    with pytest.raises(AssignmentError):
        check_assignments({1: 1, 2: 3, 3: 2}, [1, 2, 3])
    with pytest.raises(AssignmentError):
        check_assignments({1: 2, 2: 1}, [1, 2, 3])
    with pytest.raises(AssignmentError):
        check_assignments({1: 2, 2: 2, 3: 1}, [1, 2, 3])
    with pytest.raises(AssignmentError):
        check_assignments({1: 2, 2: 3, 3: 1}, [1, 2, 3], ExclusionSet.from_pairs([(1, 2)]))
