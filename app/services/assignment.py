from __future__ import annotations

import random
from typing import Dict, List, Mapping, Optional, Sequence, Set

from loguru import logger

from app.services.errors import AssignmentError, InfeasibleConstraints, InsufficientMembers
from app.services.exclusions import ExclusionSet

DEFAULT_MAX_ATTEMPTS = 1000


def _make_rng(seed: Optional[int]) -> random.Random:
    if seed is None:
        return random.SystemRandom()
    return random.Random(seed)


def _is_valid_draw(givers: Sequence[int], receivers: Sequence[int], exclusions: ExclusionSet) -> bool:
    for giver, receiver in zip(givers, receivers):
        if giver == receiver or exclusions.contains(giver, receiver):
            return False
    return True


def _allowed_receivers(members: Sequence[int], exclusions: ExclusionSet) -> Dict[int, List[int]]:
    return {
        giver: [receiver for receiver in members if receiver != giver and not exclusions.contains(giver, receiver)]
        for giver in members
    }


def find_perfect_matching(
    members: Sequence[int],
    exclusions: ExclusionSet,
    rng: random.Random,
) -> Optional[Dict[int, int]]:
    """Kuhn's augmenting-path matching on givers x receivers.

    Self edges and excluded edges are left out of the graph, so any perfect
    matching found is a valid draw. Returns ``None`` when none exists.
    """
    allowed = _allowed_receivers(members, exclusions)
    if any(not receivers for receivers in allowed.values()):
        return None
    for receivers in allowed.values():
        rng.shuffle(receivers)

    giver_of: Dict[int, int] = {}

    def augment(giver: int, visited: Set[int]) -> bool:
        for receiver in allowed[giver]:
            if receiver in visited:
                continue
            visited.add(receiver)
            current = giver_of.get(receiver)
            if current is None or augment(current, visited):
                giver_of[receiver] = giver
                return True
        return False

    order = list(members)
    rng.shuffle(order)
    for giver in order:
        if not augment(giver, set()):
            return None
    return {giver: receiver for receiver, giver in giver_of.items()}


def generate_assignments(
    member_ids: Sequence[int],
    exclusions: Optional[ExclusionSet] = None,
    seed: Optional[int] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> Dict[int, int]:
    """Draw a derangement of ``member_ids`` that avoids every excluded pair.

    Random Fisher-Yates shuffles are tried first; if none passes within
    ``max_attempts`` an exact bipartite matching decides feasibility.
    """
    members = list(member_ids)
    if len(set(members)) != len(members):
        raise AssignmentError("Participant ids must be unique.")
    if len(members) < 2:
        raise InsufficientMembers(len(members))

    exclusions = exclusions if exclusions is not None else ExclusionSet()
    rng = _make_rng(seed)

    receivers = list(members)
    for _ in range(max_attempts):
        rng.shuffle(receivers)
        if _is_valid_draw(members, receivers, exclusions):
            return dict(zip(members, receivers))

    logger.bind(members=len(members), exclusions=len(exclusions)).debug(
        "Random draw budget exhausted, falling back to exact matching"
    )
    matching = find_perfect_matching(members, exclusions, rng)
    if matching is None:
        raise InfeasibleConstraints(len(members), len(exclusions))
    return matching


def check_assignments(
    assignments: Mapping[int, int],
    member_ids: Sequence[int],
    exclusions: Optional[ExclusionSet] = None,
) -> None:
    members = set(member_ids)
    if set(assignments.keys()) != members:
        raise AssignmentError("Every participant must give exactly one gift.")
    if set(assignments.values()) != members or len(set(assignments.values())) != len(assignments):
        raise AssignmentError("Every participant must receive exactly one gift.")
    for giver, receiver in assignments.items():
        if giver == receiver:
            raise AssignmentError("A participant cannot give a gift to themselves.")
        if exclusions is not None and exclusions.contains(giver, receiver):
            raise AssignmentError("Assignment contains an excluded pair.")
