from __future__ import annotations

import datetime
from typing import Dict, Mapping, Optional, Sequence

from loguru import logger
from sqlalchemy.exc import IntegrityError

from app.db import Raffle, repo
from app.services.assignment import check_assignments
from app.services.errors import AlreadyDrawn
from app.services.exclusions import ExclusionSet


def exists(session, raffle_id: int) -> bool:
    return repo.count_assignments(session, raffle_id) > 0


def get(session, raffle_id: int, member_id: int) -> Optional[int]:
    return repo.get_receiver_id(session, raffle_id, member_id)


def as_mapping(session, raffle_id: int) -> Dict[int, int]:
    return {
        assignment.giver_member_id: assignment.receiver_member_id
        for assignment in repo.list_assignments(session, raffle_id)
    }


def commit(
    session,
    raffle: Raffle,
    assignments: Mapping[int, int],
    member_ids: Sequence[int],
    exclusions: Optional[ExclusionSet] = None,
) -> None:
    """Persist a draw once. Must run inside ``raffle_transaction``.

    Rows are only flushed here; the surrounding transaction commits or rolls
    back all of them together, so a failed write leaves the raffle undrawn.
    """
    if raffle.is_drawn or exists(session, raffle.id):
        raise AlreadyDrawn(raffle.id)

    check_assignments(assignments, member_ids, exclusions)

    try:
        repo.create_assignments(session, raffle.id, dict(assignments))
    except IntegrityError as exc:
        raise AlreadyDrawn(raffle.id) from exc
    repo.mark_raffle_drawn(session, raffle, datetime.datetime.now(datetime.timezone.utc))
    logger.bind(raffle_id=raffle.id, members=len(assignments)).info("Assignments committed")
