from __future__ import annotations

import datetime
import html
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from loguru import logger

from app.db import Member, Raffle, User, repo
from app.services import assignment_store
from app.services.assignment import DEFAULT_MAX_ATTEMPTS, generate_assignments
from app.services.errors import (
    AlreadyDrawn,
    InsufficientMembers,
    LockedError,
    NotDrawnYet,
    NotFound,
    PermissionDenied,
    ProfileIncomplete,
)
from app.services.exclusions import ExclusionPair, ExclusionSet
from app.services.locks import raffle_transaction

MIN_DRAW_MEMBERS = 3


@dataclass(frozen=True)
class JoinResult:
    added: bool
    message: str
    raffle_id: int
    member_id: Optional[int]


@dataclass(frozen=True)
class DrawResult:
    raffle_id: int
    drawn_at: Optional[datetime.datetime]
    assignments: Dict[int, int]
    # (giver telegram id, receiver label) for the assignment DMs
    notifications: List[Tuple[int, str]]

    @property
    def member_count(self) -> int:
        return len(self.assignments)


@dataclass(frozen=True)
class MyAssignment:
    member_id: int
    receiver_id: int
    receiver_name: str


@dataclass(frozen=True)
class ExclusionView:
    id: int
    member_a_id: int
    member_a_name: str
    member_b_id: int
    member_b_name: str


def format_user_label(user: User) -> str:
    if user.telegram_username:
        return f"@{html.escape(user.telegram_username)}"
    if user.display_name:
        return html.escape(user.display_name)
    return f"user-{user.telegram_id}"


def format_user_display(user: User) -> str:
    if user.display_name:
        return html.escape(user.display_name)
    if user.telegram_username:
        return f"@{html.escape(user.telegram_username)}"
    return f"user-{user.telegram_id}"


def ensure_user(
    session,
    telegram_id: int,
    telegram_username: Optional[str],
    first_name: Optional[str],
    last_name: Optional[str],
) -> User:
    display_name = " ".join(filter(None, [first_name, last_name])) or None
    return repo.upsert_user(session, telegram_id, telegram_username, display_name)


def register_private_chat(
    session,
    telegram_id: int,
    telegram_username: Optional[str],
    first_name: Optional[str],
    last_name: Optional[str],
) -> User:
    user = ensure_user(session, telegram_id, telegram_username, first_name, last_name)
    user.has_private_chat = True
    return user


def get_raffle(session, raffle_id: int) -> Raffle:
    raffle = repo.get_raffle_by_id(session, raffle_id)
    if raffle is None:
        raise NotFound("Raffle not found.")
    return raffle


def require_owner(raffle: Raffle, user_id: int) -> None:
    if raffle.owner_user_id != user_id:
        raise PermissionDenied("Only the raffle owner can do that.")


def require_member(session, raffle_id: int, user_id: int) -> Member:
    member = repo.get_member_for_user(session, raffle_id, user_id)
    if member is None:
        raise PermissionDenied("You are not a member of this raffle.")
    return member


def create_raffle(
    session,
    owner: User,
    title: Optional[str],
    telegram_chat_id: Optional[int] = None,
    owner_joins: bool = True,
) -> Raffle:
    raffle = repo.create_raffle(session, owner.id, title, telegram_chat_id)
    if owner_joins:
        repo.add_member(session, raffle.id, owner.id)
    logger.bind(raffle_id=raffle.id, owner_id=owner.id).info("Raffle created")
    return raffle


def join_raffle(raffle_id: int, user_id: int) -> JoinResult:
    with raffle_transaction(raffle_id) as (session, raffle):
        if raffle.is_drawn:
            raise LockedError("Names have already been drawn, joining is closed.")
        member = repo.add_member(session, raffle.id, user_id)
        if member is None:
            existing = repo.get_member_for_user(session, raffle.id, user_id)
            return JoinResult(False, "You are already in this Secret Santa!", raffle.id, existing.id)
        return JoinResult(True, "You have joined the Secret Santa!", raffle.id, member.id)


def leave_raffle(raffle_id: int, user_id: int) -> None:
    with raffle_transaction(raffle_id) as (session, raffle):
        if raffle.is_drawn:
            raise LockedError("Names have already been drawn, participants cannot leave.")
        member = require_member(session, raffle.id, user_id)
        repo.remove_member(session, member)


def list_members(session, raffle: Raffle) -> List[Member]:
    return repo.list_members(session, raffle.id)


def load_exclusions(session, raffle: Raffle) -> ExclusionSet:
    return ExclusionSet.from_rows(
        repo.list_exclusions(session, raffle.id),
        locked=raffle.is_drawn,
        raffle_id=raffle.id,
    )


def list_exclusions(session, raffle_id: int, user_id: int) -> List[ExclusionView]:
    raffle = get_raffle(session, raffle_id)
    require_owner(raffle, user_id)
    return [
        ExclusionView(
            id=exclusion.id,
            member_a_id=exclusion.member_a_id,
            member_a_name=format_user_display(exclusion.member_a.user),
            member_b_id=exclusion.member_b_id,
            member_b_name=format_user_display(exclusion.member_b.user),
        )
        for exclusion in repo.list_exclusions(session, raffle.id)
    ]


def add_exclusion(raffle_id: int, user_id: int, member_a_id: int, member_b_id: int) -> ExclusionPair:
    with raffle_transaction(raffle_id) as (session, raffle):
        require_owner(raffle, user_id)
        exclusions = load_exclusions(session, raffle)
        exclusions.check_can_add(member_a_id, member_b_id)
        for member_id in (member_a_id, member_b_id):
            if repo.get_member(session, raffle.id, member_id) is None:
                raise NotFound("One or both participants are not in this raffle.")
        row = repo.create_exclusion(session, raffle.id, member_a_id, member_b_id)
        pair = exclusions.add(member_a_id, member_b_id, pair_id=row.id)
    logger.bind(raffle_id=raffle_id, exclusion_id=pair.id).info("Exclusion added")
    return pair


def remove_exclusion(raffle_id: int, user_id: int, exclusion_id: int) -> ExclusionPair:
    with raffle_transaction(raffle_id) as (session, raffle):
        require_owner(raffle, user_id)
        exclusions = load_exclusions(session, raffle)
        pair = exclusions.remove(exclusion_id)
        repo.delete_exclusion(session, raffle.id, exclusion_id)
    logger.bind(raffle_id=raffle_id, exclusion_id=exclusion_id).info("Exclusion removed")
    return pair


def draw(
    raffle_id: int,
    user_id: int,
    seed: Optional[int] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> DrawResult:
    """Run the engine and commit its result, all under the raffle lock."""
    with raffle_transaction(raffle_id) as (session, raffle):
        require_owner(raffle, user_id)
        if raffle.is_drawn or assignment_store.exists(session, raffle.id):
            raise AlreadyDrawn(raffle.id)

        members = repo.list_members(session, raffle.id)
        if len(members) < MIN_DRAW_MEMBERS:
            raise InsufficientMembers(len(members), required=MIN_DRAW_MEMBERS)

        missing = [format_user_display(member.user) for member in members if not member.user.has_private_chat]
        if missing:
            raise ProfileIncomplete(missing)

        member_ids = [member.id for member in members]
        exclusions = load_exclusions(session, raffle)
        assignments = generate_assignments(
            member_ids,
            exclusions=exclusions,
            seed=seed,
            max_attempts=max_attempts,
        )
        assignment_store.commit(session, raffle, assignments, member_ids, exclusions)

        by_id = {member.id: member for member in members}
        notifications = [
            (by_id[giver_id].user.telegram_id, format_user_label(by_id[receiver_id].user))
            for giver_id, receiver_id in assignments.items()
        ]
        drawn_at = raffle.drawn_at

    return DrawResult(
        raffle_id=raffle_id,
        drawn_at=drawn_at,
        assignments=dict(assignments),
        notifications=notifications,
    )


def get_my_assignment(session, raffle_id: int, user_id: int) -> MyAssignment:
    get_raffle(session, raffle_id)
    member = require_member(session, raffle_id, user_id)
    receiver_id = assignment_store.get(session, raffle_id, member.id)
    if receiver_id is None:
        raise NotDrawnYet("Names have not been drawn yet.")
    receiver = repo.get_member(session, raffle_id, receiver_id)
    return MyAssignment(
        member_id=member.id,
        receiver_id=receiver_id,
        receiver_name=format_user_display(receiver.user),
    )


def delete_raffle(raffle_id: int, user_id: int) -> None:
    with raffle_transaction(raffle_id) as (session, raffle):
        require_owner(raffle, user_id)
        repo.delete_raffle(session, raffle)
    logger.bind(raffle_id=raffle_id).info("Raffle deleted")


def resolve_user_raffle(session, telegram_user_id: int, raffle_identifier: Optional[str]) -> Optional[Raffle]:
    user = repo.get_user_by_telegram_id(session, telegram_user_id)
    if not user:
        return None

    raffles = repo.list_raffles_for_user(session, user.id)
    if not raffles:
        return None

    if raffle_identifier:
        try:
            raffle_id = int(raffle_identifier)
        except ValueError:
            return None
        for raffle in raffles:
            if raffle.id == raffle_id or raffle.telegram_chat_id == raffle_id:
                return raffle
        return None

    if len(raffles) == 1:
        return raffles[0]
    return None
