from dataclasses import dataclass
from typing import List

import pytest
from cryptography.fernet import Fernet

from app.db import Base, get_session, init_engine, repo
from app.services import credentials, encryption, raffle_flow
from app.services.rate_limit import RateLimiter


@dataclass
class RaffleFixture:
    raffle_id: int
    owner_id: int
    user_ids: List[int]
    member_ids: List[int]


@pytest.fixture
def engine(tmp_path):
    engine = init_engine(f"sqlite+pysqlite:///{tmp_path / 'santa.db'}")
    Base.metadata.create_all(engine)
    encryption.configure(Fernet.generate_key().decode())
    yield engine
    engine.dispose()


@pytest.fixture
def make_raffle(engine):
    counter = {"telegram_id": 1000}

    def factory(member_count: int = 3, ready: bool = True) -> RaffleFixture:
        with get_session() as session:
            users = []
            for index in range(member_count):
                counter["telegram_id"] += 1
                user = repo.upsert_user(
                    session,
                    counter["telegram_id"],
                    f"user{counter['telegram_id']}",
                    f"User {index}",
                )
                user.has_private_chat = ready
                users.append(user)

            raffle = raffle_flow.create_raffle(session, users[0], "Office party")
            for user in users[1:]:
                repo.add_member(session, raffle.id, user.id)
            members = repo.list_members(session, raffle.id)
            return RaffleFixture(
                raffle_id=raffle.id,
                owner_id=users[0].id,
                user_ids=[user.id for user in users],
                member_ids=[member.id for member in members],
            )

    return factory


@pytest.fixture
def issue_token(engine):
    def factory(user_id: int) -> str:
        with get_session() as session:
            return credentials.issue_token(session, user_id)

    return factory


@pytest.fixture
def generous_limiter():
    return RateLimiter(max_calls=1000, period_seconds=10)
