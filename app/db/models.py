from __future__ import annotations

import enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class RaffleStatus(str, enum.Enum):
    OPEN = "open"
    DRAWN = "drawn"


class ChatRole(str, enum.Enum):
    SANTA = "santa"
    GIFTEE = "giftee"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    telegram_id = Column(BigInteger, unique=True, nullable=False, index=True)
    telegram_username = Column(String, nullable=True)
    display_name = Column(String, nullable=True)
    has_private_chat = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    memberships = relationship("Member", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return (
            "<User(id={0}, telegram_id={1}, username={2}, has_private_chat={3})>"
        ).format(self.id, self.telegram_id, self.telegram_username, self.has_private_chat)


class Raffle(Base):
    __tablename__ = "raffles"

    id = Column(Integer, primary_key=True)
    telegram_chat_id = Column(BigInteger, unique=True, nullable=True, index=True)
    title = Column(String, nullable=True)
    owner_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(
        Enum(RaffleStatus, name="raffle_status"),
        nullable=False,
        default=RaffleStatus.OPEN,
        server_default=RaffleStatus.OPEN.value,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    drawn_at = Column(DateTime(timezone=True), nullable=True)

    owner = relationship("User", foreign_keys=[owner_user_id])
    members = relationship(
        "Member",
        back_populates="raffle",
        cascade="all, delete-orphan",
        order_by="Member.id",
    )
    exclusions = relationship("Exclusion", back_populates="raffle", cascade="all, delete-orphan")
    assignments = relationship("Assignment", back_populates="raffle", cascade="all, delete-orphan")
    messages = relationship(
        "ChatMessage", back_populates="raffle", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_drawn(self) -> bool:
        return self.status == RaffleStatus.DRAWN

    def __repr__(self) -> str:
        return f"<Raffle(id={self.id}, chat={self.telegram_chat_id}, status={self.status})>"


class Member(Base):
    __tablename__ = "members"

    id = Column(Integer, primary_key=True)
    raffle_id = Column(Integer, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    raffle = relationship("Raffle", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("raffle_id", "user_id", name="uq_members_raffle_user"),
    )

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, raffle_id={self.raffle_id}, user_id={self.user_id})>"


class Exclusion(Base):
    __tablename__ = "exclusions"

    id = Column(Integer, primary_key=True)
    raffle_id = Column(Integer, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False)
    # Stored with member_a_id < member_b_id.
    member_a_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    member_b_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    raffle = relationship("Raffle", back_populates="exclusions")
    member_a = relationship("Member", foreign_keys=[member_a_id])
    member_b = relationship("Member", foreign_keys=[member_b_id])

    __table_args__ = (
        UniqueConstraint("raffle_id", "member_a_id", "member_b_id", name="uq_exclusions_pair"),
        CheckConstraint("member_a_id < member_b_id", name="ck_exclusions_ordered"),
    )


class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True)
    raffle_id = Column(Integer, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False)
    giver_member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    receiver_member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    raffle = relationship("Raffle", back_populates="assignments")
    giver = relationship("Member", foreign_keys=[giver_member_id])
    receiver = relationship("Member", foreign_keys=[receiver_member_id])

    __table_args__ = (
        UniqueConstraint("raffle_id", "giver_member_id", name="uq_assignments_raffle_giver"),
        UniqueConstraint("raffle_id", "receiver_member_id", name="uq_assignments_raffle_receiver"),
        CheckConstraint("giver_member_id <> receiver_member_id", name="ck_assignments_no_self"),
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True)
    raffle_id = Column(Integer, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False)
    sender_role = Column(Enum(ChatRole, name="chat_role"), nullable=False)
    santa_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    giftee_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    raffle = relationship("Raffle", back_populates="messages")

    def __repr__(self) -> str:
        return (
            f"<ChatMessage(id={self.id}, raffle_id={self.raffle_id}, "
            f"santa={self.santa_id}, giftee={self.giftee_id}, role={self.sender_role})>"
        )


class AccessToken(Base):
    __tablename__ = "access_tokens"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token = Column(String, nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User")
