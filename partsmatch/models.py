"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.

Timestamps are stored as ISO-8601 UTC strings with microsecond precision,
so lexical order equals chronological order.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, Float, ForeignKey, Integer, String, Text

from partsmatch.storage import Base


class User(Base):
    """
    Account record. Table: users
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(String, nullable=False)


class Profile(Base):
    """
    Public profile of a user; id is the user id. Table: profiles
    """
    __tablename__ = "profiles"

    id = Column(String, ForeignKey("users.id"), primary_key=True)
    full_name = Column(String, nullable=True)
    trade_type = Column(String, nullable=True)
    verified = Column(Boolean, nullable=False, default=False)


class SessionToken(Base):
    """
    Issued session. Only the SHA-256 hash of the bearer token is stored.
    Table: sessions
    """
    __tablename__ = "sessions"

    token_hash = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(String, nullable=False)


class Part(Base):
    """
    A part offered by a supplier. Table: parts
    """
    __tablename__ = "parts"

    id = Column(String, primary_key=True)
    supplier_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    part_name = Column(String, nullable=False)
    category = Column(String, nullable=False, index=True)
    condition = Column(String, nullable=False)
    price = Column(Float, nullable=True)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    status = Column(String, nullable=False, default="available", index=True)
    created_at = Column(String, nullable=False)


class PartRequest(Base):
    """
    A part wanted by a requester. Table: part_requests
    """
    __tablename__ = "part_requests"

    id = Column(String, primary_key=True)
    requester_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    part_name = Column(String, nullable=False)
    category = Column(String, nullable=False, index=True)
    condition_preference = Column(String, nullable=True)
    max_price = Column(Float, nullable=True)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active", index=True)
    created_at = Column(String, nullable=False)


class Match(Base):
    """
    Pairing of a supplier and a requester around exactly one listing.

    Table: matches
    status is 'both_agreed' iff both agreement flags are set; it is only
    written together with a flag, never on its own.
    """
    __tablename__ = "matches"
    __table_args__ = (
        CheckConstraint(
            "(part_id IS NULL) != (request_id IS NULL)",
            name="ck_matches_one_listing",
        ),
    )

    id = Column(String, primary_key=True)
    part_id = Column(String, ForeignKey("parts.id"), nullable=True)
    request_id = Column(String, ForeignKey("part_requests.id"), nullable=True)
    supplier_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    requester_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    supplier_agreed = Column(Boolean, nullable=False, default=False)
    requester_agreed = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default="pending")
    created_at = Column(String, nullable=False, index=True)


class Message(Base):
    """
    Immutable chat turn inside a match.

    Table: messages
    Ordered by (created_at, id); id is autoincrement so ties keep insertion order.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(String, ForeignKey("matches.id"), nullable=False, index=True)
    sender_id = Column(String, nullable=False)
    receiver_id = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(String, nullable=False, index=True)
