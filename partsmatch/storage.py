import logging
import uuid
from datetime import datetime, timezone
from typing import Generator, Iterable, Optional

from sqlalchemy import case, create_engine, func, inspect, or_, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased, declarative_base, sessionmaker

from partsmatch.config import settings

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

REQUIRED_TABLES = ("matches", "messages")


class StoreError(Exception):
    """A read or write against the database failed. Never retried."""


def utc_now() -> str:
    """Server timestamp, ISO-8601 UTC with microseconds and Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def new_id() -> str:
    return str(uuid.uuid4())


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from partsmatch import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and the match/message tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        existing = set(inspect(engine).get_table_names())
        missing = [name for name in REQUIRED_TABLES if name not in existing]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def _commit(db: Session, action: str) -> None:
    """Commit or roll back and raise StoreError with a readable message."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to {action}: {e}")
        raise StoreError(f"Failed to {action}") from e


# =============================================================================
# Account Repository Functions
# =============================================================================

def create_user(
    db: Session,
    email: str,
    password_hash: str,
    full_name: Optional[str] = None,
    trade_type: Optional[str] = None,
):
    """
    Create a user together with its profile row.

    Returns:
        The new User, or None if the email is already registered.
    """
    from partsmatch.models import Profile, User

    logger.info(f"Creating user: email={email}")
    user = User(id=new_id(), email=email, password_hash=password_hash, created_at=utc_now())
    db.add(user)
    db.add(Profile(id=user.id, full_name=full_name, trade_type=trade_type, verified=False))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Email already registered: {email}")
        return None
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create user {email}: {e}")
        raise StoreError("Failed to create account") from e
    return user


def get_user(db: Session, user_id: str):
    from partsmatch.models import User

    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str):
    from partsmatch.models import User

    return db.query(User).filter(User.email == email).first()


def create_session(db: Session, user_id: str, token_hash: str) -> None:
    from partsmatch.models import SessionToken

    db.add(SessionToken(token_hash=token_hash, user_id=user_id, created_at=utc_now()))
    _commit(db, "create session")


def get_session_user(db: Session, token_hash: str):
    """Return the User owning the session, or None."""
    from partsmatch.models import SessionToken, User

    return (
        db.query(User)
        .join(SessionToken, SessionToken.user_id == User.id)
        .filter(SessionToken.token_hash == token_hash)
        .first()
    )


def delete_session(db: Session, token_hash: str) -> bool:
    from partsmatch.models import SessionToken

    deleted = db.query(SessionToken).filter(SessionToken.token_hash == token_hash).delete()
    _commit(db, "delete session")
    return deleted > 0


def get_profile(db: Session, user_id: str):
    from partsmatch.models import Profile

    return db.query(Profile).filter(Profile.id == user_id).first()


def update_profile(db: Session, user_id: str, full_name: Optional[str], trade_type: Optional[str]):
    """Update name and trade. The verification flag is not user-editable."""
    from partsmatch.models import Profile

    profile = get_profile(db, user_id)
    if profile is None:
        profile = Profile(id=user_id, verified=False)
        db.add(profile)
    profile.full_name = full_name
    profile.trade_type = trade_type
    _commit(db, "update profile")
    db.refresh(profile)
    return profile


# =============================================================================
# Listing Repository Functions
# =============================================================================

def create_part(db: Session, supplier_id: str, **fields):
    from partsmatch.models import Part

    part = Part(id=new_id(), supplier_id=supplier_id, created_at=utc_now(), **fields)
    db.add(part)
    _commit(db, "create part")
    db.refresh(part)
    logger.info(f"Part created: id={part.id}, supplier={supplier_id}")
    return part


def bulk_create_parts(db: Session, supplier_id: str, rows: Iterable[dict]) -> list:
    """
    Insert all rows in a single transaction.

    Either every row is stored or none is.
    """
    from partsmatch.models import Part

    created_at = utc_now()
    parts = [
        Part(id=new_id(), supplier_id=supplier_id, created_at=created_at, **row)
        for row in rows
    ]
    db.add_all(parts)
    _commit(db, "insert parts")
    for part in parts:
        db.refresh(part)
    logger.info(f"Bulk inserted {len(parts)} parts for supplier={supplier_id}")
    return parts


def create_request(db: Session, requester_id: str, **fields):
    from partsmatch.models import PartRequest

    request = PartRequest(id=new_id(), requester_id=requester_id, created_at=utc_now(), **fields)
    db.add(request)
    _commit(db, "create request")
    db.refresh(request)
    logger.info(f"Part request created: id={request.id}, requester={requester_id}")
    return request


def get_part(db: Session, part_id: str):
    from partsmatch.models import Part

    return db.query(Part).filter(Part.id == part_id).first()


def get_request(db: Session, request_id: str):
    from partsmatch.models import PartRequest

    return db.query(PartRequest).filter(PartRequest.id == request_id).first()


def browse_parts(db: Session, q: Optional[str] = None) -> list:
    """
    Available parts with the supplier's public profile.

    Returns:
        List of (Part, full_name, trade_type) rows, newest first.
    """
    from partsmatch.models import Part, Profile

    query = (
        db.query(Part, Profile.full_name, Profile.trade_type)
        .outerjoin(Profile, Profile.id == Part.supplier_id)
        .filter(Part.status == "available")
    )
    if q:
        # Case-insensitive substring search over name or category
        query = query.filter(or_(Part.part_name.ilike(f"%{q}%"), Part.category.ilike(f"%{q}%")))
    return query.order_by(Part.created_at.desc()).all()


def browse_requests(db: Session, q: Optional[str] = None) -> list:
    """Active part requests with the requester's public profile."""
    from partsmatch.models import PartRequest, Profile

    query = (
        db.query(PartRequest, Profile.full_name, Profile.trade_type)
        .outerjoin(Profile, Profile.id == PartRequest.requester_id)
        .filter(PartRequest.status == "active")
    )
    if q:
        query = query.filter(
            or_(PartRequest.part_name.ilike(f"%{q}%"), PartRequest.category.ilike(f"%{q}%"))
        )
    return query.order_by(PartRequest.created_at.desc()).all()


def list_parts_for_owner(db: Session, supplier_id: str) -> list:
    from partsmatch.models import Part

    return (
        db.query(Part)
        .filter(Part.supplier_id == supplier_id)
        .order_by(Part.created_at.desc())
        .all()
    )


def list_requests_for_owner(db: Session, requester_id: str) -> list:
    from partsmatch.models import PartRequest

    return (
        db.query(PartRequest)
        .filter(PartRequest.requester_id == requester_id)
        .order_by(PartRequest.created_at.desc())
        .all()
    )


def remove_listing(db: Session, listing, listing_type: str) -> str:
    """
    Delete a listing, or close it when a match still references it.

    Returns:
        "deleted" or "closed"
    """
    from partsmatch.models import Match

    listing_id = listing.id
    column = Match.part_id if listing_type == "part" else Match.request_id
    referenced = db.query(func.count(Match.id)).filter(column == listing_id).scalar() or 0

    if referenced:
        listing.status = "closed"
        outcome = "closed"
    else:
        db.delete(listing)
        outcome = "deleted"
    _commit(db, f"remove {listing_type}")
    logger.info(f"Listing {listing_type} {listing_id} {outcome}")
    return outcome


# =============================================================================
# Match Repository Functions
# =============================================================================

def create_match(
    db: Session,
    listing_type: str,
    listing_id: str,
    supplier_id: str,
    requester_id: str,
):
    """
    Insert a new match with both agreement flags false and status pending.

    Args:
        listing_type: "part" or "request"
        listing_id: id of the matched part or request
        supplier_id: user offering the part
        requester_id: user wanting the part
    """
    from partsmatch.models import Match

    match = Match(
        id=new_id(),
        part_id=listing_id if listing_type == "part" else None,
        request_id=listing_id if listing_type == "request" else None,
        supplier_id=supplier_id,
        requester_id=requester_id,
        supplier_agreed=False,
        requester_agreed=False,
        status="pending",
        created_at=utc_now(),
    )
    db.add(match)
    _commit(db, "create match")
    db.refresh(match)
    logger.info(f"Match created: id={match.id}, supplier={supplier_id}, requester={requester_id}")
    return match


def get_match(db: Session, match_id: str):
    from partsmatch.models import Match

    return db.query(Match).filter(Match.id == match_id).first()


def agree_match(db: Session, match_id: str, role: str):
    """
    Set the agreement flag for role and recompute status in one UPDATE.

    The CASE expression reads the other party's flag as stored at write time,
    so concurrent agreements from both parties always end in both_agreed.

    Args:
        role: "supplier" or "requester"

    Returns:
        The refreshed Match, or None if it does not exist.
    """
    from partsmatch.models import Match

    if role == "supplier":
        own_flag, other_flag = Match.supplier_agreed, Match.requester_agreed
    elif role == "requester":
        own_flag, other_flag = Match.requester_agreed, Match.supplier_agreed
    else:
        raise ValueError(f"unknown role: {role}")

    logger.info(f"Agreeing on match: id={match_id}, role={role}")
    updated = (
        db.query(Match)
        .filter(Match.id == match_id)
        .update(
            {
                own_flag: True,
                Match.status: case((other_flag == True, "both_agreed"), else_="pending"),  # noqa: E712
            },
            synchronize_session=False,
        )
    )
    _commit(db, "record agreement")
    if not updated:
        return None

    match = get_match(db, match_id)
    db.refresh(match)
    logger.info(f"Match {match_id} status after agreement: {match.status}")
    return match


def list_matches_for_user(db: Session, user_id: str) -> list:
    """
    All matches where the user is supplier or requester, newest first.

    Returns:
        List of dicts with keys: match, supplier_name, supplier_trade,
        requester_name, requester_trade, item_name
    """
    from partsmatch.models import Match, Part, PartRequest, Profile

    supplier = aliased(Profile)
    requester = aliased(Profile)

    rows = (
        db.query(
            Match,
            supplier.full_name,
            supplier.trade_type,
            requester.full_name,
            requester.trade_type,
            Part.part_name,
            PartRequest.part_name,
        )
        .outerjoin(supplier, supplier.id == Match.supplier_id)
        .outerjoin(requester, requester.id == Match.requester_id)
        .outerjoin(Part, Part.id == Match.part_id)
        .outerjoin(PartRequest, PartRequest.id == Match.request_id)
        .filter(or_(Match.supplier_id == user_id, Match.requester_id == user_id))
        .order_by(Match.created_at.desc())
        .all()
    )
    logger.debug(f"Found {len(rows)} matches for user={user_id}")

    return [
        {
            "match": row[0],
            "supplier_name": row[1],
            "supplier_trade": row[2],
            "requester_name": row[3],
            "requester_trade": row[4],
            "item_name": row[5] or row[6] or "Unknown",
        }
        for row in rows
    ]


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_message(
    db: Session,
    match_id: str,
    sender_id: str,
    receiver_id: str,
    content: str,
):
    """
    Append an immutable message with a server-assigned timestamp.

    Returns:
        The stored Message
    """
    from partsmatch.models import Message

    logger.info(f"Creating message: match={match_id}, sender={sender_id}, receiver={receiver_id}")

    message = Message(
        match_id=match_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        created_at=utc_now(),
    )
    db.add(message)
    _commit(db, "store message")
    db.refresh(message)
    logger.info(f"Message created successfully: id={message.id}")
    return message


def get_messages(db: Session, match_id: str) -> list:
    """
    Full history of a match ordered by created_at ASC, id ASC.
    """
    from partsmatch.models import Message

    messages = (
        db.query(Message)
        .filter(Message.match_id == match_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )
    logger.info(f"Retrieved {len(messages)} messages for match={match_id}")
    return messages
