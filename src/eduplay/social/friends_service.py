"""Friendship business logic.

Rules:
- One friendship row per unordered pair of users
- Requests start ``pending``; only the addressee may accept or decline
- ``declined`` is terminal for its row; a new request replaces it
- ``blocked`` pairs cannot exchange requests
- Only ``accepted`` friendships can be removed (hard delete), by either side
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, case, delete, func, or_, select, union_all, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.config import get_settings
from eduplay.database import atomic
from eduplay.db.models import Friendship, User, UserActivity, UserStats
from eduplay.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError, translate_errors
from eduplay.notifications.service import create_notification

logger = logging.getLogger(__name__)

SEARCH_MIN_LENGTH = 2
SEARCH_MAX_LENGTH = 100


def display_name_of(user: User) -> str:
    """Public name shown to other users."""
    return user.display_name or user.full_name or "User"


def _online_cutoff() -> datetime:
    minutes = get_settings().online_window_minutes
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)


def _pair_filter(a: uuid.UUID, b: uuid.UUID):  # noqa: ANN202
    return or_(
        and_(Friendship.requester_id == a, Friendship.addressee_id == b),
        and_(Friendship.requester_id == b, Friendship.addressee_id == a),
    )


def _friend_edges():  # noqa: ANN202
    """Accepted friendships as directed (user_id, friend_id) edges, both directions."""
    accepted = Friendship.status == "accepted"
    return union_all(
        select(Friendship.requester_id.label("user_id"), Friendship.addressee_id.label("friend_id")).where(accepted),
        select(Friendship.addressee_id.label("user_id"), Friendship.requester_id.label("friend_id")).where(accepted),
    ).subquery()


async def get_friendship_between(db: AsyncSession, a: uuid.UUID, b: uuid.UUID) -> Friendship | None:
    """The friendship row for the pair, in either direction."""
    result = await db.execute(select(Friendship).where(_pair_filter(a, b)))
    return result.scalar_one_or_none()


async def _get_active_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id, User.is_active.is_(True)))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Request lifecycle
# ---------------------------------------------------------------------------


@translate_errors("send friend request")
async def send_request(db: AsyncSession, requester_id: uuid.UUID, addressee_id: uuid.UUID) -> Friendship:
    """Create a pending friend request from requester to addressee."""
    if requester_id == addressee_id:
        raise ValidationError("Cannot send a friend request to yourself")

    requester = await _get_active_user(db, requester_id)
    addressee = await _get_active_user(db, addressee_id)
    if requester is None or addressee is None:
        raise NotFoundError("User not found")

    existing = await get_friendship_between(db, requester_id, addressee_id)
    if existing is not None:
        if existing.status == "accepted":
            raise ConflictError("Already friends")
        if existing.status == "pending":
            raise ConflictError("Friend request already sent")
        if existing.status == "blocked":
            raise ForbiddenError("Cannot send a friend request to this user")

    now = datetime.now(timezone.utc)
    try:
        async with atomic(db):
            if existing is not None:
                # declined rows are history; the new request takes their place
                await db.execute(delete(Friendship).where(Friendship.id == existing.id))
            friendship = Friendship(
                requester_id=requester_id,
                addressee_id=addressee_id,
                status="pending",
                created_at=now,
                updated_at=now,
            )
            db.add(friendship)
            await db.flush()

            await create_notification(
                db,
                addressee_id,
                "friend_request",
                "New friend request",
                f"{display_name_of(requester)} sent you a friend request",
                {"friendshipId": str(friendship.id), "requesterId": str(requester_id)},
            )
    except IntegrityError as e:
        # a concurrent request for the same pair won the unique index
        raise ConflictError("Friend request already sent") from e

    logger.info("Friend request %s sent: %s -> %s", friendship.id, requester_id, addressee_id)
    return friendship


async def _get_pending_for_addressee(
    db: AsyncSession, caller_id: uuid.UUID, friendship_id: uuid.UUID
) -> Friendship:
    result = await db.execute(select(Friendship).where(Friendship.id == friendship_id))
    friendship = result.scalar_one_or_none()
    if friendship is None or friendship.status != "pending":
        raise NotFoundError("Friend request not found")
    if friendship.addressee_id != caller_id:
        raise ForbiddenError("Only the recipient can respond to this friend request")
    return friendship


async def _transition_pending(db: AsyncSession, friendship_id: uuid.UUID, **values: Any) -> None:
    """Move a pending row to a new status; NotFound if it is no longer pending."""
    result = await db.execute(
        update(Friendship)
        .where(Friendship.id == friendship_id, Friendship.status == "pending")
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("Friend request not found")


@translate_errors("accept friend request")
async def accept_request(db: AsyncSession, caller_id: uuid.UUID, friendship_id: uuid.UUID) -> Friendship:
    """Accept a pending request addressed to the caller."""
    friendship = await _get_pending_for_addressee(db, caller_id, friendship_id)
    now = datetime.now(timezone.utc)

    async with atomic(db):
        await _transition_pending(db, friendship_id, status="accepted", accepted_at=now, updated_at=now)
        addressee = await _get_active_user(db, caller_id)
        await create_notification(
            db,
            friendship.requester_id,
            "friend_request",
            "Friend request accepted",
            f"{display_name_of(addressee) if addressee else 'User'} accepted your friend request",
            {"friendshipId": str(friendship_id), "friendId": str(caller_id)},
        )

    await db.refresh(friendship)
    logger.info("Friend request %s accepted by %s", friendship_id, caller_id)
    return friendship


@translate_errors("decline friend request")
async def decline_request(db: AsyncSession, caller_id: uuid.UUID, friendship_id: uuid.UUID) -> Friendship:
    """Decline a pending request addressed to the caller."""
    friendship = await _get_pending_for_addressee(db, caller_id, friendship_id)
    await _transition_pending(db, friendship_id, status="declined", updated_at=datetime.now(timezone.utc))
    await db.flush()
    await db.refresh(friendship)
    logger.info("Friend request %s declined by %s", friendship_id, caller_id)
    return friendship


@translate_errors("remove friend")
async def remove_friend(db: AsyncSession, user_id: uuid.UUID, friend_id: uuid.UUID) -> None:
    """Delete an accepted friendship between the two users."""
    result = await db.execute(
        delete(Friendship)
        .where(_pair_filter(user_id, friend_id), Friendship.status == "accepted")
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("Friendship not found")
    await db.flush()
    logger.info("Friendship removed: %s <-> %s", user_id, friend_id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@translate_errors("fetch friends")
async def list_friends(db: AsyncSession, user_id: uuid.UUID, online_only: bool = False) -> list[dict[str, Any]]:
    """Accepted friends of the user with profile and stats.

    Sorted by name, or by most recent login when ``online_only`` is set.
    """
    cutoff = _online_cutoff()
    friend_id = case((Friendship.requester_id == user_id, Friendship.addressee_id), else_=Friendship.requester_id)
    is_online = (User.last_login > cutoff).label("is_online")

    stmt = (
        select(Friendship, User, UserStats, is_online)
        .join(User, User.id == friend_id)
        .outerjoin(UserStats, UserStats.user_id == User.id)
        .where(
            Friendship.status == "accepted",
            or_(Friendship.requester_id == user_id, Friendship.addressee_id == user_id),
        )
    )
    if online_only:
        stmt = stmt.where(User.last_login > cutoff).order_by(User.last_login.desc())
    else:
        stmt = stmt.order_by(func.lower(func.coalesce(User.display_name, User.full_name, User.email)).asc())

    result = await db.execute(stmt)
    return [
        {
            "id": user.id,
            "friendship_id": friendship.id,
            "display_name": display_name_of(user),
            "full_name": user.full_name,
            "avatar_url": user.avatar_url,
            "level": stats.level if stats else 1,
            "total_xp": stats.total_xp if stats else 0,
            "current_rank": stats.current_rank if stats else None,
            "is_online": bool(online),
            "last_login": user.last_login,
            "friends_since": friendship.accepted_at,
        }
        for friendship, user, stats, online in result.all()
    ]


async def list_online_friends(db: AsyncSession, user_id: uuid.UUID) -> list[dict[str, Any]]:
    return await list_friends(db, user_id, online_only=True)


@translate_errors("fetch pending friend requests")
async def list_pending_requests(db: AsyncSession, user_id: uuid.UUID) -> list[dict[str, Any]]:
    """Incoming pending requests, newest first."""
    result = await db.execute(
        select(Friendship, User)
        .join(User, User.id == Friendship.requester_id)
        .where(Friendship.addressee_id == user_id, Friendship.status == "pending")
        .order_by(Friendship.created_at.desc())
    )
    return [
        {
            "id": friendship.id,
            "requester_id": user.id,
            "requester_name": display_name_of(user),
            "requester_avatar": user.avatar_url,
            "created_at": friendship.created_at,
        }
        for friendship, user in result.all()
    ]


@translate_errors("fetch friend recommendations")
async def recommend(db: AsyncSession, user_id: uuid.UUID, limit: int | None = None) -> list[dict[str, Any]]:
    """Suggest users ranked by mutual friends, then total XP.

    Users already related to the caller (accepted, pending or blocked) are
    excluded. Only candidates with a mutual friend or a rank are returned.
    """
    limit = limit or get_settings().friend_recommendation_limit

    my_edges = _friend_edges()
    my_friends = select(my_edges.c.friend_id).where(my_edges.c.user_id == user_id)

    candidate_edges = _friend_edges()
    mutual = (
        select(candidate_edges.c.user_id.label("candidate_id"), func.count().label("mutual_count"))
        .where(candidate_edges.c.friend_id.in_(my_friends))
        .group_by(candidate_edges.c.user_id)
        .subquery()
    )

    related = select(
        case((Friendship.requester_id == user_id, Friendship.addressee_id), else_=Friendship.requester_id)
    ).where(
        or_(Friendship.requester_id == user_id, Friendship.addressee_id == user_id),
        Friendship.status.in_(("accepted", "pending", "blocked")),
    )

    mutual_count = func.coalesce(mutual.c.mutual_count, 0)
    result = await db.execute(
        select(User, UserStats, mutual_count.label("mutual_count"))
        .outerjoin(UserStats, UserStats.user_id == User.id)
        .outerjoin(mutual, mutual.c.candidate_id == User.id)
        .where(
            User.id != user_id,
            User.is_active.is_(True),
            User.id.not_in(related),
            or_(mutual_count > 0, UserStats.current_rank.is_not(None)),
        )
        .order_by(mutual_count.desc(), func.coalesce(UserStats.total_xp, 0).desc())
        .limit(limit)
    )
    return [
        {
            "id": user.id,
            "display_name": display_name_of(user),
            "avatar_url": user.avatar_url,
            "level": stats.level if stats else 1,
            "total_xp": stats.total_xp if stats else 0,
            "current_rank": stats.current_rank if stats else None,
            "mutual_friends_count": int(count),
            "reason": "mutual_friends" if count > 0 else "similar_rank",
        }
        for user, stats, count in result.all()
    ]


@translate_errors("search users")
async def search_users(
    db: AsyncSession,
    query: str,
    caller_id: uuid.UUID,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Case-insensitive substring search over names and email."""
    query = query.strip()
    if not SEARCH_MIN_LENGTH <= len(query) <= SEARCH_MAX_LENGTH:
        raise ValidationError(
            f"Search query must be between {SEARCH_MIN_LENGTH} and {SEARCH_MAX_LENGTH} characters"
        )
    limit = limit or get_settings().user_search_limit

    result = await db.execute(
        select(User, UserStats)
        .outerjoin(UserStats, UserStats.user_id == User.id)
        .where(
            User.id != caller_id,
            User.is_active.is_(True),
            or_(
                User.display_name.icontains(query, autoescape=True),
                User.full_name.icontains(query, autoescape=True),
                User.email.icontains(query, autoescape=True),
            ),
        )
        .order_by(func.lower(func.coalesce(User.display_name, User.full_name, User.email)))
        .limit(limit)
    )
    rows = result.all()

    hit_ids = [user.id for user, _ in rows]
    statuses: dict[uuid.UUID, str] = {}
    if hit_ids:
        friendships = await db.execute(
            select(Friendship).where(
                or_(
                    and_(Friendship.requester_id == caller_id, Friendship.addressee_id.in_(hit_ids)),
                    and_(Friendship.addressee_id == caller_id, Friendship.requester_id.in_(hit_ids)),
                )
            )
        )
        for f in friendships.scalars():
            other = f.addressee_id if f.requester_id == caller_id else f.requester_id
            statuses[other] = f.status

    return [
        {
            "id": user.id,
            "display_name": display_name_of(user),
            "full_name": user.full_name,
            "email": user.email,
            "avatar_url": user.avatar_url,
            "level": stats.level if stats else 1,
            "total_xp": stats.total_xp if stats else 0,
            "is_friend": statuses.get(user.id) == "accepted",
            "has_pending_request": statuses.get(user.id) == "pending",
        }
        for user, stats in rows
    ]


@translate_errors("fetch friend activities")
async def list_friend_activities(
    db: AsyncSession, user_id: uuid.UUID, limit: int | None = None
) -> list[dict[str, Any]]:
    """Recent activity of accepted friends, newest first."""
    settings = get_settings()
    limit = limit or settings.friend_activity_limit
    since = datetime.now(timezone.utc) - timedelta(days=settings.friend_activity_days)

    edges = _friend_edges()
    friend_ids = select(edges.c.friend_id).where(edges.c.user_id == user_id)

    result = await db.execute(
        select(UserActivity, User)
        .join(User, User.id == UserActivity.user_id)
        .where(UserActivity.user_id.in_(friend_ids), UserActivity.created_at >= since)
        .order_by(UserActivity.created_at.desc(), UserActivity.id.desc())
        .limit(limit)
    )
    return [
        {
            "id": activity.id,
            "user_id": user.id,
            "display_name": display_name_of(user),
            "avatar_url": user.avatar_url,
            "activity_type": activity.activity_type,
            "title": activity.title,
            "description": activity.description,
            "metadata": activity.activity_metadata,
            "created_at": activity.created_at,
        }
        for activity, user in result.all()
    ]
