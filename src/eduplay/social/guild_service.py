"""Guild business logic.

Rules:
- 2..100 members per guild (default 20); the owner counts toward the cap
- Exactly one owner; the owner cannot leave without transferring ownership
- Only the owner changes roles; owners and admins remove members,
  admins cannot remove other admins
- Membership rows are never reactivated: ``left``, ``kicked`` and
  ``inactive`` are terminal and re-joining inserts a new row
- ``current_members_count`` is maintained here, in the same transaction as
  the membership change, with the guild row locked
- Deleting a guild is a soft delete; deleted guilds are invisible everywhere
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.config import get_settings
from eduplay.database import atomic
from eduplay.db.models import Guild, GuildChallenge, GuildMember, User
from eduplay.db.statements import active_guilds
from eduplay.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError, translate_errors
from eduplay.social.friends_service import display_name_of
from eduplay.social.join_codes import generate_unique_join_code, normalize_join_code

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 50
MIN_MEMBERS = 2
MAX_MEMBERS = 100
MANAGER_ROLES = frozenset({"owner", "admin"})
ASSIGNABLE_ROLES = frozenset({"admin", "member"})

# Fields an owner may change through update_guild
UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "motto",
    "color_primary",
    "color_secondary",
    "avatar_url",
    "banner_url",
    "max_members",
    "is_public",
    "allow_join_requests",
    "require_approval",
})


def _validate_name(name: str) -> str:
    name = name.strip()
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ValidationError(f"Guild name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters")
    return name


def _validate_max_members(max_members: int) -> int:
    if not MIN_MEMBERS <= max_members <= MAX_MEMBERS:
        raise ValidationError(f"maxMembers must be between {MIN_MEMBERS} and {MAX_MEMBERS}")
    return max_members


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_active_guild(db: AsyncSession, guild_id: uuid.UUID) -> Guild:
    """Get a guild that has not been deleted, or raise NotFoundError."""
    result = await db.execute(active_guilds().where(Guild.id == guild_id))
    guild = result.scalar_one_or_none()
    if guild is None:
        raise NotFoundError("Guild not found")
    return guild


async def _lock_guild(db: AsyncSession, guild_id: uuid.UUID) -> Guild:
    """Read the guild row FOR UPDATE, refreshing any stale copy in the session."""
    result = await db.execute(
        active_guilds()
        .where(Guild.id == guild_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    guild = result.scalar_one_or_none()
    if guild is None:
        raise NotFoundError("Guild not found")
    return guild


async def get_active_membership(db: AsyncSession, guild_id: uuid.UUID, user_id: uuid.UUID) -> GuildMember | None:
    result = await db.execute(
        select(GuildMember).where(
            GuildMember.guild_id == guild_id,
            GuildMember.user_id == user_id,
            GuildMember.status == "active",
        )
    )
    return result.scalar_one_or_none()


async def _require_role(
    db: AsyncSession, guild_id: uuid.UUID, user_id: uuid.UUID, roles: frozenset[str], message: str
) -> GuildMember:
    membership = await get_active_membership(db, guild_id, user_id)
    if membership is None or membership.role not in roles:
        raise ForbiddenError(message)
    return membership


async def _add_membership(db: AsyncSession, guild_id: uuid.UUID, user_id: uuid.UUID, role: str) -> GuildMember:
    now = datetime.now(timezone.utc)
    member = GuildMember(
        guild_id=guild_id,
        user_id=user_id,
        role=role,
        status="active",
        joined_at=now,
        updated_at=now,
    )
    db.add(member)
    await db.flush()
    return member


# ---------------------------------------------------------------------------
# Guild lifecycle
# ---------------------------------------------------------------------------


@translate_errors("create guild")
async def create_guild(
    db: AsyncSession,
    owner_id: uuid.UUID,
    data: dict[str, Any],
    tenant_id: uuid.UUID | None = None,
) -> Guild:
    """Create a guild; the creator becomes its owner and first member."""
    name = _validate_name(data.get("name") or "")
    max_members = data.get("max_members")
    max_members = (
        _validate_max_members(max_members) if max_members is not None else get_settings().default_guild_max_members
    )
    now = datetime.now(timezone.utc)

    async with atomic(db):
        guild = Guild(
            tenant_id=tenant_id,
            name=name,
            creator_id=owner_id,
            leader_id=owner_id,
            join_code=await generate_unique_join_code(db),
            max_members=max_members,
            current_members_count=1,
            last_activity_at=now,
            created_at=now,
            updated_at=now,
        )
        for field in UPDATABLE_FIELDS - {"name", "max_members"}:
            if data.get(field) is not None:
                setattr(guild, field, data[field])
        db.add(guild)
        await db.flush()

        await _add_membership(db, guild.id, owner_id, "owner")

    logger.info("Guild created: %s (id=%s, owner=%s)", name, guild.id, owner_id)
    return guild


@translate_errors("update guild")
async def update_guild(
    db: AsyncSession, guild_id: uuid.UUID, owner_id: uuid.UUID, changes: dict[str, Any]
) -> Guild:
    """Apply owner edits to a guild.

    A lowered ``max_members`` is checked against the locked row's member count.
    """
    await get_active_guild(db, guild_id)
    await _require_role(db, guild_id, owner_id, frozenset({"owner"}), "Only the guild owner can update the guild")

    changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS and v is not None}
    if "name" in changes:
        changes["name"] = _validate_name(changes["name"])
    if "max_members" in changes:
        _validate_max_members(changes["max_members"])

    async with atomic(db):
        guild = await _lock_guild(db, guild_id)
        if "max_members" in changes and changes["max_members"] < guild.current_members_count:
            raise ValidationError("maxMembers cannot be lower than the current member count")

        for field, value in changes.items():
            setattr(guild, field, value)
        guild.updated_at = datetime.now(timezone.utc)
        await db.flush()

    logger.info("Guild %s updated by %s: %s", guild_id, owner_id, sorted(changes))
    return guild


@translate_errors("delete guild")
async def delete_guild(db: AsyncSession, guild_id: uuid.UUID, owner_id: uuid.UUID) -> None:
    """Soft-delete a guild and close every active membership."""
    await get_active_guild(db, guild_id)
    await _require_role(db, guild_id, owner_id, frozenset({"owner"}), "Only the guild owner can delete the guild")

    now = datetime.now(timezone.utc)
    async with atomic(db):
        guild = await _lock_guild(db, guild_id)
        await db.execute(
            update(GuildMember)
            .where(GuildMember.guild_id == guild_id, GuildMember.status == "active")
            .values(status="inactive", left_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        guild.is_active = False
        guild.current_members_count = 0
        guild.updated_at = now
        await db.flush()

    logger.info("Guild %s deleted by %s", guild_id, owner_id)


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


@translate_errors("join guild")
async def join_guild(db: AsyncSession, guild_id: uuid.UUID, user_id: uuid.UUID) -> GuildMember:
    """Join a guild as a regular member.

    The capacity check, the insert and the counter update run in one
    transaction holding the guild row lock.
    """
    async with atomic(db):
        guild = await _lock_guild(db, guild_id)
        if guild.current_members_count >= guild.max_members:
            raise ConflictError("Guild is full", code="GUILD_FULL")
        if await get_active_membership(db, guild_id, user_id) is not None:
            raise ConflictError("Already a member of this guild", code="ALREADY_MEMBER")

        member = await _add_membership(db, guild_id, user_id, "member")

        now = datetime.now(timezone.utc)
        guild.current_members_count += 1
        guild.last_activity_at = now
        guild.updated_at = now
        await db.flush()

    logger.info("User %s joined guild %s (%d/%d)", user_id, guild_id, guild.current_members_count, guild.max_members)
    return member


@translate_errors("join guild")
async def join_guild_by_code(db: AsyncSession, join_code: str, user_id: uuid.UUID) -> GuildMember:
    """Join the active guild with this join code (case-insensitive)."""
    code = normalize_join_code(join_code)
    result = await db.execute(active_guilds().where(Guild.join_code == code))
    guild = result.scalar_one_or_none()
    if guild is None:
        raise NotFoundError("Invalid join code")
    return await join_guild(db, guild.id, user_id)


@translate_errors("leave guild")
async def leave_guild(db: AsyncSession, guild_id: uuid.UUID, user_id: uuid.UUID) -> None:
    """Leave a guild. The owner must transfer ownership first."""
    async with atomic(db):
        guild = await _lock_guild(db, guild_id)
        membership = await get_active_membership(db, guild_id, user_id)
        if membership is None:
            raise NotFoundError("Not a member of this guild")
        if membership.role == "owner":
            raise ConflictError(
                "Guild owner must transfer ownership before leaving", code="OWNER_CANNOT_LEAVE"
            )

        now = datetime.now(timezone.utc)
        membership.status = "left"
        membership.left_at = now
        membership.updated_at = now
        guild.current_members_count = max(0, guild.current_members_count - 1)
        guild.updated_at = now
        await db.flush()

    logger.info("User %s left guild %s", user_id, guild_id)


@translate_errors("remove guild member")
async def remove_member(
    db: AsyncSession,
    guild_id: uuid.UUID,
    acting_user_id: uuid.UUID,
    target_user_id: uuid.UUID,
    reason: str | None = None,
) -> GuildMember:
    """Kick a member. Owners kick anyone but themselves; admins kick plain members."""
    async with atomic(db):
        guild = await _lock_guild(db, guild_id)
        actor = await _require_role(
            db, guild_id, acting_user_id, MANAGER_ROLES, "Only guild owners and admins can remove members"
        )
        target = await get_active_membership(db, guild_id, target_user_id)
        if target is None:
            raise NotFoundError("Member not found")
        if target.role == "owner":
            raise ForbiddenError("Cannot remove the guild owner")
        if actor.role == "admin" and target.role == "admin":
            raise ForbiddenError("Admins cannot remove other admins")

        now = datetime.now(timezone.utc)
        target.status = "kicked"
        target.kicked_at = now
        target.kick_reason = reason
        target.updated_at = now
        guild.current_members_count = max(0, guild.current_members_count - 1)
        guild.updated_at = now
        await db.flush()

    logger.info("User %s removed from guild %s by %s", target_user_id, guild_id, acting_user_id)
    return target


@translate_errors("update member role")
async def update_member_role(
    db: AsyncSession,
    guild_id: uuid.UUID,
    owner_id: uuid.UUID,
    target_user_id: uuid.UUID,
    new_role: str,
) -> GuildMember:
    """Promote or demote a member between ``admin`` and ``member``."""
    if new_role not in ASSIGNABLE_ROLES:
        raise ValidationError("Role must be 'admin' or 'member'")

    await get_active_guild(db, guild_id)
    await _require_role(db, guild_id, owner_id, frozenset({"owner"}), "Only the guild owner can change roles")
    target = await get_active_membership(db, guild_id, target_user_id)
    if target is None:
        raise NotFoundError("Member not found")
    if target.role == "owner":
        raise ForbiddenError("Cannot change the owner's role; transfer ownership instead")

    target.role = new_role
    target.updated_at = datetime.now(timezone.utc)
    await db.flush()

    logger.info("Guild %s: %s is now %s", guild_id, target_user_id, new_role)
    return target


@translate_errors("transfer guild ownership")
async def transfer_ownership(
    db: AsyncSession,
    guild_id: uuid.UUID,
    current_owner_id: uuid.UUID,
    new_owner_id: uuid.UUID,
) -> Guild:
    """Hand the owner role to another active member; the old owner becomes an admin."""
    if current_owner_id == new_owner_id:
        raise ValidationError("You already own this guild")

    async with atomic(db):
        guild = await _lock_guild(db, guild_id)
        current = await _require_role(
            db, guild_id, current_owner_id, frozenset({"owner"}), "Only the guild owner can transfer ownership"
        )
        successor = await get_active_membership(db, guild_id, new_owner_id)
        if successor is None:
            raise NotFoundError("Member not found")

        now = datetime.now(timezone.utc)
        current.role = "admin"
        current.updated_at = now
        # demote first; never two owner rows at a flush
        await db.flush()
        successor.role = "owner"
        successor.updated_at = now
        guild.leader_id = new_owner_id
        guild.updated_at = now
        await db.flush()

    logger.info("Guild %s ownership transferred %s -> %s", guild_id, current_owner_id, new_owner_id)
    return guild


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------


@translate_errors("fetch guild members")
async def list_members(db: AsyncSession, guild_id: uuid.UUID) -> list[dict[str, Any]]:
    """Active members: owner, admins, members; then contribution XP."""
    await get_active_guild(db, guild_id)
    role_order = case({"owner": 0, "admin": 1}, value=GuildMember.role, else_=2)
    result = await db.execute(
        select(GuildMember, User)
        .join(User, User.id == GuildMember.user_id)
        .where(GuildMember.guild_id == guild_id, GuildMember.status == "active")
        .order_by(role_order, GuildMember.contribution_xp.desc(), GuildMember.joined_at.asc())
    )
    return [
        {
            "id": member.id,
            "user_id": user.id,
            "display_name": display_name_of(user),
            "avatar_url": user.avatar_url,
            "role": member.role,
            "status": member.status,
            "joined_at": member.joined_at,
            "contribution_xp": member.contribution_xp,
            "contribution_coins": member.contribution_coins,
        }
        for member, user in result.all()
    ]


@translate_errors("fetch guild")
async def get_guild(db: AsyncSession, guild_id: uuid.UUID) -> tuple[Guild, list[dict[str, Any]]]:
    guild = await get_active_guild(db, guild_id)
    members = await list_members(db, guild_id)
    return guild, members


@translate_errors("fetch user guild")
async def get_user_guild(db: AsyncSession, user_id: uuid.UUID) -> tuple[Guild, GuildMember] | None:
    """The user's most recently joined active guild, if any."""
    result = await db.execute(
        active_guilds()
        .add_columns(GuildMember)
        .join(GuildMember, GuildMember.guild_id == Guild.id)
        .where(
            GuildMember.user_id == user_id,
            GuildMember.status == "active",
        )
        .order_by(GuildMember.joined_at.desc())
        .limit(1)
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


@translate_errors("list guilds")
async def list_all(
    db: AsyncSession,
    page: int = 1,
    limit: int = 20,
    is_public: bool | None = None,
) -> tuple[list[Guild], int, int]:
    """Paginated guild list, biggest XP first. Returns (guilds, total, total_pages)."""
    stmt = active_guilds()
    if is_public is not None:
        stmt = stmt.where(Guild.is_public.is_(is_public))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
    result = await db.execute(
        stmt.order_by(Guild.total_xp.desc(), Guild.created_at.asc()).offset((page - 1) * limit).limit(limit)
    )
    total_pages = math.ceil(total / limit) if total else 0
    return list(result.scalars().all()), total, total_pages


async def list_public(db: AsyncSession, page: int = 1, limit: int = 20) -> tuple[list[Guild], int, int]:
    return await list_all(db, page, limit, is_public=True)


@translate_errors("search guilds")
async def search_guilds(db: AsyncSession, query: str, limit: int | None = None) -> list[Guild]:
    """Public guilds whose name or description contains the query."""
    query = query.strip()
    if not 2 <= len(query) <= 100:
        raise ValidationError("Search query must be between 2 and 100 characters")
    limit = limit or get_settings().guild_search_limit

    result = await db.execute(
        active_guilds()
        .where(
            Guild.is_public.is_(True),
            or_(
                Guild.name.icontains(query, autoescape=True),
                Guild.description.icontains(query, autoescape=True),
            ),
        )
        .order_by(Guild.total_xp.desc(), Guild.name.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


@translate_errors("fetch guild leaderboard")
async def leaderboard(db: AsyncSession, limit: int | None = None) -> list[dict[str, Any]]:
    """Public guilds ranked by total XP."""
    limit = limit or get_settings().guild_leaderboard_limit
    ordering = (Guild.total_xp.desc(), Guild.created_at.asc())
    rank = func.row_number().over(order_by=ordering).label("rank")

    result = await db.execute(
        active_guilds().where(Guild.is_public.is_(True)).add_columns(rank).order_by(*ordering).limit(limit)
    )
    return [
        {
            "rank": position,
            "guild_id": guild.id,
            "name": guild.name,
            "avatar_url": guild.avatar_url,
            "total_xp": guild.total_xp,
            "total_coins": guild.total_coins,
            "members_count": guild.current_members_count,
            "achievements_earned": guild.achievements_earned,
            "modules_completed": guild.modules_completed,
        }
        for guild, position in result.all()
    ]


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


@translate_errors("create guild challenge")
async def create_challenge(
    db: AsyncSession, guild_id: uuid.UUID, creator_id: uuid.UUID, data: dict[str, Any]
) -> GuildChallenge:
    """Create a challenge. Owner or admin only; the window must end in the future."""
    await get_active_guild(db, guild_id)
    await _require_role(db, guild_id, creator_id, MANAGER_ROLES, "Only guild owners and admins can create challenges")

    start_date = _as_utc(data["start_date"])
    end_date = _as_utc(data["end_date"])
    if end_date <= start_date:
        raise ValidationError("endDate must be after startDate")
    if end_date <= datetime.now(timezone.utc):
        raise ValidationError("endDate must be in the future")

    challenge = GuildChallenge(
        guild_id=guild_id,
        title=data["title"],
        description=data.get("description"),
        challenge_type=data["challenge_type"],
        target_value=data["target_value"],
        current_value=0,
        reward_xp=data.get("reward_xp") or 0,
        reward_coins=data.get("reward_coins") or 0,
        start_date=start_date,
        end_date=end_date,
        is_active=True,
        is_completed=False,
        created_by=creator_id,
        created_at=datetime.now(timezone.utc),
    )
    db.add(challenge)
    await db.flush()

    logger.info("Challenge %s created in guild %s by %s", challenge.id, guild_id, creator_id)
    return challenge


@translate_errors("fetch guild challenges")
async def list_challenges(db: AsyncSession, guild_id: uuid.UUID, active_only: bool = False) -> list[GuildChallenge]:
    await get_active_guild(db, guild_id)
    stmt = select(GuildChallenge).where(GuildChallenge.guild_id == guild_id)
    if active_only:
        stmt = stmt.where(GuildChallenge.is_active.is_(True))
    result = await db.execute(stmt.order_by(GuildChallenge.end_date.asc()))
    return list(result.scalars().all())
