"""Guild API endpoints.

Read views are public; every mutation needs an authenticated caller.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.auth.dependencies import get_current_user
from eduplay.database import get_session
from eduplay.db.models import User
from eduplay.schemas import ApiResponse, ok
from eduplay.social.guild_service import (
    create_challenge,
    create_guild,
    delete_guild,
    get_guild,
    get_user_guild,
    join_guild,
    join_guild_by_code,
    leaderboard,
    leave_guild,
    list_all,
    list_challenges,
    list_members,
    remove_member,
    search_guilds,
    transfer_ownership,
    update_guild,
    update_member_role,
)
from eduplay.social.schemas import (
    ChallengeCreate,
    ChallengeResponse,
    GuildCreate,
    GuildDetailResponse,
    GuildListResponse,
    GuildMemberResponse,
    GuildResponse,
    GuildUpdate,
    JoinByCodeRequest,
    LeaderboardEntry,
    MembershipResponse,
    TransferOwnershipRequest,
    UpdateRoleRequest,
    UserGuildResponse,
)

router = APIRouter(prefix="/api/v1/guilds", tags=["Guilds"])


# ── Public views ──


@router.get("", response_model=ApiResponse[GuildListResponse])
async def get_guilds(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    is_public: bool | None = Query(None, alias="isPublic"),
    db: AsyncSession = Depends(get_session),
):
    """List guilds (paginated)."""
    guilds, total, total_pages = await list_all(db, page, limit, is_public)
    return ok(
        GuildListResponse(
            guilds=[GuildResponse.model_validate(g) for g in guilds],
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages,
        )
    )


@router.get("/search", response_model=ApiResponse[list[GuildResponse]])
async def search(
    q: str = Query(...),
    limit: int | None = Query(None, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    guilds = await search_guilds(db, q, limit)
    return ok([GuildResponse.model_validate(g) for g in guilds])


@router.get("/leaderboard", response_model=ApiResponse[list[LeaderboardEntry]])
async def get_leaderboard(
    limit: int | None = Query(None, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    entries = await leaderboard(db, limit)
    return ok([LeaderboardEntry.model_validate(e) for e in entries])


@router.get("/user/{user_id}", response_model=ApiResponse[UserGuildResponse | None])
async def get_guild_of_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
):
    """The guild a user currently belongs to (``data`` is null if none)."""
    found = await get_user_guild(db, user_id)
    if found is None:
        return ok(None)
    guild, membership = found
    return ok(
        UserGuildResponse(
            guild=GuildResponse.model_validate(guild),
            membership=MembershipResponse.model_validate(membership),
        )
    )


@router.get("/{guild_id}", response_model=ApiResponse[GuildDetailResponse])
async def get_guild_detail(
    guild_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
):
    guild, members = await get_guild(db, guild_id)
    detail = GuildDetailResponse.model_validate(guild)
    detail.members = [GuildMemberResponse.model_validate(m) for m in members]
    return ok(detail)


@router.get("/{guild_id}/members", response_model=ApiResponse[list[GuildMemberResponse]])
async def get_members(
    guild_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
):
    members = await list_members(db, guild_id)
    return ok([GuildMemberResponse.model_validate(m) for m in members])


@router.get("/{guild_id}/challenges", response_model=ApiResponse[list[ChallengeResponse]])
async def get_challenges(
    guild_id: uuid.UUID,
    active_only: bool = Query(False, alias="activeOnly"),
    db: AsyncSession = Depends(get_session),
):
    challenges = await list_challenges(db, guild_id, active_only)
    return ok([ChallengeResponse.model_validate(c) for c in challenges])


# ── Guild lifecycle ──


@router.post("", status_code=201, response_model=ApiResponse[GuildResponse])
async def create(
    body: GuildCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Create a guild owned by the caller."""
    guild = await create_guild(db, user.id, body.model_dump(exclude_unset=True), tenant_id=user.tenant_id)
    await db.commit()
    return ok(GuildResponse.model_validate(guild), message="Guild created")


@router.put("/{guild_id}", response_model=ApiResponse[GuildResponse])
async def update(
    guild_id: uuid.UUID,
    body: GuildUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    guild = await update_guild(db, guild_id, user.id, body.model_dump(exclude_unset=True))
    await db.commit()
    return ok(GuildResponse.model_validate(guild), message="Guild updated")


@router.delete("/{guild_id}", response_model=ApiResponse[None])
async def delete(
    guild_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    await delete_guild(db, guild_id, user.id)
    await db.commit()
    return ok(None, message="Guild deleted")


# ── Membership ──


@router.post("/join-by-code", response_model=ApiResponse[MembershipResponse])
async def join_by_code(
    body: JoinByCodeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    membership = await join_guild_by_code(db, body.code, user.id)
    await db.commit()
    return ok(MembershipResponse.model_validate(membership), message="Joined guild")


@router.post("/{guild_id}/join", response_model=ApiResponse[MembershipResponse])
async def join(
    guild_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    membership = await join_guild(db, guild_id, user.id)
    await db.commit()
    return ok(MembershipResponse.model_validate(membership), message="Joined guild")


@router.post("/{guild_id}/leave", response_model=ApiResponse[None])
async def leave(
    guild_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    await leave_guild(db, guild_id, user.id)
    await db.commit()
    return ok(None, message="Left guild")


@router.delete("/{guild_id}/members/{member_id}", response_model=ApiResponse[MembershipResponse])
async def kick(
    guild_id: uuid.UUID,
    member_id: uuid.UUID,
    reason: str | None = Query(None, max_length=500),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Remove a member (``member_id`` is the member's user id)."""
    membership = await remove_member(db, guild_id, user.id, member_id, reason)
    await db.commit()
    return ok(MembershipResponse.model_validate(membership), message="Member removed")


@router.patch("/{guild_id}/members/{member_id}/role", response_model=ApiResponse[MembershipResponse])
async def change_role(
    guild_id: uuid.UUID,
    member_id: uuid.UUID,
    body: UpdateRoleRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    membership = await update_member_role(db, guild_id, user.id, member_id, body.role)
    await db.commit()
    return ok(MembershipResponse.model_validate(membership), message="Member role updated")


@router.post("/{guild_id}/transfer-ownership", response_model=ApiResponse[GuildResponse])
async def transfer(
    guild_id: uuid.UUID,
    body: TransferOwnershipRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    guild = await transfer_ownership(db, guild_id, user.id, body.new_owner_id)
    await db.commit()
    return ok(GuildResponse.model_validate(guild), message="Ownership transferred")


# ── Challenges ──


@router.post("/{guild_id}/challenges", status_code=201, response_model=ApiResponse[ChallengeResponse])
async def add_challenge(
    guild_id: uuid.UUID,
    body: ChallengeCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    challenge = await create_challenge(db, guild_id, user.id, body.model_dump())
    await db.commit()
    return ok(ChallengeResponse.model_validate(challenge), message="Challenge created")
