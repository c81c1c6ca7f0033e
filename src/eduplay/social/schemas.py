"""Pydantic schemas for friends and guild endpoints.

Payloads use camelCase on the wire (``CamelModel``).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from eduplay.schemas import CamelModel

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


# --- Friends ---


class FriendRequestCreate(CamelModel):
    addressee_id: uuid.UUID


class FriendshipResponse(CamelModel):
    id: uuid.UUID
    requester_id: uuid.UUID
    addressee_id: uuid.UUID
    status: str
    created_at: datetime
    accepted_at: datetime | None = None


class FriendResponse(CamelModel):
    id: uuid.UUID
    friendship_id: uuid.UUID
    display_name: str
    full_name: str | None = None
    avatar_url: str | None = None
    level: int
    total_xp: int
    current_rank: str | None = None
    is_online: bool
    last_login: datetime | None = None
    friends_since: datetime | None = None


class PendingRequestResponse(CamelModel):
    id: uuid.UUID
    requester_id: uuid.UUID
    requester_name: str
    requester_avatar: str | None = None
    created_at: datetime


class RecommendationResponse(CamelModel):
    id: uuid.UUID
    display_name: str
    avatar_url: str | None = None
    level: int
    total_xp: int
    current_rank: str | None = None
    mutual_friends_count: int
    reason: Literal["mutual_friends", "similar_rank"]


class UserSearchResult(CamelModel):
    id: uuid.UUID
    display_name: str
    full_name: str | None = None
    email: str
    avatar_url: str | None = None
    level: int
    total_xp: int
    is_friend: bool
    has_pending_request: bool


class FriendActivityResponse(CamelModel):
    id: int
    user_id: uuid.UUID
    display_name: str
    avatar_url: str | None = None
    activity_type: str
    title: str
    description: str | None = None
    metadata: dict[str, Any] = {}
    created_at: datetime


# --- Guilds ---


class GuildCreate(CamelModel):
    name: str = Field(..., min_length=3, max_length=50)
    description: str | None = Field(None, max_length=500)
    motto: str | None = Field(None, max_length=100)
    color_primary: str | None = Field(None, pattern=HEX_COLOR)
    color_secondary: str | None = Field(None, pattern=HEX_COLOR)
    avatar_url: str | None = None
    banner_url: str | None = None
    max_members: int | None = Field(None, ge=2, le=100)
    is_public: bool | None = None
    allow_join_requests: bool | None = None
    require_approval: bool | None = None


class GuildUpdate(CamelModel):
    name: str | None = Field(None, min_length=3, max_length=50)
    description: str | None = Field(None, max_length=500)
    motto: str | None = Field(None, max_length=100)
    color_primary: str | None = Field(None, pattern=HEX_COLOR)
    color_secondary: str | None = Field(None, pattern=HEX_COLOR)
    avatar_url: str | None = None
    banner_url: str | None = None
    max_members: int | None = Field(None, ge=2, le=100)
    is_public: bool | None = None
    allow_join_requests: bool | None = None
    require_approval: bool | None = None


class GuildResponse(CamelModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    motto: str | None = None
    color_primary: str
    color_secondary: str
    avatar_url: str | None = None
    banner_url: str | None = None
    creator_id: uuid.UUID
    leader_id: uuid.UUID | None = None
    join_code: str
    max_members: int
    current_members_count: int
    is_public: bool
    allow_join_requests: bool
    require_approval: bool
    total_xp: int
    total_coins: int
    modules_completed: int
    achievements_earned: int
    last_activity_at: datetime | None = None
    created_at: datetime


class GuildMemberResponse(CamelModel):
    id: uuid.UUID
    user_id: uuid.UUID
    display_name: str
    avatar_url: str | None = None
    role: str
    status: str
    joined_at: datetime
    contribution_xp: int
    contribution_coins: int


class GuildDetailResponse(GuildResponse):
    members: list[GuildMemberResponse] = []


class GuildListResponse(CamelModel):
    guilds: list[GuildResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class MembershipResponse(CamelModel):
    id: uuid.UUID
    guild_id: uuid.UUID
    user_id: uuid.UUID
    role: str
    status: str
    joined_at: datetime
    left_at: datetime | None = None
    kicked_at: datetime | None = None
    kick_reason: str | None = None


class UserGuildResponse(CamelModel):
    guild: GuildResponse
    membership: MembershipResponse


class JoinByCodeRequest(CamelModel):
    code: str = Field(..., min_length=1, max_length=32)


class RemoveMemberRequest(CamelModel):
    reason: str | None = Field(None, max_length=500)


class UpdateRoleRequest(CamelModel):
    role: Literal["admin", "member"]


class TransferOwnershipRequest(CamelModel):
    new_owner_id: uuid.UUID


class LeaderboardEntry(CamelModel):
    rank: int
    guild_id: uuid.UUID
    name: str
    avatar_url: str | None = None
    total_xp: int
    total_coins: int
    members_count: int
    achievements_earned: int
    modules_completed: int


class ChallengeCreate(CamelModel):
    title: str = Field(..., min_length=3, max_length=100)
    description: str | None = Field(None, max_length=500)
    challenge_type: Literal["xp_goal", "modules_completion", "achievement_hunt", "custom"]
    target_value: int = Field(..., ge=1)
    reward_xp: int = Field(0, ge=0)
    reward_coins: int = Field(0, ge=0)
    start_date: datetime
    end_date: datetime


class ChallengeResponse(CamelModel):
    id: uuid.UUID
    guild_id: uuid.UUID
    title: str
    description: str | None = None
    challenge_type: str
    target_value: int
    current_value: int
    reward_xp: int
    reward_coins: int
    start_date: datetime
    end_date: datetime
    is_active: bool
    is_completed: bool
    created_by: uuid.UUID
    created_at: datetime
