"""Friends API endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.auth.dependencies import get_current_user
from eduplay.database import get_session
from eduplay.db.models import User
from eduplay.schemas import ApiResponse, ok
from eduplay.social.friends_service import (
    accept_request,
    decline_request,
    list_friend_activities,
    list_friends,
    list_online_friends,
    list_pending_requests,
    recommend,
    remove_friend,
    search_users,
    send_request,
)
from eduplay.social.schemas import (
    FriendActivityResponse,
    FriendRequestCreate,
    FriendResponse,
    FriendshipResponse,
    PendingRequestResponse,
    RecommendationResponse,
    UserSearchResult,
)

router = APIRouter(prefix="/api/v1/friends", tags=["Friends"])


@router.get("", response_model=ApiResponse[list[FriendResponse]])
async def get_friends(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """List the caller's accepted friends."""
    friends = await list_friends(db, user.id)
    return ok([FriendResponse.model_validate(f) for f in friends])


@router.get("/online", response_model=ApiResponse[list[FriendResponse]])
async def get_online_friends(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    friends = await list_online_friends(db, user.id)
    return ok([FriendResponse.model_validate(f) for f in friends])


@router.get("/requests", response_model=ApiResponse[list[PendingRequestResponse]])
async def get_pending_requests(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    requests = await list_pending_requests(db, user.id)
    return ok([PendingRequestResponse.model_validate(r) for r in requests])


@router.get("/recommendations", response_model=ApiResponse[list[RecommendationResponse]])
async def get_recommendations(
    limit: int | None = Query(None, ge=1, le=50),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    recommendations = await recommend(db, user.id, limit)
    return ok([RecommendationResponse.model_validate(r) for r in recommendations])


@router.get("/activities", response_model=ApiResponse[list[FriendActivityResponse]])
async def get_friend_activities(
    limit: int | None = Query(None, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    activities = await list_friend_activities(db, user.id, limit)
    return ok([FriendActivityResponse.model_validate(a) for a in activities])


@router.get("/search", response_model=ApiResponse[list[UserSearchResult]])
async def search(
    q: str = Query(...),
    limit: int | None = Query(None, ge=1, le=50),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Search users by name or email."""
    results = await search_users(db, q, user.id, limit)
    return ok([UserSearchResult.model_validate(r) for r in results])


@router.post("/request", status_code=201, response_model=ApiResponse[FriendshipResponse])
async def create_friend_request(
    body: FriendRequestCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    friendship = await send_request(db, user.id, body.addressee_id)
    await db.commit()
    return ok(FriendshipResponse.model_validate(friendship), message="Friend request sent")


@router.post("/{friendship_id}/accept", response_model=ApiResponse[FriendshipResponse])
async def accept_friend_request(
    friendship_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    friendship = await accept_request(db, user.id, friendship_id)
    await db.commit()
    return ok(FriendshipResponse.model_validate(friendship), message="Friend request accepted")


@router.post("/{friendship_id}/decline", response_model=ApiResponse[FriendshipResponse])
async def decline_friend_request(
    friendship_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    friendship = await decline_request(db, user.id, friendship_id)
    await db.commit()
    return ok(FriendshipResponse.model_validate(friendship), message="Friend request declined")


@router.delete("/{friend_id}", response_model=ApiResponse[None])
async def delete_friend(
    friend_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Remove an accepted friend (``friend_id`` is the other user's id)."""
    await remove_friend(db, user.id, friend_id)
    await db.commit()
    return ok(None, message="Friend removed")
