"""Shared Redis client used for rate limiting and live notification delivery."""

from __future__ import annotations

import json
import uuid
from typing import Any

import redis.asyncio as redis

_client: redis.Redis | None = None


async def init_redis(url: str, max_connections: int = 50) -> None:
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """The Redis client; RuntimeError before ``init_redis``."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client


def get_redis_or_none() -> redis.Redis | None:
    """The Redis client, or None when Redis is not configured (tests, scripts)."""
    return _client


def user_channel(user_id: uuid.UUID | str) -> str:
    """Pub/sub channel carrying live events for one user."""
    return f"ws:user:{user_id}"


async def publish_json(client: Any, channel: str, payload: dict[str, Any]) -> int:
    """Publish ``payload`` as JSON; returns the number of receiving subscribers."""
    return await client.publish(channel, json.dumps(payload, default=str))
