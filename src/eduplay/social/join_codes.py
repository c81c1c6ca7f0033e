"""Join code generation for guilds.

Codes are 8 characters from an alphabet without look-alike characters
(no 0/O, 1/I), generated server-side with a cryptographic random source.
"""

from __future__ import annotations

import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.db.models import Guild

JOIN_CODE_CHARSET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
JOIN_CODE_LENGTH = 8


def generate_join_code() -> str:
    """Generate a cryptographically random 8-character join code."""
    return "".join(secrets.choice(JOIN_CODE_CHARSET) for _ in range(JOIN_CODE_LENGTH))


def normalize_join_code(code: str) -> str:
    """Normalize a join code to uppercase for case-insensitive lookup."""
    return code.strip().upper()


async def generate_unique_join_code(db: AsyncSession) -> str:
    """Generate a join code that doesn't already exist in the database."""
    for _ in range(10):
        code = generate_join_code()
        existing = await db.execute(select(Guild.id).where(Guild.join_code == code))
        if existing.scalar_one_or_none() is None:
            return code
    raise RuntimeError("Failed to generate unique join code after 10 attempts")
