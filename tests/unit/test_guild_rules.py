"""Unit tests for guild membership rules, capacity and lifecycle."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.db.models import Guild, GuildMember
from eduplay.errors import ConflictError, ForbiddenError, InternalError, NotFoundError, ValidationError
from eduplay.social import guild_service
from eduplay.social.guild_service import (
    create_challenge,
    create_guild,
    delete_guild,
    get_active_guild,
    get_active_membership,
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
from eduplay.social.join_codes import JOIN_CODE_CHARSET, JOIN_CODE_LENGTH


async def _membership_statuses(db: AsyncSession, guild_id, user_id) -> list[str]:
    result = await db.execute(
        select(GuildMember.status)
        .where(GuildMember.guild_id == guild_id, GuildMember.user_id == user_id)
        .order_by(GuildMember.joined_at)
    )
    return list(result.scalars().all())


async def _guild_with_members(db: AsyncSession, make_user, count: int, **data):
    owner = await make_user("Owner")
    guild = await create_guild(db, owner.id, {"name": "Guild", **data})
    members = []
    for i in range(count):
        user = await make_user(f"Member {i}")
        await join_guild(db, guild.id, user.id)
        members.append(user)
    return guild, owner, members


class TestCreateGuild:
    @pytest.mark.asyncio
    async def test_creator_is_owner_and_counted(self, db_session: AsyncSession, make_user):
        owner = await make_user("Owner")

        guild = await create_guild(db_session, owner.id, {"name": "  Team A  "})

        assert guild.name == "Team A"
        assert guild.current_members_count == 1
        assert guild.max_members == 20
        assert guild.leader_id == owner.id
        assert guild.creator_id == owner.id
        assert len(guild.join_code) == JOIN_CODE_LENGTH
        assert set(guild.join_code) <= set(JOIN_CODE_CHARSET)
        membership = await get_active_membership(db_session, guild.id, owner.id)
        assert membership is not None
        assert membership.role == "owner"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["ab", "x" * 51, "   "])
    async def test_invalid_name(self, db_session: AsyncSession, make_user, name):
        owner = await make_user("Owner")
        with pytest.raises(ValidationError, match="Guild name"):
            await create_guild(db_session, owner.id, {"name": name})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_members", [1, 101])
    async def test_invalid_capacity(self, db_session: AsyncSession, make_user, max_members):
        owner = await make_user("Owner")
        with pytest.raises(ValidationError, match="maxMembers"):
            await create_guild(db_session, owner.id, {"name": "Team A", "max_members": max_members})

    @pytest.mark.asyncio
    async def test_failed_owner_membership_leaves_no_guild(
        self, db_session: AsyncSession, make_user, monkeypatch
    ):
        owner = await make_user("Owner")

        async def _broken(*args, **kwargs):
            raise OperationalError("INSERT INTO guild_members", {}, Exception("disk I/O error"))

        monkeypatch.setattr(guild_service, "_add_membership", _broken)

        with pytest.raises(InternalError, match="Failed to create guild"):
            await create_guild(db_session, owner.id, {"name": "Team A"})

        count = (await db_session.execute(select(func.count()).select_from(Guild))).scalar_one()
        assert count == 0


class TestJoinAndLeave:
    @pytest.mark.asyncio
    async def test_join_until_full(self, db_session: AsyncSession, make_user):
        owner = await make_user("Owner")
        second = await make_user("Second")
        third = await make_user("Third")
        guild = await create_guild(db_session, owner.id, {"name": "Team A", "max_members": 2})

        member = await join_guild(db_session, guild.id, second.id)
        assert member.role == "member"
        assert guild.current_members_count == 2

        with pytest.raises(ConflictError) as exc_info:
            await join_guild(db_session, guild.id, third.id)
        assert exc_info.value.code == "GUILD_FULL"

        refreshed = await get_active_guild(db_session, guild.id)
        assert refreshed.current_members_count == 2
        assert await get_active_membership(db_session, guild.id, third.id) is None

    @pytest.mark.asyncio
    async def test_join_twice(self, db_session: AsyncSession, make_user):
        guild, _, (member,) = await _guild_with_members(db_session, make_user, 1)

        with pytest.raises(ConflictError) as exc_info:
            await join_guild(db_session, guild.id, member.id)
        assert exc_info.value.code == "ALREADY_MEMBER"
        assert guild.current_members_count == 2

    @pytest.mark.asyncio
    async def test_owner_cannot_leave(self, db_session: AsyncSession, make_user):
        guild, owner, _ = await _guild_with_members(db_session, make_user, 0)

        with pytest.raises(ConflictError) as exc_info:
            await leave_guild(db_session, guild.id, owner.id)
        assert exc_info.value.code == "OWNER_CANNOT_LEAVE"
        assert guild.current_members_count == 1

    @pytest.mark.asyncio
    async def test_leave_then_rejoin_inserts_new_row(self, db_session: AsyncSession, make_user):
        guild, _, (member,) = await _guild_with_members(db_session, make_user, 1)

        await leave_guild(db_session, guild.id, member.id)
        assert guild.current_members_count == 1

        await join_guild(db_session, guild.id, member.id)
        assert guild.current_members_count == 2
        assert await _membership_statuses(db_session, guild.id, member.id) == ["left", "active"]

    @pytest.mark.asyncio
    async def test_join_by_code_is_case_insensitive(self, db_session: AsyncSession, make_user):
        guild, _, _ = await _guild_with_members(db_session, make_user, 0)
        newcomer = await make_user("Newcomer")

        member = await join_guild_by_code(db_session, f"  {guild.join_code.lower()} ", newcomer.id)

        assert member.guild_id == guild.id
        assert member.role == "member"
        assert guild.current_members_count == 2

    @pytest.mark.asyncio
    async def test_join_by_unknown_or_deleted_code(self, db_session: AsyncSession, make_user):
        guild, owner, _ = await _guild_with_members(db_session, make_user, 0)
        newcomer = await make_user("Newcomer")

        with pytest.raises(NotFoundError, match="Invalid join code"):
            await join_guild_by_code(db_session, "NOPE2345", newcomer.id)

        await delete_guild(db_session, guild.id, owner.id)
        with pytest.raises(NotFoundError, match="Invalid join code"):
            await join_guild_by_code(db_session, guild.join_code, newcomer.id)

    @pytest.mark.asyncio
    async def test_leave_without_membership(self, db_session: AsyncSession, make_user):
        guild, _, _ = await _guild_with_members(db_session, make_user, 0)
        stranger = await make_user("Stranger")

        with pytest.raises(NotFoundError):
            await leave_guild(db_session, guild.id, stranger.id)


class TestMemberManagement:
    @pytest.mark.asyncio
    async def test_owner_kicks_member(self, db_session: AsyncSession, make_user):
        guild, owner, (member,) = await _guild_with_members(db_session, make_user, 1)

        kicked = await remove_member(db_session, guild.id, owner.id, member.id, reason="spam")

        assert kicked.status == "kicked"
        assert kicked.kick_reason == "spam"
        assert kicked.kicked_at is not None
        assert guild.current_members_count == 1

    @pytest.mark.asyncio
    async def test_admin_cannot_kick_admin_or_owner(self, db_session: AsyncSession, make_user):
        guild, owner, (admin, other_admin) = await _guild_with_members(db_session, make_user, 2)
        await update_member_role(db_session, guild.id, owner.id, admin.id, "admin")
        await update_member_role(db_session, guild.id, owner.id, other_admin.id, "admin")

        with pytest.raises(ForbiddenError, match="other admins"):
            await remove_member(db_session, guild.id, admin.id, other_admin.id)
        with pytest.raises(ForbiddenError, match="owner"):
            await remove_member(db_session, guild.id, admin.id, owner.id)
        assert guild.current_members_count == 3

    @pytest.mark.asyncio
    async def test_plain_member_cannot_kick(self, db_session: AsyncSession, make_user):
        guild, _, (member, target) = await _guild_with_members(db_session, make_user, 2)

        with pytest.raises(ForbiddenError):
            await remove_member(db_session, guild.id, member.id, target.id)

    @pytest.mark.asyncio
    async def test_only_owner_changes_roles(self, db_session: AsyncSession, make_user):
        guild, owner, (member, target) = await _guild_with_members(db_session, make_user, 2)

        with pytest.raises(ForbiddenError):
            await update_member_role(db_session, guild.id, member.id, target.id, "admin")
        with pytest.raises(ValidationError):
            await update_member_role(db_session, guild.id, owner.id, target.id, "owner")

        promoted = await update_member_role(db_session, guild.id, owner.id, target.id, "admin")
        assert promoted.role == "admin"

    @pytest.mark.asyncio
    async def test_transfer_then_former_owner_can_leave(self, db_session: AsyncSession, make_user):
        guild, owner, (successor,) = await _guild_with_members(db_session, make_user, 1)

        await transfer_ownership(db_session, guild.id, owner.id, successor.id)

        assert guild.leader_id == successor.id
        assert (await get_active_membership(db_session, guild.id, successor.id)).role == "owner"
        assert (await get_active_membership(db_session, guild.id, owner.id)).role == "admin"

        await leave_guild(db_session, guild.id, owner.id)
        assert guild.current_members_count == 1

    @pytest.mark.asyncio
    async def test_transfer_to_non_member(self, db_session: AsyncSession, make_user):
        guild, owner, _ = await _guild_with_members(db_session, make_user, 0)
        stranger = await make_user("Stranger")

        with pytest.raises(NotFoundError):
            await transfer_ownership(db_session, guild.id, owner.id, stranger.id)

    @pytest.mark.asyncio
    async def test_members_ordered_by_role(self, db_session: AsyncSession, make_user):
        guild, owner, (first, second) = await _guild_with_members(db_session, make_user, 2)
        await update_member_role(db_session, guild.id, owner.id, second.id, "admin")

        members = await list_members(db_session, guild.id)

        assert [m["user_id"] for m in members] == [owner.id, second.id, first.id]
        assert [m["role"] for m in members] == ["owner", "admin", "member"]


class TestGuildLifecycle:
    @pytest.mark.asyncio
    async def test_capacity_cannot_drop_below_member_count(self, db_session: AsyncSession, make_user):
        guild, owner, _ = await _guild_with_members(db_session, make_user, 2)

        with pytest.raises(ValidationError, match="current member count"):
            await update_guild(db_session, guild.id, owner.id, {"max_members": 2})

        updated = await update_guild(db_session, guild.id, owner.id, {"max_members": 3, "motto": "Onward"})
        assert updated.max_members == 3
        assert updated.motto == "Onward"

    @pytest.mark.asyncio
    async def test_capacity_checked_against_fresh_member_count(self, db_session: AsyncSession, make_user):
        guild, owner, _ = await _guild_with_members(db_session, make_user, 1)
        # another session's join bumps the count behind this session's cached copy
        await db_session.execute(
            update(Guild)
            .where(Guild.id == guild.id)
            .values(current_members_count=4)
            .execution_options(synchronize_session=False)
        )
        assert guild.current_members_count == 2

        with pytest.raises(ValidationError, match="current member count"):
            await update_guild(db_session, guild.id, owner.id, {"max_members": 3})

        await db_session.refresh(guild)
        assert guild.max_members != 3
        assert guild.current_members_count == 4

    @pytest.mark.asyncio
    async def test_only_owner_updates(self, db_session: AsyncSession, make_user):
        guild, _, (member,) = await _guild_with_members(db_session, make_user, 1)
        with pytest.raises(ForbiddenError):
            await update_guild(db_session, guild.id, member.id, {"motto": "Hijacked"})

    @pytest.mark.asyncio
    async def test_soft_delete_hides_guild(self, db_session: AsyncSession, make_user):
        guild, owner, (member,) = await _guild_with_members(db_session, make_user, 1)

        await delete_guild(db_session, guild.id, owner.id)

        with pytest.raises(NotFoundError):
            await get_active_guild(db_session, guild.id)
        with pytest.raises(NotFoundError):
            await join_guild(db_session, guild.id, member.id)
        assert await get_user_guild(db_session, member.id) is None
        assert await _membership_statuses(db_session, guild.id, member.id) == ["inactive"]
        assert guild.current_members_count == 0

    @pytest.mark.asyncio
    async def test_user_guild(self, db_session: AsyncSession, make_user):
        guild, _, (member,) = await _guild_with_members(db_session, make_user, 1)

        found = await get_user_guild(db_session, member.id)

        assert found is not None
        found_guild, membership = found
        assert found_guild.id == guild.id
        assert membership.role == "member"


class TestGuildQueries:
    @pytest.mark.asyncio
    async def test_list_all_paginates(self, db_session: AsyncSession, make_user):
        owner = await make_user("Owner")
        for name in ("Alpha", "Bravo", "Charlie"):
            await create_guild(db_session, owner.id, {"name": name})

        guilds, total, total_pages = await list_all(db_session, page=2, limit=2)

        assert total == 3
        assert total_pages == 2
        assert len(guilds) == 1

    @pytest.mark.asyncio
    async def test_leaderboard_ranks_public_guilds(self, db_session: AsyncSession, make_user):
        owner = await make_user("Owner")
        low = await create_guild(db_session, owner.id, {"name": "Low", "is_public": True})
        high = await create_guild(db_session, owner.id, {"name": "High", "is_public": True})
        hidden = await create_guild(db_session, owner.id, {"name": "Hidden"})
        low.total_xp, high.total_xp, hidden.total_xp = 100, 500, 9000
        await db_session.flush()

        entries = await leaderboard(db_session)

        assert [(e["rank"], e["name"]) for e in entries] == [(1, "High"), (2, "Low")]

    @pytest.mark.asyncio
    async def test_search_public_guilds_only(self, db_session: AsyncSession, make_user):
        owner = await make_user("Owner")
        await create_guild(db_session, owner.id, {"name": "Math Wizards", "is_public": True})
        await create_guild(db_session, owner.id, {"name": "Secret Math Club"})
        await create_guild(db_session, owner.id, {"name": "History Buffs", "is_public": True})

        results = await search_guilds(db_session, "math")

        assert [g.name for g in results] == ["Math Wizards"]
        with pytest.raises(ValidationError):
            await search_guilds(db_session, " m ")


class TestChallenges:
    @pytest.mark.asyncio
    async def test_manager_creates_challenge(self, db_session: AsyncSession, make_user):
        guild, owner, _ = await _guild_with_members(db_session, make_user, 0)
        now = datetime.now(timezone.utc)

        challenge = await create_challenge(
            db_session,
            guild.id,
            owner.id,
            {
                "title": "XP sprint",
                "challenge_type": "xp_goal",
                "target_value": 1000,
                "start_date": now,
                "end_date": now + timedelta(days=7),
            },
        )

        assert challenge.current_value == 0
        assert challenge.is_active is True
        assert [c.id for c in await list_challenges(db_session, guild.id, active_only=True)] == [challenge.id]

    @pytest.mark.asyncio
    async def test_member_cannot_create_challenge(self, db_session: AsyncSession, make_user):
        guild, _, (member,) = await _guild_with_members(db_session, make_user, 1)
        now = datetime.now(timezone.utc)

        with pytest.raises(ForbiddenError):
            await create_challenge(
                db_session,
                guild.id,
                member.id,
                {
                    "title": "XP sprint",
                    "challenge_type": "xp_goal",
                    "target_value": 10,
                    "start_date": now,
                    "end_date": now + timedelta(days=1),
                },
            )

    @pytest.mark.asyncio
    async def test_challenge_must_end_in_future(self, db_session: AsyncSession, make_user):
        guild, owner, _ = await _guild_with_members(db_session, make_user, 0)
        now = datetime.now(timezone.utc)

        with pytest.raises(ValidationError, match="future"):
            await create_challenge(
                db_session,
                guild.id,
                owner.id,
                {
                    "title": "Too late",
                    "challenge_type": "xp_goal",
                    "target_value": 10,
                    "start_date": now - timedelta(days=3),
                    "end_date": now - timedelta(days=1),
                },
            )
