"""
Read side of checkout: events, clubs and the rewards a club offers.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rally.core.errors import EventNotFound, RewardNotFound
from rally.models.club import Club
from rally.models.event import Event
from rally.models.reward import EVENT_REWARD_TYPES, Reward


async def get_event(db: AsyncSession, event_id: int) -> Event:
    event = await db.get(Event, event_id)
    if not event:
        raise EventNotFound(event_id)
    return event


async def get_club(db: AsyncSession, club_id: int) -> Optional[Club]:
    return await db.get(Club, club_id)


async def list_event_rewards(db: AsyncSession, club_id: int) -> list[Reward]:
    """Active rewards of the club that apply to event tickets, cheapest first."""
    result = await db.execute(
        select(Reward)
        .where(
            Reward.club_id == club_id,
            Reward.is_active.is_(True),
            Reward.type.in_(EVENT_REWARD_TYPES),
        )
        .order_by(Reward.credits_required, Reward.id)
    )
    return list(result.scalars().all())


async def get_event_reward(db: AsyncSession, reward_id: int, club_id: int) -> Reward:
    """An active ticket reward of this club, or RewardNotFound."""
    reward = await db.get(Reward, reward_id)
    if (
        reward is None
        or reward.club_id != club_id
        or not reward.is_active
        or reward.type not in EVENT_REWARD_TYPES
    ):
        raise RewardNotFound(reward_id)
    return reward
