"""
Reward selection for a purchase intent.

Listing filters the club's ticket rewards down to the ones the buyer can
afford right now. Applying re-reads the balance instead of trusting the
list, because credits may have been spent on another device in between.
Only one reward can be applied to an intent at a time.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rally.core.errors import InsufficientCredits, InvalidIntentState, InvalidRewardDefinition, RedemptionLimitReached
from rally.core.logging import get_logger
from rally.schemas.checkout import AppliedReward, EligibleReward, IntentStatus, PurchaseIntent, RewardTerms
from rally.services import catalog_service, ledger_service
from rally.services.pricing_service import calculate_price, describe_reward, round2

logger = get_logger(__name__)

EDITABLE_STATES = (IntentStatus.DRAFT, IntentStatus.AWAITING_PAYMENT, IntentStatus.FAILED)


class RedemptionSelector:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _limit_reached(self, user_id: str, reward: RewardTerms) -> bool:
        if not reward.max_redemptions_per_user:
            return False
        used = await ledger_service.redemption_count(self.db, user_id, reward.id)
        return used >= reward.max_redemptions_per_user

    async def list_eligible(self, intent: PurchaseIntent, balance: Optional[int] = None) -> list[EligibleReward]:
        """Rewards the buyer can afford, each with its label and resulting price."""
        if balance is None:
            balance = await ledger_service.get_balance(self.db, intent.user_id, intent.club_id)

        eligible = []
        for row in await catalog_service.list_event_rewards(self.db, intent.club_id):
            reward = RewardTerms.model_validate(row)
            if reward.credits_required > balance:
                continue
            if await self._limit_reached(intent.user_id, reward):
                continue
            try:
                quote = calculate_price(intent.original_price, reward)
            except InvalidRewardDefinition as e:
                logger.warning("reward_skipped_invalid", reward_id=reward.id, detail=e.detail)
                continue
            eligible.append(
                EligibleReward(
                    reward=reward,
                    description=describe_reward(reward, intent.currency),
                    quote=quote,
                )
            )
        return eligible

    async def apply(self, intent: PurchaseIntent, reward_id: int) -> PurchaseIntent:
        """
        Apply a reward, replacing any reward applied before.
        Re-applying the reward that is already applied changes nothing.
        """
        if intent.status not in EDITABLE_STATES:
            raise InvalidIntentState(f"Rewards can't be changed while the purchase is {intent.status.value}")

        if intent.applied_reward and intent.applied_reward.reward.id == reward_id:
            return intent

        reward = RewardTerms.model_validate(
            await catalog_service.get_event_reward(self.db, reward_id, intent.club_id)
        )

        available = await ledger_service.get_balance(self.db, intent.user_id, intent.club_id)
        if available < reward.credits_required:
            raise InsufficientCredits(available=available, required=reward.credits_required)

        if await self._limit_reached(intent.user_id, reward):
            raise RedemptionLimitReached(reward.id, reward.max_redemptions_per_user)

        try:
            quote = calculate_price(intent.original_price, reward)
        except InvalidRewardDefinition as e:
            logger.error("reward_invalid", reward_id=reward.id, detail=e.detail)
            raise

        intent.applied_reward = AppliedReward(reward=reward, discount_amount=quote.discount_amount)
        intent.discounted_price = quote.discounted_price
        intent.is_free = quote.is_free
        logger.info(
            "reward_applied",
            intent_id=intent.id,
            reward_id=reward.id,
            discount=str(quote.discount_amount),
            is_free=quote.is_free,
        )
        return intent

    def remove(self, intent: PurchaseIntent) -> PurchaseIntent:
        if intent.status not in EDITABLE_STATES:
            raise InvalidIntentState(f"Rewards can't be changed while the purchase is {intent.status.value}")

        intent.applied_reward = None
        intent.discounted_price = round2(intent.original_price)
        intent.is_free = intent.discounted_price == 0
        return intent
