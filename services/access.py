"""Who may send chat messages: free-trial limit, admin bypass, inactive subscriptions."""
import logging
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from errors import ChatUnavailableError, ErrorCode
from models import User

logger = logging.getLogger(__name__)

FREE_PLAN = "free"
TRIAL_ENDED_MESSAGE = "Your free trial has ended. Please select a subscription plan to continue."
INACTIVE_MESSAGE = "Your subscription is inactive. Please update your plan to continue."


class ChatAccessService:
    """Subscription rules applied before a message is relayed."""

    @staticmethod
    def is_trial_exhausted(user: User, free_query_limit: int) -> bool:
        return user.subscription_plan == FREE_PLAN and user.query_count >= free_query_limit

    @staticmethod
    def should_disable_chat(user: User, free_query_limit: int) -> bool:
        """Admins always chat; otherwise an exhausted trial or inactive paid plan blocks."""
        if user.is_admin:
            return False
        if ChatAccessService.is_trial_exhausted(user, free_query_limit):
            return True
        return user.subscription_status == "inactive" and user.subscription_plan != FREE_PLAN

    @staticmethod
    def ensure_can_chat(user: User, free_query_limit: int) -> None:
        """Raise ChatUnavailableError when the user may not send."""
        if not ChatAccessService.should_disable_chat(user, free_query_limit):
            return

        if ChatAccessService.is_trial_exhausted(user, free_query_limit):
            logger.info(f"Free trial ended for user {user.id} (query_count={user.query_count})")
            raise ChatUnavailableError("Free trial ended", details=TRIAL_ENDED_MESSAGE, user_id=str(user.id))

        logger.info(f"Inactive subscription for user {user.id} (plan={user.subscription_plan})")
        raise ChatUnavailableError(
            "Subscription inactive",
            details=INACTIVE_MESSAGE,
            code=ErrorCode.ACCESS_SUBSCRIPTION_INACTIVE,
            user_id=str(user.id),
        )

    @staticmethod
    def record_query(db: Session, user_id: UUID) -> None:
        """Count one answered query against the user's plan."""
        db.execute(
            update(User)
            .where(User.id == user_id)
            .values(query_count=User.query_count + 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()
