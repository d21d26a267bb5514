# Notification Service for the Marketplace
# Best-effort notifications for contract and escrow events

import logging
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.marketplace_models import Notification

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    CONTRACT_SENT = "contract.sent"
    CONTRACT_RESENT = "contract.resent"
    CONTRACT_REJECTED = "contract.rejected"
    CONTRACT_LOCKED = "contract.locked"
    MILESTONE_CREATED = "milestone.created"
    MILESTONE_RELEASED = "milestone.released"
    MILESTONE_PAID = "milestone.paid"


class RecipientType(str, Enum):
    BRAND = "brand"
    INFLUENCER = "influencer"


def _money(amount) -> str:
    return f"${Decimal(amount):,.2f}"


class NotificationService:
    """
    Persists notifications for brands and influencers.

    Notifications are written after the contract or ledger change has been
    committed. A failure here is logged and swallowed: the core record is the
    source of truth.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        recipient_type: RecipientType | str,
        recipient_id: str,
        type: NotificationType | str,
        title: str,
        message: str = "",
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        action_url: Optional[str] = None,
        data: Optional[dict] = None,
    ) -> Notification:
        """Add a notification row to the session without committing."""
        notification = Notification(
            recipient_type=RecipientType(recipient_type).value,
            recipient_id=recipient_id,
            type=NotificationType(type).value,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
            action_url=action_url,
            data=data or {},
        )
        self.db.add(notification)
        self.db.flush()
        return notification

    def notify(self, **event) -> Optional[Notification]:
        """
        Fire-and-forget: create and commit one notification.

        Returns the notification, or None when delivery failed.
        """
        try:
            notification = self.create(**event)
            self.db.commit()
            return notification
        except (SQLAlchemyError, ValueError) as e:
            self.db.rollback()
            logger.warning(
                "Notification %s for %s %s failed: %s",
                event.get("type"), event.get("recipient_type"), event.get("recipient_id"), e,
            )
            return None

    # =========================================================================
    # CONTRACT NOTIFICATION HELPERS
    # =========================================================================

    def notify_contract_sent(self, contract):
        return self.notify(
            recipient_type=RecipientType.INFLUENCER,
            recipient_id=contract.influencer_id,
            type=NotificationType.CONTRACT_SENT,
            title="New contract received",
            message=f"A brand sent you a contract for {_money(contract.fee_amount or 0)}.",
            entity_type="contract",
            entity_id=contract.id,
            action_url=f"/contracts/{contract.id}",
        )

    def notify_contract_resent(self, contract):
        return self.notify(
            recipient_type=RecipientType.INFLUENCER,
            recipient_id=contract.influencer_id,
            type=NotificationType.CONTRACT_RESENT,
            title="Contract resent",
            message=f"Revised contract (iteration {contract.resend_iteration}) is waiting for you.",
            entity_type="contract",
            entity_id=contract.id,
            action_url=f"/contracts/{contract.id}",
            data={"resend_of": contract.resend_of},
        )

    def notify_contract_rejected(self, contract):
        return self.notify(
            recipient_type=RecipientType.BRAND,
            recipient_id=contract.brand_id,
            type=NotificationType.CONTRACT_REJECTED,
            title="Contract rejected",
            message=contract.rejection_reason or "The contract was rejected.",
            entity_type="contract",
            entity_id=contract.id,
            action_url=f"/contracts/{contract.id}",
        )

    def notify_contract_locked(self, contract):
        for recipient_type, recipient_id in (
            (RecipientType.BRAND, contract.brand_id),
            (RecipientType.INFLUENCER, contract.influencer_id),
        ):
            self.notify(
                recipient_type=recipient_type,
                recipient_id=recipient_id,
                type=NotificationType.CONTRACT_LOCKED,
                title="Contract signed and locked",
                message="All parties have signed. The contract is now the system of record.",
                entity_type="contract",
                entity_id=contract.id,
                action_url=f"/contracts/{contract.id}",
            )

    # =========================================================================
    # MILESTONE NOTIFICATION HELPERS
    # =========================================================================

    def notify_milestone_created(self, brand_id: str, milestone):
        self.notify(
            recipient_type=RecipientType.INFLUENCER,
            recipient_id=milestone.influencer_id,
            type=NotificationType.MILESTONE_CREATED,
            title=f"New milestone: {milestone.title}",
            message=f"An amount of {_money(milestone.amount)} was created for this campaign.",
            entity_type="campaign",
            entity_id=milestone.campaign_id,
            action_url="/influencer/my-campaign",
        )
        self.notify(
            recipient_type=RecipientType.BRAND,
            recipient_id=brand_id,
            type=NotificationType.MILESTONE_CREATED,
            title=f"Milestone created for influencer {milestone.influencer_id}",
            message=f"{milestone.title} • {_money(milestone.amount)}",
            entity_type="campaign",
            entity_id=milestone.campaign_id,
            action_url="/brand/active-campaign",
        )

    def notify_milestone_released(self, brand_id: str, milestone):
        self.notify(
            recipient_type=RecipientType.INFLUENCER,
            recipient_id=milestone.influencer_id,
            type=NotificationType.MILESTONE_RELEASED,
            title=f"Milestone released: {milestone.title}",
            message=f"{_money(milestone.amount)} is on its way to you.",
            entity_type="campaign",
            entity_id=milestone.campaign_id,
            action_url="/influencer/my-campaign",
        )
        self.notify(
            recipient_type=RecipientType.BRAND,
            recipient_id=brand_id,
            type=NotificationType.MILESTONE_RELEASED,
            title=f"Released {_money(milestone.amount)}",
            message=f"{milestone.title} marked as released.",
            entity_type="campaign",
            entity_id=milestone.campaign_id,
            action_url="/brand/active-campaign",
        )

    def notify_milestone_paid(self, milestone):
        return self.notify(
            recipient_type=RecipientType.INFLUENCER,
            recipient_id=milestone.influencer_id,
            type=NotificationType.MILESTONE_PAID,
            title="Payment sent",
            message=f"{_money(milestone.amount)} for '{milestone.title}' has been paid out.",
            entity_type="campaign",
            entity_id=milestone.campaign_id,
            action_url="/influencer/my-campaign",
        )


# Convenience function to get service
def get_notification_service(db: Session) -> NotificationService:
    """Get NotificationService instance."""
    return NotificationService(db)
