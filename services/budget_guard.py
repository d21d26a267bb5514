# Budget Guard
# View over campaign budgets, consulted before every milestone creation

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from core.errors import Forbidden, NotFound
from database.marketplace_models import Campaign


@dataclass(frozen=True)
class CampaignBudget:
    campaign_id: str
    brand_id: str
    budget_ceiling: Decimal
    currency: str


class BudgetGuard:
    def __init__(self, db: Session):
        self.db = db

    def get_campaign_budget(self, campaign_id: str, lock: bool = False) -> CampaignBudget:
        """
        Budget of a campaign. With lock=True the campaign row is held
        FOR UPDATE until the caller's transaction ends, which serializes
        every milestone creation on the campaign.
        """
        query = self.db.query(Campaign).filter(Campaign.id == campaign_id)
        if lock:
            query = query.with_for_update().populate_existing()
        campaign = query.first()
        if not campaign:
            raise NotFound("Campaign not found")
        return CampaignBudget(
            campaign_id=campaign.id,
            brand_id=campaign.brand_id,
            budget_ceiling=Decimal(campaign.budget or 0),
            currency=campaign.currency or "USD",
        )

    def require_owner(self, campaign_id: str, brand_id: str, lock: bool = False) -> CampaignBudget:
        budget = self.get_campaign_budget(campaign_id, lock=lock)
        if budget.brand_id != brand_id:
            raise Forbidden("Campaign belongs to another brand")
        return budget
