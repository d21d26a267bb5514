# Pydantic Schemas for the Escrow Ledger

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from database.marketplace_models import PayoutStatusDB


class MilestoneCreate(BaseModel):
    """Schema for creating a milestone. Amount is validated by the ledger service."""
    influencer_id: str
    campaign_id: str
    title: str = Field(..., min_length=1, max_length=255)
    amount: Decimal
    description: Optional[str] = Field("", max_length=2000)
    brand_id: Optional[str] = None  # Admins only


class MilestoneResponse(BaseModel):
    """Schema for milestone response."""
    id: str
    ledger_id: str
    sequence: int
    influencer_id: str
    campaign_id: str
    title: str
    description: Optional[str] = ""
    amount: Decimal
    gateway_fee: Decimal
    amount_with_fee: Decimal
    released: bool
    released_at: Optional[datetime] = None
    payout_status: PayoutStatusDB
    paid_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerResponse(BaseModel):
    """Schema for escrow ledger response."""
    id: str
    brand_id: str
    wallet_balance: Decimal
    total_amount: Decimal
    milestones: List[MilestoneResponse] = []

    class Config:
        from_attributes = True


class BalanceResponse(BaseModel):
    brand_id: str
    wallet_balance: Decimal
    total_amount: Decimal


class PaidTotalResponse(BaseModel):
    influencer_id: str
    total_paid: Decimal
