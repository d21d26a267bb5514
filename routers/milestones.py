# Milestones Router
# Escrow ledger endpoints: fund, release and pay out campaign milestones

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from database.config import get_db
from database.models import User
from schemas.escrow import (
    BalanceResponse,
    LedgerResponse,
    MilestoneCreate,
    MilestoneResponse,
    PaidTotalResponse,
)
from auth.roles import Permission, UserType, actor_role_for, has_permission
from auth.decorators import get_user_type, require_permission
from core.errors import Forbidden, ValidationError
from services.escrow_ledger_service import get_escrow_ledger_service

router = APIRouter(prefix="/milestones", tags=["Milestones"])


def _check_brand(brand_id: str, user: User):
    user_type = get_user_type(user)
    if has_permission(user_type, Permission.MANAGE_ESCROW):
        return
    if user_type == UserType.BRAND and brand_id != user.id:
        raise Forbidden("You can only access your own escrow ledger")
    if user_type == UserType.INFLUENCER:
        raise Forbidden("Influencers cannot access brand escrow ledgers")


def _check_influencer(influencer_id: str, user: User):
    if get_user_type(user) == UserType.INFLUENCER and influencer_id != user.id:
        raise Forbidden("You can only view your own milestones")


# ============================================================================
# BRAND ENDPOINTS
# ============================================================================

@router.post("", response_model=MilestoneResponse, status_code=status.HTTP_201_CREATED)
async def create_milestone(
    milestone_data: MilestoneCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.FUND_MILESTONES)),
):
    """
    Fund a milestone for an influencer. The amount is added to the brand's
    escrow balance and counts against the campaign budget.
    """
    if has_permission(get_user_type(current_user), Permission.MANAGE_ESCROW):
        if not milestone_data.brand_id:
            raise ValidationError("brand_id is required when creating a milestone as an admin")
        brand_id = milestone_data.brand_id
    else:
        brand_id = current_user.id

    service = get_escrow_ledger_service(db)
    return service.create_milestone(
        brand_id=brand_id,
        influencer_id=milestone_data.influencer_id,
        campaign_id=milestone_data.campaign_id,
        title=milestone_data.title,
        amount=milestone_data.amount,
        description=milestone_data.description or "",
    )


@router.post("/{ledger_id}/{milestone_id}/release", response_model=MilestoneResponse)
async def release_milestone(
    ledger_id: str,
    milestone_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.RELEASE_MILESTONES)),
):
    """
    Release a milestone: deducts it from the escrow balance and initiates payout.
    """
    service = get_escrow_ledger_service(db)
    _check_brand(service.get_ledger(ledger_id).brand_id, current_user)
    return service.release_milestone(ledger_id, milestone_id)


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    brand_id: str = Query(..., description="Brand user id"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_OWN_LEDGER)),
):
    """
    Escrow balance for a brand (zero when no milestone was ever funded).
    """
    _check_brand(brand_id, current_user)
    service = get_escrow_ledger_service(db)
    ledger = service.get_ledger_for_brand(brand_id)
    return BalanceResponse(
        brand_id=brand_id,
        wallet_balance=ledger.wallet_balance if ledger else 0,
        total_amount=ledger.total_amount if ledger else 0,
    )


@router.get("/ledger/{ledger_id}", response_model=LedgerResponse)
async def get_ledger(
    ledger_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_OWN_LEDGER)),
):
    service = get_escrow_ledger_service(db)
    ledger = service.get_ledger(ledger_id)
    _check_brand(ledger.brand_id, current_user)
    return ledger


@router.get("/brand/{brand_id}", response_model=List[MilestoneResponse])
async def list_brand_milestones(
    brand_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_OWN_LEDGER)),
):
    _check_brand(brand_id, current_user)
    return get_escrow_ledger_service(db).list_by_brand(brand_id)


# ============================================================================
# SHARED ENDPOINTS
# ============================================================================

@router.get("/campaign/{campaign_id}", response_model=List[MilestoneResponse])
async def list_campaign_milestones(
    campaign_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_OWN_MILESTONES)),
):
    """
    Milestones of a campaign, newest first. Influencers only see their own.
    """
    milestones = get_escrow_ledger_service(db).list_by_campaign(campaign_id)
    user_type = get_user_type(current_user)
    if user_type == UserType.BRAND:
        milestones = [m for m in milestones if m.ledger.brand_id == current_user.id]
    elif user_type == UserType.INFLUENCER:
        milestones = [m for m in milestones if m.influencer_id == current_user.id]
    return milestones


@router.get("/influencer/{influencer_id}", response_model=List[MilestoneResponse])
async def list_influencer_milestones(
    influencer_id: str,
    campaign_id: Optional[str] = Query(None, description="Restrict to one campaign"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_OWN_MILESTONES)),
):
    _check_influencer(influencer_id, current_user)
    milestones = get_escrow_ledger_service(db).list_by_influencer(influencer_id, campaign_id)
    if get_user_type(current_user) == UserType.BRAND:
        milestones = [m for m in milestones if m.ledger.brand_id == current_user.id]
    return milestones


@router.get("/influencer/{influencer_id}/paid-total", response_model=PaidTotalResponse)
async def get_paid_total(
    influencer_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_OWN_EARNINGS)),
):
    """
    Sum of all milestones paid out to an influencer.
    """
    _check_influencer(influencer_id, current_user)
    total = get_escrow_ledger_service(db).total_paid(influencer_id)
    return PaidTotalResponse(influencer_id=influencer_id, total_paid=total)


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@router.post("/{ledger_id}/{milestone_id}/paid", response_model=MilestoneResponse)
async def mark_milestone_paid(
    ledger_id: str,
    milestone_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.MARK_PAYOUTS_PAID)),
):
    """
    Record that the payout for a released milestone went out (platform only).
    """
    return get_escrow_ledger_service(db).mark_paid(
        ledger_id,
        milestone_id,
        actor_role=actor_role_for(get_user_type(current_user)),
        actor_id=current_user.id,
    )
