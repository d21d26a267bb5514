# Escrow Ledger Service
# Milestone creation, release and payout against a brand's escrow ledger

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from config.app_config import GATEWAY_FEE_PERCENT
from core.contract_state import ActorRole
from core.errors import Conflict, Forbidden, MarketplaceError, NotFound, ValidationError
from database.marketplace_models import EscrowLedger, Milestone, PayoutStatusDB
from services.budget_guard import BudgetGuard
from services.notification_service import NotificationService

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
ZERO = Decimal("0")


def compute_gateway_fee(amount: Decimal, percent: Decimal = None) -> Decimal:
    """Gateway fee rounded half-up to cents."""
    rate = GATEWAY_FEE_PERCENT if percent is None else percent
    return (amount * rate / Decimal(100)).quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("amount must be a valid number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("amount must be greater than zero")
    if amount != amount.quantize(CENTS):
        raise ValidationError("amount must have at most 2 decimal places")
    return amount


def _newest_first(query):
    return query.order_by(Milestone.created_at.desc(), Milestone.sequence.desc())


class EscrowLedgerService:
    """
    Owns every write to escrow ledgers.

    Each mutation is one read-modify-write on the brand's ledger row: the row
    is read FOR UPDATE and both ledger and milestone rows carry a version
    counter, so a concurrent writer that lost the race fails with Conflict.
    """

    def __init__(self, db: Session, budget_guard: BudgetGuard = None, notifier: NotificationService = None):
        self.db = db
        self.budget_guard = budget_guard or BudgetGuard(db)
        self.notifier = notifier or NotificationService(db)

    # =========================================================================
    # WRITES
    # =========================================================================

    def create_milestone(
        self,
        brand_id: str,
        influencer_id: str,
        campaign_id: str,
        title: str,
        amount,
        description: str = "",
    ) -> Milestone:
        if not brand_id or not influencer_id or not campaign_id or not (title or "").strip():
            raise ValidationError("brand_id, influencer_id, campaign_id, title and amount are required")
        amount = parse_amount(amount)

        try:
            # Lock order: campaign, then ledger. Preconditions are only
            # evaluated once both rows are held.
            budget = self.budget_guard.require_owner(campaign_id, brand_id, lock=True)
            ledger = self._ledger_for_brand(brand_id, create=True)

            unreleased = self.db.query(Milestone).filter(
                Milestone.influencer_id == influencer_id,
                Milestone.campaign_id == campaign_id,
                Milestone.released == False,  # noqa: E712
            ).first()
            if unreleased:
                raise Conflict("previous milestone not released")

            committed = self._campaign_total(campaign_id)
            if committed >= budget.budget_ceiling:
                raise Forbidden("budget exhausted")
            if committed + amount > budget.budget_ceiling:
                raise Forbidden("would exceed budget")

            fee = compute_gateway_fee(amount)
            now = datetime.utcnow()

            milestone = Milestone(
                sequence=len(ledger.milestones) + 1,
                influencer_id=influencer_id,
                campaign_id=campaign_id,
                title=title.strip(),
                description=description or "",
                amount=amount,
                gateway_fee=fee,
                amount_with_fee=amount + fee,
                released=False,
                payout_status=PayoutStatusDB.PENDING,
                created_at=now,
            )
            ledger.milestones.append(milestone)
            ledger.wallet_balance = Decimal(ledger.wallet_balance or 0) + amount
            ledger.total_amount = Decimal(ledger.total_amount or 0) + amount
            ledger.updated_at = now

            self._commit()
        except MarketplaceError:
            self.db.rollback()
            raise

        logger.info(
            "Milestone %s created on ledger %s: %s for influencer %s / campaign %s",
            milestone.id, ledger.id, amount, influencer_id, campaign_id,
        )
        self.notifier.notify_milestone_created(brand_id, milestone)
        return milestone

    def release_milestone(self, ledger_id: str, milestone_id: str) -> Milestone:
        try:
            ledger = self._lock_ledger(ledger_id)
            milestone = self._milestone_on(ledger, milestone_id)
            if milestone.released:
                raise Conflict("This milestone has already been released")

            now = datetime.utcnow()
            balance = Decimal(ledger.wallet_balance or 0) - Decimal(milestone.amount)
            if balance < ZERO:
                logger.warning(
                    "Ledger %s balance would go negative (%s) releasing milestone %s; clamping to zero",
                    ledger.id, balance, milestone.id,
                )
                balance = ZERO

            ledger.wallet_balance = balance
            ledger.updated_at = now
            milestone.released = True
            milestone.released_at = now
            milestone.payout_status = PayoutStatusDB.INITIATED

            self._commit()
        except MarketplaceError:
            self.db.rollback()
            raise

        logger.info("Milestone %s released from ledger %s", milestone.id, ledger.id)
        self.notifier.notify_milestone_released(ledger.brand_id, milestone)
        return milestone

    def mark_paid(self, ledger_id: str, milestone_id: str, actor_role: ActorRole, actor_id: str = None) -> Milestone:
        if ActorRole(actor_role) != ActorRole.PLATFORM:
            raise Forbidden("Only the platform can mark a milestone as paid")

        try:
            ledger = self._lock_ledger(ledger_id)
            milestone = self._milestone_on(ledger, milestone_id)
            if not milestone.released:
                raise Conflict("Milestone must be released before it can be paid")
            if milestone.payout_status == PayoutStatusDB.PAID:
                raise Conflict("Milestone has already been paid")

            now = datetime.utcnow()
            milestone.payout_status = PayoutStatusDB.PAID
            milestone.paid_at = now
            milestone.paid_by = actor_id
            ledger.updated_at = now

            self._commit()
        except MarketplaceError:
            self.db.rollback()
            raise

        logger.info("Milestone %s on ledger %s marked paid by %s", milestone.id, ledger.id, actor_id)
        self.notifier.notify_milestone_paid(milestone)
        return milestone

    # =========================================================================
    # READS
    # =========================================================================

    def total_paid(self, influencer_id: str) -> Decimal:
        rows = self.db.query(Milestone.amount).filter(
            Milestone.influencer_id == influencer_id,
            Milestone.payout_status == PayoutStatusDB.PAID,
        ).all()
        return sum((Decimal(amount) for (amount,) in rows), ZERO)

    def get_ledger(self, ledger_id: str) -> EscrowLedger:
        ledger = self.db.query(EscrowLedger).filter(EscrowLedger.id == ledger_id).first()
        if not ledger:
            raise NotFound("Escrow ledger not found")
        return ledger

    def get_ledger_for_brand(self, brand_id: str) -> Optional[EscrowLedger]:
        return self.db.query(EscrowLedger).filter(EscrowLedger.brand_id == brand_id).first()

    def wallet_balance(self, brand_id: str) -> Decimal:
        ledger = self.get_ledger_for_brand(brand_id)
        return Decimal(ledger.wallet_balance) if ledger else ZERO

    def list_by_brand(self, brand_id: str) -> List[Milestone]:
        query = self.db.query(Milestone).join(EscrowLedger).filter(EscrowLedger.brand_id == brand_id)
        return _newest_first(query).all()

    def list_by_campaign(self, campaign_id: str) -> List[Milestone]:
        query = self.db.query(Milestone).filter(Milestone.campaign_id == campaign_id)
        return _newest_first(query).all()

    def list_by_influencer(self, influencer_id: str, campaign_id: str = None) -> List[Milestone]:
        query = self.db.query(Milestone).filter(Milestone.influencer_id == influencer_id)
        if campaign_id:
            query = query.filter(Milestone.campaign_id == campaign_id)
        return _newest_first(query).all()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _campaign_total(self, campaign_id: str) -> Decimal:
        rows = self.db.query(Milestone.amount).filter(Milestone.campaign_id == campaign_id).all()
        return sum((Decimal(amount) for (amount,) in rows), ZERO)

    def _ledger_for_brand(self, brand_id: str, create: bool = False) -> Optional[EscrowLedger]:
        ledger = self.db.query(EscrowLedger).filter(
            EscrowLedger.brand_id == brand_id
        ).with_for_update().populate_existing().first()
        if not ledger and create:
            ledger = EscrowLedger(brand_id=brand_id, wallet_balance=ZERO, total_amount=ZERO)
            self.db.add(ledger)
        return ledger

    def _lock_ledger(self, ledger_id: str) -> EscrowLedger:
        ledger = self.db.query(EscrowLedger).filter(
            EscrowLedger.id == ledger_id
        ).with_for_update().populate_existing().first()
        if not ledger:
            raise NotFound("Escrow ledger not found")
        return ledger

    def _milestone_on(self, ledger: EscrowLedger, milestone_id: str) -> Milestone:
        milestone = self.db.query(Milestone).filter(
            Milestone.ledger_id == ledger.id,
            Milestone.id == milestone_id,
        ).populate_existing().first()
        if not milestone:
            raise NotFound("Milestone not found")
        return milestone

    def _commit(self):
        try:
            self.db.commit()
        except (StaleDataError, IntegrityError) as e:
            self.db.rollback()
            logger.warning("Concurrent escrow ledger write rejected: %s", e)
            raise Conflict("Escrow ledger was modified concurrently; re-read and retry")


def get_escrow_ledger_service(db: Session) -> EscrowLedgerService:
    """Get EscrowLedgerService instance."""
    return EscrowLedgerService(db)
