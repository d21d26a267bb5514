import logging
from decimal import Decimal

import pytest
from sqlalchemy.orm.exc import StaleDataError

from conftest import BRAND_ID, CAMPAIGN_ID, INFLUENCER_ID, OTHER_BRAND_ID, OTHER_INFLUENCER_ID, ADMIN_ID
from core.contract_state import ActorRole
from core.errors import Conflict, Forbidden, NotFound, ValidationError
from database.marketplace_models import EscrowLedger, Milestone, Notification, PayoutStatusDB
from services.escrow_ledger_service import EscrowLedgerService, compute_gateway_fee


@pytest.fixture
def service(db, campaign):
    return EscrowLedgerService(db)


def _unreleased_total(db, ledger_id):
    rows = db.query(Milestone).filter(Milestone.ledger_id == ledger_id, Milestone.released == False).all()  # noqa: E712
    return sum((m.amount for m in rows), Decimal("0"))


class TestGatewayFee:
    def test_two_percent(self):
        assert compute_gateway_fee(Decimal("300")) == Decimal("6.00")

    def test_rounds_half_up_to_cents(self):
        assert compute_gateway_fee(Decimal("0.25")) == Decimal("0.01")
        assert compute_gateway_fee(Decimal("10.05")) == Decimal("0.20")

    def test_custom_percent(self):
        assert compute_gateway_fee(Decimal("100"), percent=Decimal("3.5")) == Decimal("3.50")


class TestCreateMilestone:
    def test_creates_ledger_and_milestone(self, db, service):
        milestone = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "Teaser reel", "300.00")

        assert milestone.sequence == 1
        assert milestone.amount == Decimal("300.00")
        assert milestone.gateway_fee == Decimal("6.00")
        assert milestone.amount_with_fee == Decimal("306.00")
        assert milestone.payout_status == PayoutStatusDB.PENDING
        assert not milestone.released

        ledger = service.get_ledger_for_brand(BRAND_ID)
        assert ledger.wallet_balance == Decimal("300.00")
        assert ledger.total_amount == Decimal("300.00")

        types = {(n.recipient_id, n.type) for n in db.query(Notification).all()}
        assert types == {(INFLUENCER_ID, "milestone.created"), (BRAND_ID, "milestone.created")}

    @pytest.mark.parametrize("amount", ["0", "-5", "1.234", "abc", "NaN"])
    def test_invalid_amount(self, db, service, amount):
        with pytest.raises(ValidationError):
            service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "Reel", amount)
        assert db.query(EscrowLedger).count() == 0

    def test_title_required(self, service):
        with pytest.raises(ValidationError):
            service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "   ", "10")

    def test_unknown_campaign(self, service):
        with pytest.raises(NotFound):
            service.create_milestone(BRAND_ID, INFLUENCER_ID, "missing", "Reel", "10")

    def test_other_brand_cannot_fund_campaign(self, db, service):
        with pytest.raises(Forbidden, match="another brand"):
            service.create_milestone(OTHER_BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "Reel", "500")
        assert db.query(EscrowLedger).count() == 0
        assert db.query(Milestone).count() == 0

        milestone = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "Reel", "500")
        assert milestone.amount == Decimal("500")

    def test_previous_milestone_must_be_released(self, db, service):
        service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        with pytest.raises(Conflict):
            service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "B", "100")
        assert db.query(Milestone).count() == 1

    def test_other_influencer_is_independent(self, service):
        service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        milestone = service.create_milestone(BRAND_ID, OTHER_INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        assert milestone.sequence == 2
        assert service.wallet_balance(BRAND_ID) == Decimal("200.00")


class TestBudgetScenario:
    def test_budget_ceiling(self, db, service):
        a = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "300")
        assert service.wallet_balance(BRAND_ID) == Decimal("300")

        with pytest.raises(Conflict, match="previous milestone not released"):
            service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "B", "300")

        ledger_id = a.ledger_id
        released = service.release_milestone(ledger_id, a.id)
        assert released.payout_status == PayoutStatusDB.INITIATED
        assert service.wallet_balance(BRAND_ID) == Decimal("0")

        service.mark_paid(ledger_id, a.id, ActorRole.PLATFORM, actor_id=ADMIN_ID)

        with pytest.raises(Forbidden, match="would exceed budget"):
            service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "B", "300")
        assert db.query(Milestone).count() == 1

        b = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "B", "200")
        assert b.sequence == 2
        service.release_milestone(ledger_id, b.id)

        with pytest.raises(Forbidden, match="budget exhausted"):
            service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "C", "1")

        ledger = service.get_ledger(ledger_id)
        assert ledger.total_amount == Decimal("500")
        assert ledger.wallet_balance == Decimal("0")


class TestRelease:
    def test_wallet_identity_holds(self, db, service):
        a = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "120.50")
        service.create_milestone(BRAND_ID, OTHER_INFLUENCER_ID, CAMPAIGN_ID, "A", "80.25")
        service.release_milestone(a.ledger_id, a.id)

        ledger = service.get_ledger(a.ledger_id)
        assert ledger.wallet_balance == _unreleased_total(db, ledger.id) == Decimal("80.25")
        assert ledger.total_amount == Decimal("200.75")

    def test_double_release_conflicts(self, service):
        a = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        service.release_milestone(a.ledger_id, a.id)
        with pytest.raises(Conflict):
            service.release_milestone(a.ledger_id, a.id)
        assert service.wallet_balance(BRAND_ID) == Decimal("0")

    def test_unknown_ids(self, service):
        a = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        with pytest.raises(NotFound):
            service.release_milestone("missing", a.id)
        with pytest.raises(NotFound):
            service.release_milestone(a.ledger_id, "missing")

    def test_negative_balance_is_clamped(self, db, service, caplog):
        a = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        ledger = db.query(EscrowLedger).filter(EscrowLedger.id == a.ledger_id).one()
        ledger.wallet_balance = Decimal("40")
        db.commit()

        with caplog.at_level(logging.WARNING, logger="services.escrow_ledger_service"):
            service.release_milestone(a.ledger_id, a.id)

        assert service.wallet_balance(BRAND_ID) == Decimal("0")
        assert "clamping" in caplog.text

    def test_release_notifies_both_parties(self, db, service):
        a = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        service.release_milestone(a.ledger_id, a.id)
        released = db.query(Notification).filter(Notification.type == "milestone.released").all()
        assert {n.recipient_id for n in released} == {BRAND_ID, INFLUENCER_ID}


class TestMarkPaid:
    def test_only_platform(self, service):
        a = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        service.release_milestone(a.ledger_id, a.id)
        with pytest.raises(Forbidden):
            service.mark_paid(a.ledger_id, a.id, ActorRole.BRAND)

    def test_must_be_released(self, service):
        a = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        with pytest.raises(Conflict):
            service.mark_paid(a.ledger_id, a.id, ActorRole.PLATFORM)

    def test_paid_once(self, service):
        a = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        service.release_milestone(a.ledger_id, a.id)
        paid = service.mark_paid(a.ledger_id, a.id, ActorRole.PLATFORM, actor_id=ADMIN_ID)
        assert paid.payout_status == PayoutStatusDB.PAID
        assert paid.paid_by == ADMIN_ID
        assert paid.paid_at is not None
        with pytest.raises(Conflict):
            service.mark_paid(a.ledger_id, a.id, ActorRole.PLATFORM)

    def test_total_paid(self, service, make_campaign):
        make_campaign("campaign-2", budget="1000.00")
        a = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        b = service.create_milestone(BRAND_ID, INFLUENCER_ID, "campaign-2", "B", "250.50")
        for m in (a, b):
            service.release_milestone(m.ledger_id, m.id)
        service.mark_paid(a.ledger_id, a.id, ActorRole.PLATFORM)

        assert service.total_paid(INFLUENCER_ID) == Decimal("100")
        service.mark_paid(b.ledger_id, b.id, ActorRole.PLATFORM)
        assert service.total_paid(INFLUENCER_ID) == Decimal("350.50")
        assert service.total_paid(OTHER_INFLUENCER_ID) == Decimal("0")


class TestReads:
    def test_listings_newest_first(self, service, make_campaign):
        make_campaign("campaign-2", budget="1000.00")
        a = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        service.release_milestone(a.ledger_id, a.id)
        b = service.create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "B", "100")
        c = service.create_milestone(BRAND_ID, INFLUENCER_ID, "campaign-2", "C", "100")

        assert [m.id for m in service.list_by_brand(BRAND_ID)] == [c.id, b.id, a.id]
        assert [m.id for m in service.list_by_campaign(CAMPAIGN_ID)] == [b.id, a.id]
        assert [m.id for m in service.list_by_influencer(INFLUENCER_ID)] == [c.id, b.id, a.id]
        assert [m.id for m in service.list_by_influencer(INFLUENCER_ID, "campaign-2")] == [c.id]

    def test_balance_without_ledger(self, service):
        assert service.wallet_balance("nobody") == Decimal("0")
        assert service.get_ledger_for_brand("nobody") is None


class TestConcurrency:
    def test_stale_ledger_write_raises(self, session_factory, campaign):
        first, second = session_factory(), session_factory()
        a = EscrowLedgerService(first).create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        ledger_id, milestone_id = a.ledger_id, a.id

        stale = second.query(EscrowLedger).filter(EscrowLedger.id == ledger_id).one()
        stale_milestone = stale.milestones[0]

        EscrowLedgerService(first).release_milestone(ledger_id, milestone_id)

        stale.wallet_balance = Decimal("0")
        stale_milestone.released = True
        with pytest.raises(StaleDataError):
            second.commit()
        second.rollback()
        for session in (first, second):
            session.close()

    def test_concurrent_release_only_applies_once(self, session_factory, campaign, monkeypatch):
        first, second = session_factory(), session_factory()
        a = EscrowLedgerService(first).create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "A", "100")
        ledger_id, milestone_id = a.ledger_id, a.id

        original = EscrowLedgerService._milestone_on
        raced = []

        def racing_milestone_on(self, ledger, mid):
            milestone = original(self, ledger, mid)
            if not raced:
                raced.append(True)
                EscrowLedgerService(second).release_milestone(ledger_id, mid)
            return milestone

        monkeypatch.setattr(EscrowLedgerService, "_milestone_on", racing_milestone_on)

        with pytest.raises(Conflict):
            EscrowLedgerService(first).release_milestone(ledger_id, milestone_id)

        check = session_factory()
        ledger = check.query(EscrowLedger).filter(EscrowLedger.id == ledger_id).one()
        assert ledger.wallet_balance == Decimal("0")
        assert ledger.milestones[0].released
        for session in (first, second, check):
            session.close()

    def _race_create(self, monkeypatch, session, influencer_id, amount):
        """Commit a competing create from `session` just before the ledger row is read."""
        original = EscrowLedgerService._ledger_for_brand
        raced = []

        def racing_ledger_for_brand(self, brand_id, create=False):
            if not raced:
                raced.append(True)
                EscrowLedgerService(session).create_milestone(BRAND_ID, influencer_id, CAMPAIGN_ID, "A", amount)
            return original(self, brand_id, create)

        monkeypatch.setattr(EscrowLedgerService, "_ledger_for_brand", racing_ledger_for_brand)

    def test_concurrent_creates_keep_one_unreleased_per_pair(self, session_factory, campaign, monkeypatch):
        first, second = session_factory(), session_factory()
        self._race_create(monkeypatch, first, INFLUENCER_ID, "300")

        with pytest.raises(Conflict, match="previous milestone not released"):
            EscrowLedgerService(second).create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "B", "300")

        check = session_factory()
        unreleased = check.query(Milestone).filter(
            Milestone.influencer_id == INFLUENCER_ID,
            Milestone.campaign_id == CAMPAIGN_ID,
            Milestone.released == False,  # noqa: E712
        ).all()
        assert len(unreleased) == 1
        assert check.query(EscrowLedger).one().wallet_balance == Decimal("300")
        for session in (first, second, check):
            session.close()

    def test_concurrent_creates_respect_budget_ceiling(self, session_factory, campaign, monkeypatch):
        first, second = session_factory(), session_factory()
        self._race_create(monkeypatch, first, OTHER_INFLUENCER_ID, "300")

        with pytest.raises(Forbidden, match="would exceed budget"):
            EscrowLedgerService(second).create_milestone(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, "B", "300")

        check = session_factory()
        total = sum((m.amount for m in check.query(Milestone).all()), Decimal("0"))
        assert total == Decimal("300")
        for session in (first, second, check):
            session.close()
