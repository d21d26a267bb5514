from decimal import Decimal

import pytest

from conftest import BRAND_ID, CAMPAIGN_ID, INFLUENCER_ID, OTHER_BRAND_ID

API = "/api/v2"


@pytest.fixture
def contract_id(client, login, campaign):
    login("brand")
    resp = client.post(f"{API}/contracts", json={
        "influencer_id": INFLUENCER_ID,
        "campaign_id": CAMPAIGN_ID,
        "terms": {"campaign_title": "Summer launch", "fee_amount": "1000.00", "platforms": ["tiktok"]},
    })
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


def _event(client, contract_id, event, **body):
    return client.post(f"{API}/contracts/{contract_id}/events", json={"event": event, **body})


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestContractEndpoints:
    def test_create_returns_flags(self, client, login, contract_id):
        resp = client.get(f"{API}/contracts/{contract_id}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "draft"
        assert body["brand_id"] == BRAND_ID
        assert body["flags"]["is_draft"] is True
        assert body["flags"]["can_edit_brand_fields"] is True
        assert body["audit_events"][0]["event_type"] == "INITIATED"

    def test_duplicate_contract_conflicts(self, client, login, contract_id):
        resp = client.post(f"{API}/contracts", json={"influencer_id": INFLUENCER_ID, "campaign_id": CAMPAIGN_ID})
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "conflict"

    def test_unknown_campaign(self, client, login, campaign):
        login("brand")
        resp = client.post(f"{API}/contracts", json={"influencer_id": INFLUENCER_ID, "campaign_id": "missing"})
        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "not_found"

    def test_influencer_cannot_draft(self, client, login, campaign):
        login("influencer")
        resp = client.post(f"{API}/contracts", json={"influencer_id": INFLUENCER_ID, "campaign_id": CAMPAIGN_ID})
        assert resp.status_code == 403

    def test_admin_must_name_brand(self, client, login, campaign):
        login("admin")
        resp = client.post(f"{API}/contracts", json={"influencer_id": INFLUENCER_ID, "campaign_id": CAMPAIGN_ID})
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "validation_error"

    def test_invalid_transition(self, client, login, contract_id):
        login("admin")
        resp = _event(client, contract_id, "lock")
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "invalid_transition"

    def test_stale_expected_status(self, client, login, contract_id):
        resp = _event(client, contract_id, "send", expected_status="viewed")
        assert resp.status_code == 409

    def test_send_and_view(self, client, login, contract_id):
        resp = _event(client, contract_id, "send", expected_status="draft")
        assert resp.status_code == 200
        assert resp.json()["status"] == "sent"

        login("influencer")
        resp = _event(client, contract_id, "view")
        assert resp.json()["status"] == "viewed"
        assert resp.json()["version"] == 3

    def test_wrong_actor_is_forbidden(self, client, login, contract_id):
        _event(client, contract_id, "send")
        resp = _event(client, contract_id, "view")
        assert resp.status_code == 403
        assert resp.json()["detail"]["error"] == "forbidden"

    def test_outsiders_are_forbidden(self, client, login, contract_id):
        login("other_influencer")
        assert client.get(f"{API}/contracts/{contract_id}").status_code == 403
        login("other_brand")
        assert _event(client, contract_id, "send").status_code == 403

    def test_lock_without_signatures_is_precondition_failed(self, client, login, contract_id):
        _event(client, contract_id, "send")
        login("influencer")
        _event(client, contract_id, "view")
        login("brand")
        _event(client, contract_id, "propose_terms", terms={"fee_amount": "1100.00"})
        login("influencer")
        _event(client, contract_id, "confirm")
        login("admin")
        _event(client, contract_id, "finalize_terms")
        _event(client, contract_id, "begin_signing")

        resp = _event(client, contract_id, "lock")
        assert resp.status_code == 403
        assert resp.json()["detail"]["error"] == "precondition_failed"

        resp = _event(client, contract_id, "sign", name="Platform Ops")
        assert resp.status_code == 200
        assert resp.json()["signatures"]["platform"]["signed"] is True

    def test_reject_and_resend(self, client, login, contract_id):
        _event(client, contract_id, "send")
        login("influencer")
        resp = _event(client, contract_id, "reject", reason="Timeline too tight")
        assert resp.json()["flags"]["can_resend"] is True

        final = client.get(f"{API}/contracts/rejected/final", params={"influencer_id": INFLUENCER_ID})
        assert [c["id"] for c in final.json()] == [contract_id]

        login("brand")
        resp = client.post(f"{API}/contracts/{contract_id}/resend", json={"terms": {"fee_amount": "1300.00"}})
        assert resp.status_code == 201
        child = resp.json()
        assert child["status"] == "sent"
        assert child["resend_iteration"] == 1
        assert child["resend_of"] == contract_id

        resp = client.post(f"{API}/contracts/{contract_id}/resend", json={})
        assert resp.status_code == 409

        listing = client.get(f"{API}/contracts", params={"brand_id": BRAND_ID, "influencer_id": INFLUENCER_ID})
        assert [c["id"] for c in listing.json()] == [child["id"], contract_id]

    def test_admin_update_bumps_legal_template(self, client, login, contract_id):
        login("admin")
        resp = _event(
            client, contract_id, "admin_update",
            admin_terms={"governing_law": "New York, United States"}, legal_text="Custom terms v2",
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["status"] == "draft"
        assert body["admin_terms"] == {"governing_law": "New York, United States"}
        assert body["legal_template_version"] == 2
        assert [r["version"] for r in body["legal_template_history"]] == [2]
        assert body["audit_events"][-1]["event_type"] == "ADMIN_UPDATED"

        login("brand")
        resp = _event(client, contract_id, "admin_update", legal_text="Brand wording")
        assert resp.status_code == 403

    def test_other_brand_cannot_draft_on_campaign(self, client, login, campaign):
        login("other_brand")
        resp = client.post(f"{API}/contracts", json={"influencer_id": INFLUENCER_ID, "campaign_id": CAMPAIGN_ID})
        assert resp.status_code == 403
        assert resp.json()["detail"]["message"] == "Campaign belongs to another brand"

    def test_untyped_account_is_refused(self, client, login, contract_id):
        login("untyped")
        assert client.get(f"{API}/contracts/{contract_id}").status_code == 403

    def test_list_other_brand_forbidden(self, client, login, contract_id):
        login("other_brand")
        resp = client.get(f"{API}/contracts", params={"brand_id": BRAND_ID, "influencer_id": INFLUENCER_ID})
        assert resp.status_code == 403


class TestMilestoneEndpoints:
    def _create(self, client, amount="300.00", title="Teaser"):
        return client.post(f"{API}/milestones", json={
            "influencer_id": INFLUENCER_ID,
            "campaign_id": CAMPAIGN_ID,
            "title": title,
            "amount": amount,
        })

    def test_milestone_flow(self, client, login, campaign):
        login("brand")
        resp = self._create(client)
        assert resp.status_code == 201, resp.text
        milestone = resp.json()
        assert Decimal(milestone["gateway_fee"]) == Decimal("6.00")
        assert milestone["payout_status"] == "pending"

        assert self._create(client, title="Second").status_code == 409

        balance = client.get(f"{API}/milestones/balance", params={"brand_id": BRAND_ID}).json()
        assert Decimal(balance["wallet_balance"]) == Decimal("300")

        path = f"{API}/milestones/{milestone['ledger_id']}/{milestone['id']}"
        resp = client.post(f"{path}/release")
        assert resp.status_code == 200
        assert resp.json()["payout_status"] == "initiated"

        assert client.post(f"{path}/paid").status_code == 403

        login("admin")
        resp = client.post(f"{path}/paid")
        assert resp.status_code == 200
        assert resp.json()["payout_status"] == "paid"

        login("influencer")
        total = client.get(f"{API}/milestones/influencer/{INFLUENCER_ID}/paid-total").json()
        assert Decimal(total["total_paid"]) == Decimal("300")

        mine = client.get(f"{API}/milestones/influencer/{INFLUENCER_ID}").json()
        assert [m["id"] for m in mine] == [milestone["id"]]

    def test_budget_exceeded(self, client, login, campaign):
        login("brand")
        resp = self._create(client, amount="600.00")
        assert resp.status_code == 403
        assert resp.json()["detail"]["message"] == "would exceed budget"

    def test_invalid_amount(self, client, login, campaign):
        login("brand")
        resp = self._create(client, amount="-1")
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "validation_error"

    def test_other_brand_cannot_release(self, client, login, campaign):
        login("brand")
        milestone = self._create(client).json()
        login("other_brand")
        resp = client.post(f"{API}/milestones/{milestone['ledger_id']}/{milestone['id']}/release")
        assert resp.status_code == 403

    def test_ledger_view(self, client, login, campaign):
        login("brand")
        milestone = self._create(client).json()
        ledger = client.get(f"{API}/milestones/ledger/{milestone['ledger_id']}").json()
        assert ledger["brand_id"] == BRAND_ID
        assert [m["id"] for m in ledger["milestones"]] == [milestone["id"]]

        login("other_brand")
        resp = client.get(f"{API}/milestones/balance", params={"brand_id": BRAND_ID})
        assert resp.status_code == 403
        assert client.get(f"{API}/milestones/brand/{OTHER_BRAND_ID}").json() == []

    def test_other_brand_cannot_fund_campaign(self, client, login, campaign):
        login("other_brand")
        resp = self._create(client)
        assert resp.status_code == 403
        assert resp.json()["detail"]["message"] == "Campaign belongs to another brand"

    def test_payout_permissions(self, client, login, campaign):
        login("brand")
        milestone = self._create(client).json()
        path = f"{API}/milestones/{milestone['ledger_id']}/{milestone['id']}"
        client.post(f"{path}/release")
        assert client.get(f"{API}/milestones/influencer/{INFLUENCER_ID}/paid-total").status_code == 403

        login("influencer")
        assert client.post(f"{path}/paid").status_code == 403
