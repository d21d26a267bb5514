# Contract Service
# Negotiation lifecycle for brand/influencer contracts: drafting, transitions,
# tri-party signatures, locking, rejection and resend lineage.

import base64
import binascii
import json
import logging
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from config.app_config import DEFAULT_CURRENCY, INFLUENCER_EDIT_POLICY, MAX_SIGNATURE_IMAGE_BYTES
from core.contract_state import (
    ActorRole, ContractEvent, ADMIN_TERM_KEYS, AUDIT_EVENT_TYPES, BRAND_TERM_KEYS, CONFIRMING_PARTIES,
    EVENT_ACTORS, INFLUENCER_TERM_KEYS, SIGNING_PARTIES,
    all_signed, compute_edited_fields, derive_flags, is_confirmed, is_legal, is_signed,
    missing_signatures, resolve_effective_date, target_status,
)
from core.errors import (
    Conflict, Forbidden, InvalidTransition, MarketplaceError, NotFound,
    PreconditionFailed, ValidationError,
)
from database.marketplace_models import Campaign, Contract, ContractAuditEvent, ContractStatusDB
from database.models import generate_uuid
from services.notification_service import NotificationService

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:(image/(?:png|jpeg|jpg));base64,([A-Za-z0-9+/=]+)$", re.IGNORECASE)


def active_slot_for(brand_id: str, influencer_id: str, campaign_id: str) -> str:
    return f"{brand_id}:{influencer_id}:{campaign_id}"


def _json_safe(terms: dict) -> dict:
    return json.loads(json.dumps(terms, default=str))


def _clean_terms(terms: Optional[dict], allowed) -> dict:
    return _json_safe({k: v for k, v in (terms or {}).items() if k in allowed and v is not None})


def _parse_fee(value) -> Decimal:
    try:
        fee = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("fee_amount must be a valid number")
    if not fee.is_finite() or fee < 0:
        raise ValidationError("fee_amount must not be negative")
    return fee


def _admin_snapshot(contract) -> dict:
    return {"admin": {
        **(contract.admin_terms or {}),
        "legal_template_version": contract.legal_template_version or 1,
        "legal_template_text": contract.legal_template_text,
    }}


def _signature_artifact(data_url: Optional[str]):
    """Validate an optional signature image; returns (data_url, byte_size)."""
    if not data_url:
        return None, None
    match = _DATA_URL.match(data_url.strip())
    if not match:
        raise ValidationError("Invalid signature image. Must be a base64 PNG or JPEG data URL.")
    try:
        size = len(base64.b64decode(match.group(2), validate=True))
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid base64 payload for signature image.")
    if size > MAX_SIGNATURE_IMAGE_BYTES:
        raise ValidationError(f"Signature image must be <= {MAX_SIGNATURE_IMAGE_BYTES // 1024} KB.")
    return f"data:{match.group(1).lower()};base64,{match.group(2)}", size


class ContractService:
    """
    Applies contract events under optimistic concurrency.

    Every write is conditioned on the contract's version counter; a writer
    that loses the race gets InvalidTransition and nothing is persisted.
    """

    def __init__(self, db: Session, notifier: NotificationService = None, influencer_edit_policy: str = None):
        self.db = db
        self.notifier = notifier or NotificationService(db)
        self.influencer_edit_policy = influencer_edit_policy or INFLUENCER_EDIT_POLICY
        self._handlers = {
            ContractEvent.SEND: self._on_send,
            ContractEvent.VIEW: self._on_view,
            ContractEvent.PROPOSE_TERMS: self._on_propose_terms,
            ContractEvent.CONFIRM: self._on_confirm,
            ContractEvent.FINALIZE_TERMS: self._on_finalize_terms,
            ContractEvent.BEGIN_SIGNING: self._on_begin_signing,
            ContractEvent.SIGN: self._on_sign,
            ContractEvent.LOCK: self._on_lock,
            ContractEvent.REJECT: self._on_reject,
            ContractEvent.ADMIN_UPDATE: self._on_admin_update,
        }

    # =========================================================================
    # CREATE / ADVANCE / RESEND
    # =========================================================================

    def create_draft(
        self,
        brand_id: str,
        influencer_id: str,
        campaign_id: str,
        terms: Optional[dict] = None,
        actor_id: Optional[str] = None,
    ) -> Contract:
        if not brand_id or not influencer_id or not campaign_id:
            raise ValidationError("brand_id, influencer_id and campaign_id are required")
        brand_terms = _clean_terms(terms, BRAND_TERM_KEYS)
        fee = _parse_fee(brand_terms.get("fee_amount", 0))

        slot = active_slot_for(brand_id, influencer_id, campaign_id)
        try:
            campaign = self.db.query(Campaign).filter(Campaign.id == campaign_id).first()
            if not campaign:
                raise NotFound("Campaign not found")
            if campaign.brand_id != brand_id:
                raise Forbidden("Campaign belongs to another brand")
            if self.db.query(Contract).filter(Contract.active_slot == slot).first():
                raise Conflict("An active contract already exists for this brand, influencer and campaign")

            contract = Contract(
                brand_id=brand_id,
                influencer_id=influencer_id,
                campaign_id=campaign_id,
                status=ContractStatusDB.DRAFT,
                active_slot=slot,
                brand_terms=brand_terms,
                influencer_terms={},
                admin_terms={},
                legal_template_version=1,
                legal_template_history=[],
                fee_amount=fee,
                currency=brand_terms.get("currency") or DEFAULT_CURRENCY,
                resend_iteration=0,
                created_at=datetime.utcnow(),
            )
            self._append_audit(contract, ActorRole.BRAND, actor_id, "INITIATED", {"campaign_id": campaign_id})
            self.db.add(contract)
            self._commit(Conflict, "An active contract already exists for this brand, influencer and campaign")
        except MarketplaceError:
            self.db.rollback()
            raise

        logger.info("Contract %s drafted for brand %s / influencer %s", contract.id, brand_id, influencer_id)
        return contract

    def advance(
        self,
        contract_id: str,
        actor_role: ActorRole,
        event: ContractEvent,
        actor_id: Optional[str] = None,
        payload: Optional[dict] = None,
        expected_status: Optional[str] = None,
    ) -> Contract:
        try:
            event = ContractEvent(event)
            actor_role = ActorRole(actor_role)
            expected = ContractStatusDB(expected_status) if expected_status else None
        except ValueError as e:
            raise ValidationError(str(e))

        try:
            contract = self._load(contract_id)
            current = ContractStatusDB(contract.status)
            if expected is not None and expected != current:
                raise InvalidTransition(
                    f"Contract is '{current.value}', not '{expected.value}'; re-read before retrying"
                )
            if not is_legal(event, current):
                raise InvalidTransition(f"Cannot {event.value} a contract in '{current.value}' status")
            if actor_role not in EVENT_ACTORS[event]:
                raise Forbidden(f"{actor_role.value} cannot {event.value} this contract")

            now = datetime.utcnow()
            details = self._handlers[event](contract, actor_role, actor_id, payload or {}, now)
            contract.status = target_status(event, current)
            contract.updated_at = now
            self._append_audit(contract, actor_role, actor_id, AUDIT_EVENT_TYPES[event], details, at=now)

            self._commit(InvalidTransition, "Contract was modified concurrently; re-read before retrying")
        except MarketplaceError:
            self.db.rollback()
            raise

        logger.info("Contract %s: %s by %s -> %s", contract.id, event.value, actor_role.value, contract.status.value)
        self._notify(event, contract)
        return contract

    def resend(
        self,
        contract_id: str,
        new_terms: Optional[dict] = None,
        actor_id: Optional[str] = None,
        actor_role: ActorRole = ActorRole.BRAND,
    ) -> Contract:
        actor_role = ActorRole(actor_role)
        if actor_role not in (ActorRole.BRAND, ActorRole.PLATFORM):
            raise Forbidden("Only the brand can resend a contract")

        try:
            parent = self._load(contract_id)
            if parent.status != ContractStatusDB.REJECTED:
                raise Conflict("Only rejected contracts can be resent")
            if parent.superseded_by:
                raise Conflict("Contract has already been superseded by a resend")

            brand_terms = {**(parent.brand_terms or {}), **_clean_terms(new_terms, BRAND_TERM_KEYS)}
            fee = _parse_fee(brand_terms.get("fee_amount", parent.fee_amount or 0))
            slot = parent.active_slot or active_slot_for(parent.brand_id, parent.influencer_id, parent.campaign_id)
            now = datetime.utcnow()

            child = Contract(
                id=generate_uuid(),
                brand_id=parent.brand_id,
                influencer_id=parent.influencer_id,
                campaign_id=parent.campaign_id,
                status=ContractStatusDB.SENT,
                sent_at=now,
                brand_terms=brand_terms,
                influencer_terms=dict(parent.influencer_terms or {}),
                admin_terms=dict(parent.admin_terms or {}),
                legal_template_version=parent.legal_template_version or 1,
                legal_template_text=parent.legal_template_text,
                legal_template_history=list(parent.legal_template_history or []),
                fee_amount=fee,
                currency=brand_terms.get("currency") or parent.currency or DEFAULT_CURRENCY,
                resend_iteration=(parent.resend_iteration or 0) + 1,
                resend_of=parent.id,
                created_at=now,
            )

            # Release the parent's slot first so the child can claim it
            parent.superseded_by = child.id
            parent.active_slot = None
            parent.updated_at = now
            self._append_audit(parent, actor_role, actor_id, "SUPERSEDED", {"superseded_by": child.id}, at=now)
            self._flush(Conflict, "Contract was resent concurrently")

            child.active_slot = slot
            self._append_audit(child, actor_role, actor_id, "RESENT", {"resend_of": parent.id}, at=now)
            self.db.add(child)

            self._commit(Conflict, "Contract was resent concurrently")
        except MarketplaceError:
            self.db.rollback()
            raise

        logger.info("Contract %s resent as %s (iteration %s)", parent.id, child.id, child.resend_iteration)
        self.notifier.notify_contract_resent(child)
        return child

    def derive_flags(self, contract: Contract):
        return derive_flags(contract, self.influencer_edit_policy)

    # =========================================================================
    # READS
    # =========================================================================

    def get_contract(self, contract_id: str) -> Contract:
        contract = self.db.query(Contract).filter(Contract.id == contract_id).first()
        if not contract:
            raise NotFound("Contract not found")
        return contract

    def list_for_pair(self, brand_id: str, influencer_id: str) -> List[Contract]:
        return self.db.query(Contract).filter(
            Contract.brand_id == brand_id,
            Contract.influencer_id == influencer_id,
        ).order_by(Contract.created_at.desc(), Contract.resend_iteration.desc()).all()

    def final_rejected_for_influencer(self, influencer_id: str) -> List[Contract]:
        """Rejected contracts that were not continued by a resend."""
        return self.db.query(Contract).filter(
            Contract.influencer_id == influencer_id,
            Contract.status == ContractStatusDB.REJECTED,
            Contract.superseded_by.is_(None),
        ).order_by(Contract.updated_at.desc()).all()

    # =========================================================================
    # EVENT HANDLERS
    # Each validates before mutating and returns the audit details.
    # =========================================================================

    def _on_send(self, contract, actor, actor_id, payload, now):
        contract.sent_at = now
        return {}

    def _on_view(self, contract, actor, actor_id, payload, now):
        contract.viewed_at = now
        return {}

    def _on_propose_terms(self, contract, actor, actor_id, payload, now):
        flags = self.derive_flags(contract)
        if actor == ActorRole.BRAND:
            if not flags.can_edit_brand_fields:
                raise Forbidden("Brand fields are closed for editing once a party has confirmed")
            updates = _clean_terms(payload.get("terms"), BRAND_TERM_KEYS)
            column = "brand_terms"
        else:
            if not flags.can_edit_influencer_fields:
                raise Forbidden("Influencer fields are not open for editing")
            updates = _clean_terms(payload.get("terms"), INFLUENCER_TERM_KEYS)
            column = "influencer_terms"
        if not updates:
            raise ValidationError("terms must contain at least one editable field")

        fee = _parse_fee(updates["fee_amount"]) if "fee_amount" in updates else None

        before = getattr(contract, column) or {}
        after = {**before, **updates}
        fields = compute_edited_fields({actor.value: before}, {actor.value: after})

        setattr(contract, column, after)
        if fee is not None:
            contract.fee_amount = fee
        if updates.get("currency"):
            contract.currency = updates["currency"]
        contract.edited_fields = fields
        contract.last_edited_by = actor.value
        contract.last_edited_at = now
        return {"fields": fields}

    def _on_confirm(self, contract, actor, actor_id, payload, now):
        party = self._party(payload, actor, CONFIRMING_PARTIES)
        if is_confirmed(contract, party):
            raise Conflict(f"{party.value} has already confirmed")
        setattr(contract, f"{party.value}_confirmed", True)
        setattr(contract, f"{party.value}_confirmed_by", actor_id)
        setattr(contract, f"{party.value}_confirmed_at", now)
        return {"party": party.value}

    def _on_finalize_terms(self, contract, actor, actor_id, payload, now):
        contract.finalized_at = now
        return {}

    def _on_begin_signing(self, contract, actor, actor_id, payload, now):
        return {}

    def _on_sign(self, contract, actor, actor_id, payload, now):
        party = self._party(payload, actor, SIGNING_PARTIES)
        if is_signed(contract, party):
            raise Conflict(f"{party.value} has already signed")
        if party != ActorRole.PLATFORM and not is_confirmed(contract, ActorRole.INFLUENCER):
            raise PreconditionFailed("Influencer must confirm before signing")
        artifact, size = _signature_artifact(payload.get("signature_image"))

        override = payload.get("effective_date_override")
        if override and party != ActorRole.PLATFORM:
            raise Forbidden("Only the platform can override the effective date")

        prefix = party.value
        setattr(contract, f"{prefix}_signed", True)
        setattr(contract, f"{prefix}_signed_by", actor_id)
        setattr(contract, f"{prefix}_signer_name", payload.get("name"))
        setattr(contract, f"{prefix}_signer_email", payload.get("email"))
        setattr(contract, f"{prefix}_signed_at", now)
        if artifact:
            setattr(contract, f"{prefix}_signature_ref", artifact)
            setattr(contract, f"{prefix}_signature_bytes", size)
        if override:
            contract.effective_date_override = override
        return {"party": prefix, "name": payload.get("name"), "email": payload.get("email")}

    def _on_lock(self, contract, actor, actor_id, payload, now):
        if not all_signed(contract):
            raise PreconditionFailed(f"Missing signatures: {', '.join(missing_signatures(contract))}")
        contract.effective_date = resolve_effective_date(contract) or now
        contract.locked_at = now
        return {"all_signed": True, "effective_date": contract.effective_date.isoformat()}

    def _on_reject(self, contract, actor, actor_id, payload, now):
        reason = payload.get("reason")
        contract.rejected_at = now
        contract.rejection_reason = reason
        return {"reason": reason}

    def _on_admin_update(self, contract, actor, actor_id, payload, now):
        """Platform-owned terms, plus an optional bump of the legal template."""
        if all_signed(contract):
            raise PreconditionFailed("Terms cannot change once every party has signed")
        updates = _clean_terms(payload.get("admin_terms"), ADMIN_TERM_KEYS)
        legal_text = payload.get("legal_text")
        if not (legal_text and legal_text.strip()):
            legal_text = None
        if not updates and legal_text is None:
            raise ValidationError("admin_terms or legal_text is required")

        before = _admin_snapshot(contract)
        contract.admin_terms = {**(contract.admin_terms or {}), **updates}
        if legal_text is not None:
            version = (contract.legal_template_version or 1) + 1
            contract.legal_template_version = version
            contract.legal_template_text = legal_text
            contract.legal_template_history = [
                *(contract.legal_template_history or []),
                {"version": version, "text": legal_text, "updated_at": now.isoformat(), "updated_by": actor_id},
            ]
        fields = compute_edited_fields(before, _admin_snapshot(contract))

        contract.edited_fields = fields
        contract.last_edited_by = actor.value
        contract.last_edited_at = now
        return {
            "fields": fields,
            "admin_terms": sorted(updates),
            "legal_template_version": contract.legal_template_version,
        }

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _party(self, payload, actor, allowed) -> ActorRole:
        try:
            party = ActorRole(payload.get("party") or actor)
        except ValueError:
            raise ValidationError(f"Unknown party '{payload.get('party')}'")
        if party not in allowed:
            raise ValidationError(f"{party.value} is not a valid party for this event")
        if party != actor:
            raise Forbidden(f"{actor.value} cannot act for {party.value}")
        return party

    def _load(self, contract_id: str) -> Contract:
        contract = self.db.query(Contract).filter(Contract.id == contract_id).populate_existing().first()
        if not contract:
            raise NotFound("Contract not found")
        return contract

    def _append_audit(self, contract, actor_role, actor_id, event_type, details=None, at=None):
        contract.audit_events.append(ContractAuditEvent(
            sequence=len(contract.audit_events) + 1,
            at=at or datetime.utcnow(),
            actor_role=ActorRole(actor_role).value,
            actor_id=actor_id,
            event_type=event_type,
            details=_json_safe(details or {}),
        ))

    def _flush(self, error_cls, message):
        try:
            self.db.flush()
        except (StaleDataError, IntegrityError) as e:
            self.db.rollback()
            logger.warning("Contract write rejected: %s", e)
            raise error_cls(message)

    def _commit(self, error_cls, message):
        self._flush(error_cls, message)
        self.db.commit()

    def _notify(self, event, contract):
        if event == ContractEvent.SEND:
            self.notifier.notify_contract_sent(contract)
        elif event == ContractEvent.REJECT:
            self.notifier.notify_contract_rejected(contract)
        elif event == ContractEvent.LOCK:
            self.notifier.notify_contract_locked(contract)


def get_contract_service(db: Session) -> ContractService:
    """Get ContractService instance."""
    return ContractService(db)
