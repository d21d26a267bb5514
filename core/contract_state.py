# Contract state machine: transition table, actor rules and derived flags
# Everything here is pure; persistence lives in services.contract_service.

import json
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel

from config.app_config import INFLUENCER_EDIT_POLICY
from database.marketplace_models import ContractStatusDB as Status


class ContractEvent(str, Enum):
    SEND = "send"
    VIEW = "view"
    PROPOSE_TERMS = "propose_terms"
    CONFIRM = "confirm"
    FINALIZE_TERMS = "finalize_terms"
    BEGIN_SIGNING = "begin_signing"
    SIGN = "sign"
    LOCK = "lock"
    REJECT = "reject"
    ADMIN_UPDATE = "admin_update"


class ActorRole(str, Enum):
    BRAND = "brand"
    INFLUENCER = "influencer"
    PLATFORM = "platform"
    SYSTEM = "system"


class EditPolicy(str, Enum):
    AFTER_CONFIRM = "after_confirm"
    BEFORE_CONFIRM = "before_confirm"


CONFIRMING_PARTIES = (ActorRole.BRAND, ActorRole.INFLUENCER)
SIGNING_PARTIES = (ActorRole.BRAND, ActorRole.INFLUENCER, ActorRole.PLATFORM)

_PRE_FINALIZE = frozenset({Status.DRAFT, Status.SENT, Status.VIEWED, Status.NEGOTIATION})
_ALL_PARTIES = frozenset(SIGNING_PARTIES)

# event -> (legal source states, target state or None when status is unchanged)
TRANSITIONS: Dict[ContractEvent, Tuple[FrozenSet[Status], Optional[Status]]] = {
    ContractEvent.SEND: (frozenset({Status.DRAFT}), Status.SENT),
    ContractEvent.VIEW: (frozenset({Status.SENT}), Status.VIEWED),
    ContractEvent.PROPOSE_TERMS: (frozenset({Status.VIEWED, Status.NEGOTIATION}), Status.NEGOTIATION),
    ContractEvent.CONFIRM: (frozenset({Status.VIEWED, Status.NEGOTIATION}), None),
    ContractEvent.FINALIZE_TERMS: (frozenset({Status.NEGOTIATION}), Status.FINALIZE),
    ContractEvent.BEGIN_SIGNING: (frozenset({Status.FINALIZE}), Status.SIGNING),
    ContractEvent.SIGN: (frozenset({Status.SIGNING}), None),
    ContractEvent.LOCK: (frozenset({Status.SIGNING}), Status.LOCKED),
    ContractEvent.REJECT: (frozenset(Status) - {Status.LOCKED, Status.REJECTED}, Status.REJECTED),
    ContractEvent.ADMIN_UPDATE: (frozenset(Status) - {Status.LOCKED, Status.REJECTED}, None),
}

# Who may apply each event. CONFIRM and SIGN are further restricted to the
# party named in the event.
EVENT_ACTORS: Dict[ContractEvent, FrozenSet[ActorRole]] = {
    ContractEvent.SEND: frozenset({ActorRole.BRAND}),
    ContractEvent.VIEW: frozenset({ActorRole.INFLUENCER}),
    ContractEvent.PROPOSE_TERMS: frozenset({ActorRole.BRAND, ActorRole.INFLUENCER}),
    ContractEvent.CONFIRM: frozenset(CONFIRMING_PARTIES),
    ContractEvent.FINALIZE_TERMS: _ALL_PARTIES,
    ContractEvent.BEGIN_SIGNING: _ALL_PARTIES,
    ContractEvent.SIGN: _ALL_PARTIES,
    ContractEvent.LOCK: _ALL_PARTIES,
    ContractEvent.REJECT: _ALL_PARTIES,
    ContractEvent.ADMIN_UPDATE: frozenset({ActorRole.PLATFORM}),
}

# Audit event names
AUDIT_EVENT_TYPES: Dict[ContractEvent, str] = {
    ContractEvent.SEND: "SENT",
    ContractEvent.VIEW: "VIEWED",
    ContractEvent.PROPOSE_TERMS: "EDITED",
    ContractEvent.CONFIRM: "CONFIRMED",
    ContractEvent.FINALIZE_TERMS: "FINALIZED",
    ContractEvent.BEGIN_SIGNING: "SIGNING_STARTED",
    ContractEvent.SIGN: "SIGNED",
    ContractEvent.LOCK: "LOCKED",
    ContractEvent.REJECT: "REJECTED",
    ContractEvent.ADMIN_UPDATE: "ADMIN_UPDATED",
}

BRAND_TERM_KEYS = (
    "campaign_title", "platforms", "go_live_start", "go_live_end", "fee_amount",
    "currency", "milestone_split", "usage_rights", "revisions_included",
    "deliverables", "requested_effective_date",
)

INFLUENCER_TERM_KEYS = ("shipping_address", "data_access", "tax_form_type")

ADMIN_TERM_KEYS = (
    "governing_law", "arbitration_seat", "timezone", "jurisdiction", "fx_source",
    "brand_review_window_days", "extra_revision_fee", "escrow_aml_flags",
)


def is_legal(event: ContractEvent, current: Status) -> bool:
    sources, _ = TRANSITIONS[event]
    return current in sources


def target_status(event: ContractEvent, current: Status) -> Status:
    _, target = TRANSITIONS[event]
    return target or current


def is_confirmed(contract, party: ActorRole) -> bool:
    return bool(getattr(contract, f"{party.value}_confirmed"))


def is_signed(contract, party: ActorRole) -> bool:
    return bool(getattr(contract, f"{party.value}_signed"))


def all_signed(contract) -> bool:
    return all(is_signed(contract, p) for p in SIGNING_PARTIES)


def missing_signatures(contract) -> List[str]:
    return [p.value for p in SIGNING_PARTIES if not is_signed(contract, p)]


def resolve_effective_date(contract) -> Optional[datetime]:
    """Latest signature timestamp, unless the platform set an override."""
    if contract.effective_date_override:
        return contract.effective_date_override
    dates = [getattr(contract, f"{p.value}_signed_at") for p in SIGNING_PARTIES]
    dates = [d for d in dates if d]
    return max(dates) if dates else None


# ============================================================================
# DERIVED FLAGS
# ============================================================================

class ContractFlags(BaseModel):
    """Client-facing booleans, recomputed from status/confirmations/signatures."""
    is_draft: bool
    is_sent: bool
    is_viewed: bool
    is_negotiation: bool
    is_finalized: bool
    is_signing: bool
    is_locked: bool
    is_rejected: bool

    is_brand_confirmed: bool
    is_influencer_confirmed: bool

    is_brand_signed: bool
    is_influencer_signed: bool
    is_platform_signed: bool
    is_both_signed: bool

    can_edit_brand_fields: bool
    can_edit_influencer_fields: bool
    can_edit_admin_fields: bool
    can_sign_brand: bool
    can_sign_influencer: bool
    can_sign_platform: bool
    can_lock: bool
    can_reject: bool
    can_resend: bool

    is_resend_child: bool
    is_superseded: bool

    class Config:
        frozen = True


def derive_flags(contract, influencer_edit_policy: str = None) -> ContractFlags:
    status = Status(contract.status)
    policy = EditPolicy(influencer_edit_policy or INFLUENCER_EDIT_POLICY)

    brand_confirmed = is_confirmed(contract, ActorRole.BRAND)
    influencer_confirmed = is_confirmed(contract, ActorRole.INFLUENCER)
    signed = {p: is_signed(contract, p) for p in SIGNING_PARTIES}
    every_signature = all(signed.values())

    editable = status in _PRE_FINALIZE and not every_signature
    can_edit_brand = editable and not brand_confirmed and not influencer_confirmed
    if policy is EditPolicy.AFTER_CONFIRM:
        can_edit_influencer = editable and influencer_confirmed
    else:
        can_edit_influencer = can_edit_brand

    signing = status == Status.SIGNING

    return ContractFlags(
        is_draft=status == Status.DRAFT,
        is_sent=status == Status.SENT,
        is_viewed=status == Status.VIEWED,
        is_negotiation=status == Status.NEGOTIATION,
        is_finalized=status == Status.FINALIZE,
        is_signing=signing,
        is_locked=status == Status.LOCKED,
        is_rejected=status == Status.REJECTED,
        is_brand_confirmed=brand_confirmed,
        is_influencer_confirmed=influencer_confirmed,
        is_brand_signed=signed[ActorRole.BRAND],
        is_influencer_signed=signed[ActorRole.INFLUENCER],
        is_platform_signed=signed[ActorRole.PLATFORM],
        is_both_signed=every_signature,
        can_edit_brand_fields=can_edit_brand,
        can_edit_influencer_fields=can_edit_influencer,
        can_edit_admin_fields=is_legal(ContractEvent.ADMIN_UPDATE, status) and not every_signature,
        can_sign_brand=signing and influencer_confirmed and not signed[ActorRole.BRAND],
        can_sign_influencer=signing and influencer_confirmed and not signed[ActorRole.INFLUENCER],
        can_sign_platform=signing and not signed[ActorRole.PLATFORM],
        can_lock=signing and every_signature,
        can_reject=is_legal(ContractEvent.REJECT, status),
        can_resend=status == Status.REJECTED and not contract.superseded_by,
        is_resend_child=bool(contract.resend_of),
        is_superseded=bool(contract.superseded_by),
    )


# ============================================================================
# EDIT TRACKING
# ============================================================================

def _flatten(obj, prefix=""):
    out = {}
    for key, value in (obj or {}).items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            out.update(_flatten(value, path))
        else:
            out[path] = value
    return out


def compute_edited_fields(before: dict, after: dict) -> List[str]:
    """Dotted paths whose values differ between two term snapshots."""
    prev, nxt = _flatten(before), _flatten(after)
    changed = set()
    for key in set(prev) | set(nxt):
        a = json.dumps(prev.get(key), sort_keys=True, default=str)
        b = json.dumps(nxt.get(key), sort_keys=True, default=str)
        if a != b:
            changed.add(key)
    return sorted(changed)
