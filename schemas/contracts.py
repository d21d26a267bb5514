# Pydantic Schemas for Contracts
# Request bodies and responses for the contract negotiation lifecycle

from pydantic import BaseModel, Field, validator
from typing import Any, Dict, List, Optional
from datetime import date, datetime
from decimal import Decimal

from core.contract_state import ActorRole, ContractEvent, ContractFlags
from database.marketplace_models import ContractStatusDB


# ============================================================================
# TERMS
# ============================================================================

class Deliverable(BaseModel):
    """One piece of content the influencer owes."""
    type: str = Field(..., max_length=50)
    quantity: int = Field(1, ge=1)
    format: Optional[str] = None
    handles: List[str] = []
    caption_requirements: Optional[str] = None
    links: List[str] = []
    draft_required: bool = False
    draft_due_date: Optional[date] = None
    go_live_start: Optional[date] = None
    go_live_end: Optional[date] = None
    minimum_live_hours: Optional[int] = Field(None, ge=0)


class BrandTerms(BaseModel):
    """Fields only the brand may edit."""
    campaign_title: Optional[str] = Field(None, max_length=255)
    platforms: Optional[List[str]] = None
    go_live_start: Optional[date] = None
    go_live_end: Optional[date] = None
    fee_amount: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    milestone_split: Optional[str] = None
    usage_rights: Optional[str] = None
    revisions_included: Optional[int] = Field(None, ge=0)
    deliverables: Optional[List[Deliverable]] = None
    requested_effective_date: Optional[datetime] = None

    @validator("currency")
    def upper_currency(cls, v):
        return v.upper() if v else v


class InfluencerTerms(BaseModel):
    """Fields only the influencer may edit."""
    shipping_address: Optional[Dict[str, Any]] = None
    data_access: Optional[Dict[str, Any]] = None
    tax_form_type: Optional[str] = Field(None, max_length=20)


class AdminTerms(BaseModel):
    """Fields only the platform may edit."""
    governing_law: Optional[str] = Field(None, max_length=255)
    arbitration_seat: Optional[str] = Field(None, max_length=255)
    timezone: Optional[str] = Field(None, max_length=64)
    jurisdiction: Optional[str] = Field(None, max_length=255)
    fx_source: Optional[str] = Field(None, max_length=50)
    brand_review_window_days: Optional[int] = Field(None, ge=0)
    extra_revision_fee: Optional[Decimal] = Field(None, ge=0)
    escrow_aml_flags: Optional[str] = None


# ============================================================================
# REQUESTS
# ============================================================================

class ContractCreate(BaseModel):
    """Brand drafts a contract for an influencer on one of its campaigns."""
    influencer_id: str
    campaign_id: str
    brand_id: Optional[str] = None  # Admins only; brands always act for themselves
    terms: Optional[BrandTerms] = None


class ContractEventRequest(BaseModel):
    """
    Apply one event to a contract.

    `expected_status` makes the write conditional: the event is refused if
    the contract has moved on since the client last read it.
    """
    event: ContractEvent
    expected_status: Optional[ContractStatusDB] = None
    party: Optional[ActorRole] = None

    # propose_terms
    terms: Optional[Dict[str, Any]] = None

    # sign
    name: Optional[str] = Field(None, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    signature_image: Optional[str] = None
    effective_date_override: Optional[datetime] = None

    # reject
    reason: Optional[str] = Field(None, max_length=1000)

    # admin_update
    admin_terms: Optional[AdminTerms] = None
    legal_text: Optional[str] = None

    def payload(self) -> dict:
        return self.model_dump(exclude={"event", "expected_status"}, exclude_none=True)


class ContractResendRequest(BaseModel):
    terms: Optional[BrandTerms] = None


# ============================================================================
# RESPONSES
# ============================================================================

class AuditEventResponse(BaseModel):
    sequence: int
    at: datetime
    actor_role: str
    actor_id: Optional[str] = None
    event_type: str
    details: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class LegalTemplateRevision(BaseModel):
    version: int
    text: str
    updated_at: datetime
    updated_by: Optional[str] = None


class SignatureResponse(BaseModel):
    signed: bool = False
    signed_by: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    signed_at: Optional[datetime] = None
    has_signature_image: bool = False


class ContractResponse(BaseModel):
    """Contract state plus client-facing derived flags."""
    id: str
    brand_id: str
    influencer_id: str
    campaign_id: str
    status: ContractStatusDB

    fee_amount: Decimal
    currency: str
    brand_terms: Dict[str, Any] = {}
    influencer_terms: Dict[str, Any] = {}
    admin_terms: Dict[str, Any] = {}

    legal_template_version: int = 1
    legal_template_text: Optional[str] = None
    legal_template_history: List[LegalTemplateRevision] = []

    brand_confirmed_at: Optional[datetime] = None
    influencer_confirmed_at: Optional[datetime] = None
    signatures: Dict[str, SignatureResponse] = {}

    edited_fields: List[str] = []
    last_edited_by: Optional[str] = None
    last_edited_at: Optional[datetime] = None

    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    effective_date: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    resend_iteration: int = 0
    resend_of: Optional[str] = None
    superseded_by: Optional[str] = None
    version: int

    flags: ContractFlags
    audit_events: List[AuditEventResponse] = []

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
