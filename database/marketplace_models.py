# Contract and Escrow Models for the Marketplace
# Contracts, their audit trail, per-brand escrow ledgers and milestone history.

from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Text, JSON, Enum, Boolean,
    Numeric, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from database.models import Base, generate_uuid


# ============================================================================
# ENUMS
# ============================================================================

class ContractStatusDB(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    NEGOTIATION = "negotiation"
    FINALIZE = "finalize"
    SIGNING = "signing"
    LOCKED = "locked"
    REJECTED = "rejected"


class PayoutStatusDB(str, enum.Enum):
    PENDING = "pending"
    INITIATED = "initiated"
    PAID = "paid"


def _enum(enum_cls, name):
    return Enum(enum_cls, values_callable=lambda x: [e.value for e in x], name=name)


# ============================================================================
# CAMPAIGN
# ============================================================================

class Campaign(Base):
    """Campaign budget record read by the budget guard.

    Campaign CRUD lives in the campaign service; only the fields the escrow
    ledger and contracts depend on are mapped here.
    """
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    brand_id = Column(String(36), nullable=False, index=True)

    title = Column(String(255))
    description = Column(Text)

    budget = Column(Numeric(12, 2), nullable=False, default=0)  # Ceiling across all milestones
    currency = Column(String(3), default="USD")

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ============================================================================
# CONTRACT
# ============================================================================

class Contract(Base):
    """One negotiation thread for a (brand, influencer, campaign) triple.

    `status` is the only stored state; client flags are derived in
    core.contract_state.derive_flags.
    """
    __tablename__ = "contracts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    brand_id = Column(String(36), nullable=False)
    influencer_id = Column(String(36), nullable=False, index=True)
    campaign_id = Column(String(36), ForeignKey("campaigns.id"), nullable=False)

    status = Column(_enum(ContractStatusDB, "contractstatusdb"), nullable=False, default=ContractStatusDB.DRAFT)

    # "brand:influencer:campaign" while active, NULL once superseded
    active_slot = Column(String(120), unique=True, nullable=True)

    # Commercial terms snapshot
    fee_amount = Column(Numeric(12, 2), default=0)
    currency = Column(String(3), default="USD")
    brand_terms = Column(JSON)       # Brand-owned fields
    influencer_terms = Column(JSON)  # Influencer-owned fields
    admin_terms = Column(JSON)       # Platform-owned fields

    # Versioned legal template; NULL text means the platform master template
    legal_template_version = Column(Integer, nullable=False, default=1)
    legal_template_text = Column(Text)
    legal_template_history = Column(JSON)  # [{version, text, updated_at, updated_by}]

    # Confirmations (acknowledgements, not signatures)
    brand_confirmed = Column(Boolean, default=False, nullable=False)
    brand_confirmed_by = Column(String(36))
    brand_confirmed_at = Column(DateTime)
    influencer_confirmed = Column(Boolean, default=False, nullable=False)
    influencer_confirmed_by = Column(String(36))
    influencer_confirmed_at = Column(DateTime)

    # Signatures (tri-party)
    brand_signed = Column(Boolean, default=False, nullable=False)
    brand_signed_by = Column(String(36))
    brand_signer_name = Column(String(255))
    brand_signer_email = Column(String(255))
    brand_signed_at = Column(DateTime)
    brand_signature_ref = Column(Text)  # data:image/...;base64,...
    brand_signature_bytes = Column(Integer)

    influencer_signed = Column(Boolean, default=False, nullable=False)
    influencer_signed_by = Column(String(36))
    influencer_signer_name = Column(String(255))
    influencer_signer_email = Column(String(255))
    influencer_signed_at = Column(DateTime)
    influencer_signature_ref = Column(Text)
    influencer_signature_bytes = Column(Integer)

    platform_signed = Column(Boolean, default=False, nullable=False)
    platform_signed_by = Column(String(36))
    platform_signer_name = Column(String(255))
    platform_signer_email = Column(String(255))
    platform_signed_at = Column(DateTime)
    platform_signature_ref = Column(Text)
    platform_signature_bytes = Column(Integer)

    # Edit tracking
    edited_fields = Column(JSON)
    last_edited_by = Column(String(20))
    last_edited_at = Column(DateTime)

    # Timeline
    sent_at = Column(DateTime)
    viewed_at = Column(DateTime)
    finalized_at = Column(DateTime)
    locked_at = Column(DateTime)
    effective_date = Column(DateTime)
    effective_date_override = Column(DateTime)  # Platform-only
    rejected_at = Column(DateTime)
    rejection_reason = Column(Text)

    # Resend lineage
    resend_iteration = Column(Integer, nullable=False, default=0)
    resend_of = Column(String(36), ForeignKey("contracts.id"), nullable=True)
    superseded_by = Column(String(36), nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_contracts_triple", "brand_id", "influencer_id", "campaign_id"),
    )

    # Relationships
    campaign = relationship("Campaign")
    audit_events = relationship(
        "ContractAuditEvent",
        back_populates="contract",
        order_by="ContractAuditEvent.sequence",
        cascade="all, delete-orphan",
    )


class ContractAuditEvent(Base):
    """Append-only audit trail entry on a contract."""
    __tablename__ = "contract_audit_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    contract_id = Column(String(36), ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False)
    sequence = Column(Integer, nullable=False)

    at = Column(DateTime, nullable=False)
    actor_role = Column(String(20), nullable=False)  # brand, influencer, platform, system
    actor_id = Column(String(36))
    event_type = Column(String(50), nullable=False)  # INITIATED, SENT, VIEWED, EDITED, ...
    details = Column(JSON)

    __table_args__ = (
        UniqueConstraint("contract_id", "sequence", name="uq_contract_audit_sequence"),
    )

    contract = relationship("Contract", back_populates="audit_events")


# ============================================================================
# ESCROW LEDGER
# ============================================================================

class EscrowLedger(Base):
    """Per-brand escrow record.

    wallet_balance always equals the sum of unreleased milestone amounts;
    total_amount is the lifetime sum and never decreases.
    """
    __tablename__ = "escrow_ledgers"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    brand_id = Column(String(36), unique=True, nullable=False)

    wallet_balance = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    milestones = relationship(
        "Milestone",
        back_populates="ledger",
        order_by="Milestone.sequence",
        cascade="all, delete-orphan",
    )


class Milestone(Base):
    """One funded unit of work owed to an influencer under a campaign."""
    __tablename__ = "milestones"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    ledger_id = Column(String(36), ForeignKey("escrow_ledgers.id", ondelete="CASCADE"), nullable=False)
    sequence = Column(Integer, nullable=False)

    influencer_id = Column(String(36), nullable=False)
    campaign_id = Column(String(36), ForeignKey("campaigns.id"), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, default="")

    amount = Column(Numeric(12, 2), nullable=False)           # Owed to the influencer
    gateway_fee = Column(Numeric(12, 2), nullable=False, default=0)
    amount_with_fee = Column(Numeric(12, 2), nullable=False)  # Informational only

    released = Column(Boolean, nullable=False, default=False)
    released_at = Column(DateTime)

    payout_status = Column(_enum(PayoutStatusDB, "payoutstatusdb"), nullable=False, default=PayoutStatusDB.PENDING)
    paid_at = Column(DateTime)
    paid_by = Column(String(36))

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("ledger_id", "sequence", name="uq_milestone_ledger_sequence"),
        Index("ix_milestones_influencer_campaign", "influencer_id", "campaign_id"),
        Index("ix_milestones_campaign", "campaign_id"),
    )

    ledger = relationship("EscrowLedger", back_populates="milestones")


# ============================================================================
# NOTIFICATION
# ============================================================================

class Notification(Base):
    """Notifications addressed to a brand or an influencer."""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    recipient_type = Column(String(20), nullable=False)  # brand, influencer
    recipient_id = Column(String(36), nullable=False, index=True)

    type = Column(String(50), nullable=False)  # contract.sent, milestone.released, ...
    title = Column(String(200), nullable=False)
    message = Column(Text)
    entity_type = Column(String(30))  # contract, campaign
    entity_id = Column(String(36))
    action_url = Column(String(500))
    data = Column(JSON)

    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime)

    created_at = Column(DateTime, server_default=func.now())
