# Schemas module for the Contracts & Escrow service
# Organizes all Pydantic schemas in a modular structure

from schemas.contracts import (
    # Terms
    Deliverable,
    BrandTerms,
    InfluencerTerms,
    AdminTerms,

    # Requests
    ContractCreate,
    ContractEventRequest,
    ContractResendRequest,

    # Responses
    AuditEventResponse,
    LegalTemplateRevision,
    SignatureResponse,
    ContractResponse,
)

from schemas.escrow import (
    MilestoneCreate,
    MilestoneResponse,
    LedgerResponse,
    BalanceResponse,
    PaidTotalResponse,
)
