# Contracts Router
# Drafting, negotiation events, signatures and resends for brand/influencer contracts

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List

from database.config import get_db
from database.models import User
from database.marketplace_models import Contract
from schemas.contracts import (
    AuditEventResponse,
    ContractCreate,
    ContractEventRequest,
    ContractResendRequest,
    ContractResponse,
    SignatureResponse,
)
from auth.roles import Permission, UserType, actor_role_for, has_permission
from auth.decorators import get_user_type, require_permission, require_user_type
from core.contract_state import SIGNING_PARTIES
from core.errors import Forbidden, ValidationError
from services.contract_service import ContractService, get_contract_service

router = APIRouter(prefix="/contracts", tags=["Contracts"])

view_contracts = require_permission(Permission.VIEW_OWN_CONTRACTS)
act_on_contracts = require_permission(Permission.NEGOTIATE_CONTRACTS, Permission.SIGN_CONTRACTS)


# ============================================================================
# HELPERS
# ============================================================================

def _check_party(contract: Contract, user: User):
    """Brands and influencers may only touch their own contracts."""
    user_type = get_user_type(user)
    if has_permission(user_type, Permission.VIEW_ALL_CONTRACTS):
        return
    if user_type == UserType.BRAND and contract.brand_id == user.id:
        return
    if user_type == UserType.INFLUENCER and contract.influencer_id == user.id:
        return
    raise Forbidden("You are not a party to this contract")


def _signatures(contract: Contract) -> dict:
    out = {}
    for party in SIGNING_PARTIES:
        p = party.value
        out[p] = SignatureResponse(
            signed=bool(getattr(contract, f"{p}_signed")),
            signed_by=getattr(contract, f"{p}_signed_by"),
            name=getattr(contract, f"{p}_signer_name"),
            email=getattr(contract, f"{p}_signer_email"),
            signed_at=getattr(contract, f"{p}_signed_at"),
            has_signature_image=bool(getattr(contract, f"{p}_signature_ref")),
        )
    return out


def _contract_to_response(contract: Contract, service: ContractService) -> ContractResponse:
    return ContractResponse(
        id=contract.id,
        brand_id=contract.brand_id,
        influencer_id=contract.influencer_id,
        campaign_id=contract.campaign_id,
        status=contract.status,
        fee_amount=contract.fee_amount or 0,
        currency=contract.currency,
        brand_terms=contract.brand_terms or {},
        influencer_terms=contract.influencer_terms or {},
        admin_terms=contract.admin_terms or {},
        legal_template_version=contract.legal_template_version or 1,
        legal_template_text=contract.legal_template_text,
        legal_template_history=contract.legal_template_history or [],
        brand_confirmed_at=contract.brand_confirmed_at,
        influencer_confirmed_at=contract.influencer_confirmed_at,
        signatures=_signatures(contract),
        edited_fields=contract.edited_fields or [],
        last_edited_by=contract.last_edited_by,
        last_edited_at=contract.last_edited_at,
        sent_at=contract.sent_at,
        viewed_at=contract.viewed_at,
        finalized_at=contract.finalized_at,
        locked_at=contract.locked_at,
        effective_date=contract.effective_date,
        rejected_at=contract.rejected_at,
        rejection_reason=contract.rejection_reason,
        resend_iteration=contract.resend_iteration or 0,
        resend_of=contract.resend_of,
        superseded_by=contract.superseded_by,
        version=contract.version,
        flags=service.derive_flags(contract),
        audit_events=[AuditEventResponse.model_validate(e) for e in contract.audit_events],
        created_at=contract.created_at,
        updated_at=contract.updated_at,
    )


# ============================================================================
# BRAND ENDPOINTS
# ============================================================================

@router.post("", response_model=ContractResponse, status_code=status.HTTP_201_CREATED)
async def create_contract(
    contract_data: ContractCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.DRAFT_CONTRACTS)),
):
    """
    Draft a contract for an influencer on one of the brand's campaigns.
    Only one active contract may exist per brand, influencer and campaign.
    """
    if get_user_type(current_user) == UserType.ADMIN:
        if not contract_data.brand_id:
            raise ValidationError("brand_id is required when drafting as an admin")
        brand_id = contract_data.brand_id
    else:
        brand_id = current_user.id

    service = get_contract_service(db)
    contract = service.create_draft(
        brand_id=brand_id,
        influencer_id=contract_data.influencer_id,
        campaign_id=contract_data.campaign_id,
        terms=contract_data.terms.model_dump(exclude_none=True) if contract_data.terms else None,
        actor_id=current_user.id,
    )
    return _contract_to_response(contract, service)


@router.post("/{contract_id}/resend", response_model=ContractResponse, status_code=status.HTTP_201_CREATED)
async def resend_contract(
    contract_id: str,
    resend_data: ContractResendRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.RESEND_CONTRACTS)),
):
    """
    Resend a rejected contract with revised terms. The new contract starts
    in 'sent' and the rejected one is marked superseded.
    """
    service = get_contract_service(db)
    _check_party(service.get_contract(contract_id), current_user)

    child = service.resend(
        contract_id,
        new_terms=resend_data.terms.model_dump(exclude_none=True) if resend_data.terms else None,
        actor_id=current_user.id,
        actor_role=actor_role_for(get_user_type(current_user)),
    )
    return _contract_to_response(child, service)


# ============================================================================
# SHARED ENDPOINTS
# ============================================================================

@router.get("", response_model=List[ContractResponse])
async def list_contracts(
    brand_id: str = Query(..., description="Brand user id"),
    influencer_id: str = Query(..., description="Influencer user id"),
    db: Session = Depends(get_db),
    current_user: User = Depends(view_contracts),
):
    """
    All contracts between a brand and an influencer, newest first.
    """
    user_type = get_user_type(current_user)
    if user_type == UserType.BRAND and brand_id != current_user.id:
        raise Forbidden("You can only list your own contracts")
    if user_type == UserType.INFLUENCER and influencer_id != current_user.id:
        raise Forbidden("You can only list your own contracts")

    service = get_contract_service(db)
    return [_contract_to_response(c, service) for c in service.list_for_pair(brand_id, influencer_id)]


@router.get("/rejected/final", response_model=List[ContractResponse])
async def list_final_rejected(
    influencer_id: str = Query(..., description="Influencer user id"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user_type(UserType.INFLUENCER)),
):
    """
    Rejected contracts for an influencer that were never resent.
    """
    if get_user_type(current_user) == UserType.INFLUENCER and influencer_id != current_user.id:
        raise Forbidden("You can only list your own contracts")

    service = get_contract_service(db)
    return [_contract_to_response(c, service) for c in service.final_rejected_for_influencer(influencer_id)]


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(
    contract_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(view_contracts),
):
    """
    Get a contract with its derived flags and audit trail.
    """
    service = get_contract_service(db)
    contract = service.get_contract(contract_id)
    _check_party(contract, current_user)
    return _contract_to_response(contract, service)


@router.post("/{contract_id}/events", response_model=ContractResponse)
async def apply_contract_event(
    contract_id: str,
    event_data: ContractEventRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(act_on_contracts),
):
    """
    Apply one lifecycle event (send, view, propose_terms, confirm,
    finalize_terms, begin_signing, sign, lock, reject, admin_update).
    """
    service = get_contract_service(db)
    _check_party(service.get_contract(contract_id), current_user)

    contract = service.advance(
        contract_id,
        actor_role=actor_role_for(get_user_type(current_user)),
        event=event_data.event,
        actor_id=current_user.id,
        payload=event_data.payload(),
        expected_status=event_data.expected_status,
    )
    return _contract_to_response(contract, service)
