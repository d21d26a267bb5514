# Services Module for the Contracts & Escrow service
# Contains business logic services

from services.notification_service import NotificationService, NotificationType, get_notification_service
from services.budget_guard import BudgetGuard, CampaignBudget
from services.contract_service import ContractService, get_contract_service
from services.escrow_ledger_service import EscrowLedgerService, get_escrow_ledger_service

__all__ = [
    'NotificationService',
    'NotificationType',
    'get_notification_service',
    'BudgetGuard',
    'CampaignBudget',
    'ContractService',
    'get_contract_service',
    'EscrowLedgerService',
    'get_escrow_ledger_service',
]
