# Routers Module
# Exports the API routers for contracts and the escrow ledger

from routers.contracts import router as contracts_router
from routers.milestones import router as milestones_router

__all__ = [
    'contracts_router',
    'milestones_router',
]
