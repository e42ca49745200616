"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backoffice.app.api.v1.endpoints import customers, invoices, ledger, admin_ledger

router = APIRouter()

# Customer registry
router.include_router(customers.router)

# Invoice lifecycle (drives the ledger)
router.include_router(invoices.router)

# Ledger entries, customer ledgers and summaries
router.include_router(ledger.router)

# Consistency audit and repair
router.include_router(admin_ledger.router)
