"""
ClaimFlow - Routers Package

FastAPI route handlers.

Routers:
- expenses: Expense authoring and the approval workflow
- review_queue: Pending expenses for managers and admins
- finance: Finance dashboard, batch reimbursement and exports
- exports: Self-service exports
- reactive_linking: Moving personal drafts into an organization
- organizations: Manager directory and membership
"""

from app.routers import (
    expenses,
    review_queue,
    finance,
    exports,
    reactive_linking,
    organizations,
)

__all__ = [
    "expenses",
    "review_queue",
    "finance",
    "exports",
    "reactive_linking",
    "organizations",
]
