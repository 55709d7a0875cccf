"""
ClaimFlow - Services Package

Business logic services.
"""

from app.services.audit_service import AuditService
from app.services.permission_service import PermissionService
from app.services.expense_workflow_service import ExpenseWorkflowService
from app.services.expense_service import ExpenseService
from app.services.expense_query_service import ExpenseQueryService
from app.services.expense_export_service import ExpenseExportService
from app.services.reactive_linking_service import ReactiveLinkingService
from app.services.organization_service import OrganizationService

__all__ = [
    "AuditService",
    "PermissionService",
    "ExpenseWorkflowService",
    "ExpenseService",
    "ExpenseQueryService",
    "ExpenseExportService",
    "ReactiveLinkingService",
    "OrganizationService",
]
