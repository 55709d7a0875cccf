"""
ClaimFlow - Role Hierarchy

Organization roles are strictly ordered: owner ⊇ admin ⊇ member. Every gate
in the application compares roles through ``is_role_at_least``.

Expense Action Matrix:
======================

| Action                         | Expense Owner | Assigned Manager | Admin | Owner |
|--------------------------------|---------------|------------------|-------|-------|
| submit (Draft)                 | X             |                  |       |       |
| pre_approve                    |               | X                | X     | X     |
| reject (Pre-Approval Pending)  |               | X                | X     | X     |
| submit_for_approval            | X             |                  |       |       |
| approve                        |               |                  | X     | X     |
| reject (Approval Pending)      |               |                  | X     | X     |
| reimburse (batch)              |               |                  | X     | X     |
| delete / restore               | X             |                  | X     | X     |
| admin_override / total override|               |                  | X     | X     |
| view finance dashboard/export  |               |                  | X     | X     |

Reviewers never act on their own expenses.
"""

from typing import Optional, Union

from app.models.organization import OrganizationRole


# Role stamped on audit entries for personal (organization-less) expenses
PERSONAL_ROLE = "employee"


# ===========================================
# ROLE HIERARCHY
# ===========================================

ORGANIZATION_ROLE_HIERARCHY = {
    OrganizationRole.OWNER: 3,
    OrganizationRole.ADMIN: 2,
    OrganizationRole.MEMBER: 1,
}


def get_organization_role_level(role: Optional[Union[OrganizationRole, str]]) -> int:
    """Get the hierarchy level of an organization role. Unknown roles rank 0."""
    if role is None:
        return 0
    try:
        role = OrganizationRole(role)
    except ValueError:
        return 0
    return ORGANIZATION_ROLE_HIERARCHY.get(role, 0)


def is_role_at_least(
    actual: Optional[Union[OrganizationRole, str]],
    required: Union[OrganizationRole, str],
) -> bool:
    """Check if ``actual`` satisfies ``required`` in the hierarchy."""
    actual_level = get_organization_role_level(actual)
    return actual_level > 0 and actual_level >= get_organization_role_level(required)
