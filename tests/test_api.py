"""
ClaimFlow - API Tests

End-to-end requests against the FastAPI app with an in-memory database.
"""

import uuid
from decimal import Decimal

import pytest

from app.models.audit import OrganizationAuditAction
from app.models.expense import ExpenseState
from app.models.organization import OrganizationRole
from app.services.audit_service import AuditService
from app.services.organization_service import OrganizationService


LINE_ITEMS = [
    {"amount": "60.00", "date": "2026-01-05", "category": "Travel", "description": "Train"},
    {"amount": "40.00", "date": "2026-01-06", "category": "Meals", "description": "Dinner"},
]


class TestSession:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/api/expenses")
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Unauthorized", "code": "UNAUTHORIZED"}

    @pytest.mark.asyncio
    async def test_garbage_token(self, client):
        response = await client.get("/api/expenses", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_cookie_token(self, client, db_session, employee, auth_headers):
        token = auth_headers(employee)["Authorization"].split(" ", 1)[1]
        client.cookies.set("access_token", token)
        response = await client.get("/api/expenses")
        client.cookies.clear()
        assert response.status_code == 200


class TestExpenseEndpoints:

    @pytest.mark.asyncio
    async def test_create_and_read(self, client, test_organization, employee, manager, auth_headers):
        response = await client.post(
            "/api/expenses",
            json={
                "organizationId": str(test_organization.id),
                "managerIds": [str(manager.id)],
                "lineItems": LINE_ITEMS,
            },
            headers=auth_headers(employee),
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["state"] == "Draft"
        assert data["totalAmount"] == "100.00"
        assert len(data["auditTrail"]) == 1

        response = await client.get(f"/api/expenses/{data['id']}", headers=auth_headers(manager))
        assert response.status_code == 200

        response = await client.get(f"/api/expenses/{data['id']}/audit-trail", headers=auth_headers(employee))
        assert [entry["action"] for entry in response.json()["data"]] == ["CREATE"]
        assert response.json()["data"][0]["label"] == "Created"

    @pytest.mark.asyncio
    async def test_invalid_body(self, client, employee, auth_headers):
        response = await client.post(
            "/api/expenses",
            json={"lineItems": [{"amount": "-1", "date": "2026-01-05"}]},
            headers=auth_headers(employee),
        )
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_expense(self, client, employee, auth_headers):
        response = await client.get(f"/api/expenses/{uuid.uuid4()}", headers=auth_headers(employee))
        assert response.status_code == 404
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_list_pagination(self, client, employee, auth_headers, make_expense):
        for _ in range(3):
            await make_expense(employee)
        response = await client.get("/api/expenses?limit=2", headers=auth_headers(employee))
        data = response.json()["data"]
        assert len(data["expenses"]) == 2
        assert data["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}

    @pytest.mark.asyncio
    async def test_full_workflow(
        self, client, test_organization, employee, manager, admin, auth_headers
    ):
        created = await client.post(
            "/api/expenses",
            json={
                "organizationId": str(test_organization.id),
                "managerIds": [str(manager.id)],
                "lineItems": LINE_ITEMS,
            },
            headers=auth_headers(employee),
        )
        expense_id = created.json()["data"]["id"]

        response = await client.post(f"/api/expenses/{expense_id}/submit", headers=auth_headers(employee))
        assert response.json()["data"]["state"] == "Pre-Approval Pending"

        queue = await client.get("/api/review-queue", headers=auth_headers(manager))
        assert [e["id"] for e in queue.json()["data"]] == [expense_id]
        assert queue.json()["data"][0]["employee"]["name"] == "Ethan"

        response = await client.post(
            "/api/review-queue",
            json={"expenseId": expense_id, "action": "pre-approve", "comment": "Looks fine"},
            headers=auth_headers(manager),
        )
        assert response.json()["data"] == {"expenseId": expense_id, "newStatus": "Pre-Approved"}

        response = await client.post(
            f"/api/expenses/{expense_id}/submit-for-approval", headers=auth_headers(employee)
        )
        assert response.json()["data"]["state"] == "Approval Pending"

        response = await client.post(f"/api/expenses/{expense_id}/approve", headers=auth_headers(admin))
        assert response.json()["data"]["state"] == "Approved"

        response = await client.post(
            "/api/finance/reimburse",
            json={"expenseIds": [expense_id]},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200
        assert response.json()["data"] == {"updatedCount": 1, "expenseIds": [expense_id]}

        trail = await client.get(f"/api/expenses/{expense_id}/audit-trail", headers=auth_headers(employee))
        entries = trail.json()["data"]
        assert len(entries) == 6
        assert entries[2]["metadata"] == {"comment": "Looks fine"}

    @pytest.mark.asyncio
    async def test_invalid_transition_is_409(self, client, test_organization, employee, admin, auth_headers, make_expense):
        expense = await make_expense(employee, test_organization)
        response = await client.post(f"/api/expenses/{expense.id}/approve", headers=auth_headers(admin))
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_total_mismatch_and_reconcile(
        self, client, test_organization, employee, manager, auth_headers, make_expense
    ):
        expense = await make_expense(
            employee, test_organization, managers=[manager], amounts=["60.00", "40.00"], total_amount=Decimal("120.00")
        )
        response = await client.post(f"/api/expenses/{expense.id}/submit", headers=auth_headers(employee))
        assert response.status_code == 400
        assert response.json()["code"] == "TOTAL_MISMATCH"

        response = await client.post(
            f"/api/expenses/{expense.id}/submit",
            json={"reconcileTotal": True},
            headers=auth_headers(employee),
        )
        assert response.status_code == 200
        assert response.json()["data"]["totalAmount"] == "100.00"

    @pytest.mark.asyncio
    async def test_delete_and_restore(self, client, test_organization, employee, auth_headers, make_expense):
        expense = await make_expense(employee, test_organization)
        response = await client.delete(f"/api/expenses/{expense.id}", headers=auth_headers(employee))
        assert response.json()["data"]["state"] == "Deleted"

        response = await client.post(f"/api/expenses/{expense.id}/restore", headers=auth_headers(employee))
        assert response.json()["data"]["state"] == "Draft"

    @pytest.mark.asyncio
    async def test_visible_requires_membership(self, client, test_organization, outsider, auth_headers):
        response = await client.get(
            f"/api/expenses/visible?organizationId={test_organization.id}",
            headers=auth_headers(outsider),
        )
        assert response.status_code == 403


class TestReviewQueueEndpoint:

    @pytest.mark.asyncio
    async def test_invalid_decision(self, client, manager, auth_headers):
        response = await client.post(
            "/api/review-queue",
            json={"expenseId": str(uuid.uuid4()), "action": "escalate"},
            headers=auth_headers(manager),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid action"

    @pytest.mark.asyncio
    async def test_missing_fields(self, client, manager, auth_headers):
        response = await client.post("/api/review-queue", json={"action": "approve"}, headers=auth_headers(manager))
        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields"

    @pytest.mark.asyncio
    async def test_invalid_status_filter(self, client, manager, auth_headers):
        response = await client.get("/api/review-queue?status=Sideways", headers=auth_headers(manager))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_foreign_organization(self, client, other_organization, manager, auth_headers):
        response = await client.get(
            f"/api/review-queue?organizationId={other_organization.id}",
            headers=auth_headers(manager),
        )
        assert response.status_code == 403


class TestFinanceEndpoints:

    @pytest.mark.asyncio
    async def test_organization_required(self, client, admin, auth_headers):
        response = await client.get("/api/finance/expenses", headers=auth_headers(admin))
        assert response.status_code == 400
        assert response.json()["error"] == "Organization ID required"

    @pytest.mark.asyncio
    async def test_unknown_organization(self, client, admin, auth_headers):
        response = await client.get(
            f"/api/finance/expenses?organizationId={uuid.uuid4()}", headers=auth_headers(admin)
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_member_forbidden(self, client, test_organization, employee, auth_headers):
        response = await client.get(
            f"/api/finance/expenses?organizationId={test_organization.id}", headers=auth_headers(employee)
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Finance access required"

    @pytest.mark.asyncio
    async def test_dashboard_lists_approved_and_logs_access(
        self, client, db_session, test_organization, employee, admin, auth_headers, make_expense
    ):
        await make_expense(employee, test_organization, amounts=["100.00"], state=ExpenseState.APPROVED)
        await make_expense(employee, test_organization, amounts=["25.50"], state=ExpenseState.APPROVED)
        await make_expense(employee, test_organization, amounts=["9.99"])

        response = await client.get(
            f"/api/finance/expenses?organizationId={test_organization.id}", headers=auth_headers(admin)
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["count"] == 2
        assert data["totalPayout"] == "125.50"

        events = await AuditService(db_session).get_organization_events(
            test_organization.id, OrganizationAuditAction.FINANCE_DASHBOARD_ACCESS
        )
        assert len(events) == 1
        assert events[0].actor_id == admin.id
        assert events[0].event_metadata == {
            "action": "view_approved_expenses",
            "count": 2,
            "totalPayout": "125.50",
        }

    @pytest.mark.asyncio
    async def test_reimburse_partial_match(self, client, test_organization, employee, admin, auth_headers, make_expense):
        approved = await make_expense(employee, test_organization, state=ExpenseState.APPROVED)
        draft = await make_expense(employee, test_organization)

        response = await client.post(
            "/api/finance/reimburse",
            json={"expenseIds": [str(approved.id), str(draft.id)]},
            headers=auth_headers(admin),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "PARTIAL_MATCH"

    @pytest.mark.asyncio
    async def test_reimburse_empty(self, client, admin, auth_headers):
        response = await client.post("/api/finance/reimburse", json={"expenseIds": []}, headers=auth_headers(admin))
        assert response.status_code == 400
        assert response.json()["error"] == "Expense IDs array is required"

    @pytest.mark.asyncio
    async def test_export_csv(self, client, db_session, test_organization, employee, admin, auth_headers, make_expense):
        expense = await make_expense(employee, test_organization, state=ExpenseState.APPROVED)

        response = await client.post(
            "/api/finance/export",
            json={"format": "csv", "expenseIds": [str(expense.id), "not-a-uuid"]},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"].startswith('attachment; filename="expenses-export-')
        assert response.text.splitlines()[0].startswith('"Date","Employee Email"')

        events = await AuditService(db_session).get_organization_events(
            test_organization.id, OrganizationAuditAction.FINANCE_EXPORT
        )
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_export_validation(self, client, admin, auth_headers):
        response = await client.post(
            "/api/finance/export", json={"format": "xlsx", "expenseIds": ["x"]}, headers=auth_headers(admin)
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid format. Must be csv or pdf."

        response = await client.post(
            "/api/finance/export", json={"format": "csv", "expenseIds": []}, headers=auth_headers(admin)
        )
        assert response.status_code == 400

        response = await client.post(
            "/api/finance/export",
            json={"format": "csv", "expenseIds": [str(uuid.uuid4())]},
            headers=auth_headers(admin),
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_export_requires_admin(self, client, test_organization, employee, auth_headers, make_expense):
        expense = await make_expense(employee, test_organization)
        response = await client.post(
            "/api/finance/export",
            json={"format": "pdf", "expenseIds": [str(expense.id)]},
            headers=auth_headers(employee),
        )
        assert response.status_code == 403


class TestSelfServiceExport:

    @pytest.mark.asyncio
    async def test_export_own_expenses(self, client, employee, auth_headers, make_expense):
        await make_expense(employee)
        response = await client.get("/api/exports?format=pdf", headers=auth_headers(employee))
        assert response.status_code == 200
        assert response.content.startswith(b"%PDF")

    @pytest.mark.asyncio
    async def test_nothing_to_export(self, client, employee, auth_headers):
        response = await client.get("/api/exports", headers=auth_headers(employee))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_inverted_dates(self, client, employee, auth_headers):
        response = await client.get(
            "/api/exports?startDate=2026-02-01&endDate=2026-01-01", headers=auth_headers(employee)
        )
        assert response.status_code == 400


class TestReactiveLinkingEndpoints:

    async def _join(self, db_session, organization, owner, user, make_expense):
        await make_expense(user)
        _, notification = await OrganizationService(db_session).add_member(
            organization.id, user.id, OrganizationRole.MEMBER, owner.id
        )
        return notification

    @pytest.mark.asyncio
    async def test_get_and_link(
        self, client, db_session, test_organization, owner, outsider, auth_headers, make_expense
    ):
        notification = await self._join(db_session, test_organization, owner, outsider, make_expense)

        response = await client.get(
            f"/api/reactive-linking?organizationId={test_organization.id}", headers=auth_headers(outsider)
        )
        assert response.json()["notification"]["id"] == str(notification.id)

        response = await client.post(
            "/api/reactive-linking",
            json={
                "action": "link",
                "organizationId": str(test_organization.id),
                "notificationId": str(notification.id),
            },
            headers=auth_headers(outsider),
        )
        assert response.json() == {"success": True, "linkedCount": 1}

        response = await client.get(
            f"/api/reactive-linking?organizationId={test_organization.id}", headers=auth_headers(outsider)
        )
        assert response.json() == {"notification": None}

    @pytest.mark.asyncio
    async def test_dismiss_twice(
        self, client, db_session, test_organization, owner, outsider, auth_headers, make_expense
    ):
        notification = await self._join(db_session, test_organization, owner, outsider, make_expense)
        payload = {
            "action": "dismiss",
            "organizationId": str(test_organization.id),
            "notificationId": str(notification.id),
        }
        for _ in range(2):
            response = await client.post("/api/reactive-linking", json=payload, headers=auth_headers(outsider))
            assert response.json() == {"success": True}

    @pytest.mark.asyncio
    async def test_request_validation(self, client, test_organization, employee, auth_headers):
        headers = auth_headers(employee)

        response = await client.get("/api/reactive-linking", headers=headers)
        assert response.status_code == 400

        response = await client.post("/api/reactive-linking", json={"action": "link"}, headers=headers)
        assert response.json()["error"] == "Missing required fields"

        response = await client.post(
            "/api/reactive-linking",
            json={"action": "merge", "organizationId": str(test_organization.id)},
            headers=headers,
        )
        assert response.json()["error"] == "Invalid action"

        response = await client.post(
            "/api/reactive-linking",
            json={"action": "link", "organizationId": str(test_organization.id)},
            headers=headers,
        )
        assert response.json()["error"] == "Notification ID required"


class TestOrganizationEndpoints:

    @pytest.mark.asyncio
    async def test_managers_exclude_caller(self, client, test_organization, owner, admin, employee, auth_headers):
        response = await client.get(
            f"/api/organizations/managers?organizationId={test_organization.id}", headers=auth_headers(employee)
        )
        assert response.status_code == 200
        assert {m["id"] for m in response.json()} == {str(owner.id), str(admin.id)}

        response = await client.get(
            f"/api/organizations/managers?organizationId={test_organization.id}", headers=auth_headers(admin)
        )
        assert [m["id"] for m in response.json()] == [str(owner.id)]

    @pytest.mark.asyncio
    async def test_managers_require_membership(self, client, test_organization, outsider, auth_headers):
        response = await client.get(
            f"/api/organizations/managers?organizationId={test_organization.id}", headers=auth_headers(outsider)
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_add_member(self, client, test_organization, admin, outsider, auth_headers, make_expense):
        await make_expense(outsider)
        response = await client.post(
            "/api/organizations/members",
            json={"organizationId": str(test_organization.id), "userId": str(outsider.id)},
            headers=auth_headers(admin),
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["member"]["role"] == "member"
        assert data["notification"]["personalDraftCount"] == 1

    @pytest.mark.asyncio
    async def test_only_owner_grants_owner(self, client, test_organization, admin, outsider, auth_headers):
        response = await client.post(
            "/api/organizations/members",
            json={"organizationId": str(test_organization.id), "userId": str(outsider.id), "role": "owner"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 403
