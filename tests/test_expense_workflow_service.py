"""
ClaimFlow - Expense Workflow Service Tests

Transactional behavior of transitions, batch reimbursement and overrides.
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
from app.models.audit import AuditAction
from app.models.expense import ExpenseState
from app.models.organization import Organization, OrganizationMember, OrganizationRole
from app.models.user import User
from app.schemas.expense import LineItemInput
from app.services.audit_service import AuditService, audit_action_label
from app.services.expense_service import ExpenseService
from app.services.expense_state_machine import ExpenseAction
from app.services.expense_workflow_service import ExpenseWorkflowService
from app.utils.error_handling import (
    AuthorizationException,
    ConflictException,
    ErrorCode,
    PartialMatchException,
    TotalMismatchException,
    ValidationException,
)


class TestTransitions:
    """Single-expense workflow actions."""

    @pytest.mark.asyncio
    async def test_full_workflow_appends_one_entry_per_transition(
        self, db_session, test_organization, employee, manager, admin, make_expense
    ):
        """Each successful transition adds exactly one audit entry."""
        expense = await make_expense(employee, test_organization, managers=[manager])
        service = ExpenseWorkflowService(db_session)
        steps = [
            (ExpenseAction.SUBMIT, employee, ExpenseState.PRE_APPROVAL_PENDING),
            (ExpenseAction.PRE_APPROVE, manager, ExpenseState.PRE_APPROVED),
            (ExpenseAction.SUBMIT_FOR_APPROVAL, employee, ExpenseState.APPROVAL_PENDING),
            (ExpenseAction.APPROVE, admin, ExpenseState.APPROVED),
        ]

        trail_length = len(await AuditService(db_session).get_audit_trail(expense.id))
        assert trail_length == 1

        for action, actor, expected_state in steps:
            updated = await service.transition(expense.id, action, actor.id)
            assert updated.state == expected_state
            trail = await AuditService(db_session).get_audit_trail(expense.id)
            assert len(trail) == trail_length + 1
            last = trail[-1]
            assert last.action == AuditAction.UPDATE_STATUS.value
            assert last.actor_id == str(actor.id)
            assert last.changes[0]["field"] == "status"
            assert last.changes[0]["newValue"] == expected_state.value
            trail_length = len(trail)

    @pytest.mark.asyncio
    async def test_manager_rejection_is_audited_with_member_role(
        self, db_session, test_organization, employee, manager, make_expense
    ):
        expense = await make_expense(
            employee, test_organization, managers=[manager], state=ExpenseState.PRE_APPROVAL_PENDING
        )
        service = ExpenseWorkflowService(db_session)
        updated = await service.transition(expense.id, ExpenseAction.REJECT, manager.id, comment="No receipt")
        assert updated.state == ExpenseState.REJECTED
        entry = updated.audit_trail[-1]
        assert entry.role == "member"
        assert entry.entry_metadata == {"comment": "No receipt"}

    @pytest.mark.asyncio
    async def test_failed_guard_leaves_no_trace(
        self, db_session, test_organization, employee, manager, make_expense
    ):
        """A rejected action changes neither the state nor the trail."""
        expense = await make_expense(
            employee, test_organization, managers=[manager], state=ExpenseState.APPROVAL_PENDING
        )
        service = ExpenseWorkflowService(db_session)
        with pytest.raises(AuthorizationException):
            await service.transition(expense.id, ExpenseAction.APPROVE, manager.id)

        reloaded = await service.get_expense(expense.id)
        assert reloaded.state == ExpenseState.APPROVAL_PENDING
        assert len(reloaded.audit_trail) == 1

    @pytest.mark.asyncio
    async def test_admin_cannot_approve_own_expense(
        self, db_session, test_organization, admin, manager, make_expense
    ):
        expense = await make_expense(
            admin, test_organization, managers=[manager], state=ExpenseState.APPROVAL_PENDING
        )
        with pytest.raises(AuthorizationException) as exc:
            await ExpenseWorkflowService(db_session).transition(expense.id, ExpenseAction.APPROVE, admin.id)
        assert exc.value.code == ErrorCode.SELF_APPROVAL


class TestTotalMismatch:
    """A total of 120 with line items of 60 + 40."""

    @pytest.mark.asyncio
    async def test_submission_rejected(self, db_session, test_organization, employee, manager, make_expense):
        expense = await make_expense(
            employee, test_organization, managers=[manager],
            amounts=["60.00", "40.00"], total_amount=Decimal("120.00"),
        )
        service = ExpenseWorkflowService(db_session)
        with pytest.raises(TotalMismatchException):
            await service.transition(expense.id, ExpenseAction.SUBMIT, employee.id)

        reloaded = await service.get_expense(expense.id)
        assert reloaded.state == ExpenseState.DRAFT
        assert reloaded.total_amount == Decimal("120.00")
        assert len(reloaded.audit_trail) == 1

    @pytest.mark.asyncio
    async def test_submission_reconciled(self, db_session, test_organization, employee, manager, make_expense):
        expense = await make_expense(
            employee, test_organization, managers=[manager],
            amounts=["60.00", "40.00"], total_amount=Decimal("120.00"),
        )
        service = ExpenseWorkflowService(db_session)
        updated = await service.transition(expense.id, ExpenseAction.SUBMIT, employee.id, reconcile_total=True)

        assert updated.state == ExpenseState.PRE_APPROVAL_PENDING
        assert updated.total_amount == Decimal("100.00")
        entry = updated.audit_trail[-1]
        assert {"field": "totalAmount", "oldValue": "120.00", "newValue": "100.00"} in entry.changes
        assert len(updated.audit_trail) == 2

    @pytest.mark.asyncio
    async def test_admin_total_override_allows_submission(
        self, db_session, test_organization, employee, manager, admin, make_expense
    ):
        expense = await make_expense(employee, test_organization, managers=[manager], amounts=["100.00"])
        service = ExpenseWorkflowService(db_session)
        overridden = await service.override_total(expense.id, admin.id, Decimal("120.00"), reason="Tip")
        assert overridden.total_overridden is True
        assert overridden.audit_trail[-1].action == AuditAction.ADMIN_OVERRIDE.value
        assert overridden.audit_trail[-1].entry_metadata == {"adminOverride": True, "reason": "Tip"}

        submitted = await service.transition(expense.id, ExpenseAction.SUBMIT, employee.id)
        assert submitted.total_amount == Decimal("120.00")

    @pytest.mark.asyncio
    async def test_owner_edit_after_override_restores_total_check(
        self, db_session, test_organization, employee, manager, admin, make_expense
    ):
        """An owner changing the total after an admin override must match the line items again."""
        expense = await make_expense(employee, test_organization, managers=[manager], amounts=["100.00"])
        service = ExpenseWorkflowService(db_session)
        await service.override_total(expense.id, admin.id, Decimal("120.00"))

        edited = await ExpenseService(db_session).update_draft(
            expense.id, employee.id, total_amount=Decimal("5000.00")
        )
        assert edited.total_overridden is False
        assert {"field": "totalOverridden", "oldValue": True, "newValue": False} in edited.audit_trail[-1].changes

        with pytest.raises(TotalMismatchException):
            await service.transition(expense.id, ExpenseAction.SUBMIT, employee.id)
        assert (await service.get_expense(expense.id)).state == ExpenseState.DRAFT

    @pytest.mark.asyncio
    async def test_total_override_requires_admin(
        self, db_session, test_organization, employee, manager, make_expense
    ):
        expense = await make_expense(employee, test_organization, managers=[manager])
        with pytest.raises(AuthorizationException):
            await ExpenseWorkflowService(db_session).override_total(expense.id, manager.id, Decimal("5.00"))


class TestDeleteRestoreOverride:

    @pytest.mark.asyncio
    async def test_restore_returns_to_pre_delete_state(
        self, db_session, test_organization, employee, manager, make_expense
    ):
        expense = await make_expense(
            employee, test_organization, managers=[manager], state=ExpenseState.PRE_APPROVED
        )
        service = ExpenseWorkflowService(db_session)

        deleted = await service.delete(expense.id, employee.id)
        assert deleted.state == ExpenseState.DELETED
        assert deleted.deleted_at is not None

        restored = await service.restore(expense.id, employee.id)
        assert restored.state == ExpenseState.PRE_APPROVED
        assert restored.deleted_at is None
        actions = [entry.action for entry in restored.audit_trail]
        assert actions[-2:] == [AuditAction.DELETE.value, AuditAction.RESTORE.value]

    @pytest.mark.asyncio
    async def test_admin_override_out_of_rejected(
        self, db_session, test_organization, employee, manager, admin, make_expense
    ):
        expense = await make_expense(
            employee, test_organization, managers=[manager], state=ExpenseState.REJECTED
        )
        updated = await ExpenseWorkflowService(db_session).admin_override(
            expense.id, ExpenseState.DRAFT, admin.id, reason="Appeal accepted"
        )
        assert updated.state == ExpenseState.DRAFT
        entry = updated.audit_trail[-1]
        assert entry.action == AuditAction.ADMIN_OVERRIDE.value
        assert entry.role == "admin"
        assert entry.entry_metadata["adminOverride"] is True


class TestBatchReimbursement:
    """All-or-nothing reimbursement."""

    @pytest.mark.asyncio
    async def test_reimburse_approved_batch(
        self, db_session, test_organization, employee, manager, admin, make_expense
    ):
        first = await make_expense(employee, test_organization, managers=[manager], state=ExpenseState.APPROVED)
        second = await make_expense(employee, test_organization, managers=[manager], state=ExpenseState.APPROVED)
        service = ExpenseWorkflowService(db_session)

        result = await service.reimburse([first.id, second.id, first.id], admin.id)

        assert result["updatedCount"] == 2
        assert set(result["expenseIds"]) == {str(first.id), str(second.id)}
        for expense_id in (first.id, second.id):
            expense = await service.get_expense(expense_id)
            assert expense.state == ExpenseState.REIMBURSED
            entry = expense.audit_trail[-1]
            assert entry.role == "admin"
            assert entry.entry_metadata == {"batchReimbursement": True, "expenseCount": 2}

    @pytest.mark.asyncio
    async def test_mixed_batch_changes_nothing(
        self, db_session, test_organization, employee, manager, admin, make_expense
    ):
        """[Approved, Draft] fails and both expenses keep state and trail."""
        approved = await make_expense(employee, test_organization, managers=[manager], state=ExpenseState.APPROVED)
        draft = await make_expense(employee, test_organization, managers=[manager])
        service = ExpenseWorkflowService(db_session)

        with pytest.raises(PartialMatchException) as exc:
            await service.reimburse([approved.id, draft.id], admin.id)
        assert exc.value.status_code == 400

        for expense_id, state in ((approved.id, ExpenseState.APPROVED), (draft.id, ExpenseState.DRAFT)):
            expense = await service.get_expense(expense_id)
            assert expense.state == state
            assert len(expense.audit_trail) == 1

    @pytest.mark.asyncio
    async def test_unknown_id_fails_batch(
        self, db_session, test_organization, employee, manager, admin, make_expense
    ):
        approved = await make_expense(employee, test_organization, managers=[manager], state=ExpenseState.APPROVED)
        with pytest.raises(PartialMatchException):
            await ExpenseWorkflowService(db_session).reimburse([approved.id, uuid.uuid4()], admin.id)

    @pytest.mark.asyncio
    async def test_personal_expense_rejected(self, db_session, admin, make_expense):
        personal = await make_expense(admin)
        with pytest.raises(ValidationException) as exc:
            await ExpenseWorkflowService(db_session).reimburse([personal.id], admin.id)
        assert exc.value.message == "Cannot reimburse personal expenses"
        assert exc.value.code == ErrorCode.PERSONAL_EXPENSE

    @pytest.mark.asyncio
    async def test_member_cannot_reimburse(
        self, db_session, test_organization, employee, manager, make_expense
    ):
        approved = await make_expense(employee, test_organization, managers=[manager], state=ExpenseState.APPROVED)
        with pytest.raises(AuthorizationException):
            await ExpenseWorkflowService(db_session).reimburse([approved.id], manager.id)

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, db_session, admin):
        with pytest.raises(ValidationException):
            await ExpenseWorkflowService(db_session).reimburse([], admin.id)


class TestConcurrentReimbursement:
    """Two finance users reimbursing the same expense at once."""

    @pytest.mark.asyncio
    async def test_second_writer_gets_conflict(self, tmp_path):
        """
        Session A loads the expense, session B reimburses it and commits,
        then A tries to commit: A fails and exactly one reimbursement entry
        exists.
        """
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

        async with session_factory() as setup:
            org = Organization(name="Race Org", slug="race")
            finance = User(name="Fiona", email="fiona@example.com")
            worker = User(name="Will", email="will@example.com")
            reviewer = User(name="Rita", email="rita@example.com")
            setup.add_all([org, finance, worker, reviewer])
            await setup.flush()
            setup.add_all([
                OrganizationMember(organization_id=org.id, user_id=finance.id, role=OrganizationRole.ADMIN),
                OrganizationMember(organization_id=org.id, user_id=worker.id, role=OrganizationRole.MEMBER),
                OrganizationMember(organization_id=org.id, user_id=reviewer.id, role=OrganizationRole.MEMBER),
            ])
            await setup.commit()

            expense = await ExpenseService(setup).create_expense(
                actor_id=worker.id,
                line_items=[LineItemInput(amount=Decimal("50.00"), expense_date=date(2026, 1, 5))],
                organization_id=org.id,
                manager_ids=[reviewer.id],
            )
            expense.state = ExpenseState.APPROVED
            await setup.commit()
            expense_id, finance_id = expense.id, finance.id

        async with session_factory() as session_a, session_factory() as session_b:
            service_a = ExpenseWorkflowService(session_a)
            load = service_a._load_reimbursable

            async def load_then_interleave(ids):
                loaded = await load(ids)
                await ExpenseWorkflowService(session_b).reimburse(ids, finance_id)
                return loaded

            service_a._load_reimbursable = load_then_interleave

            with pytest.raises(ConflictException):
                await service_a.reimburse([expense_id], finance_id)

        async with session_factory() as check:
            expense = await ExpenseWorkflowService(check).get_expense(expense_id)
            assert expense.state == ExpenseState.REIMBURSED
            reimbursements = [
                entry for entry in expense.audit_trail
                if entry.entry_metadata and entry.entry_metadata.get("batchReimbursement")
            ]
            assert len(reimbursements) == 1

        await engine.dispose()


class TestAuditActionLabels:

    def test_known_actions(self):
        assert audit_action_label(AuditAction.LINK_ORG.value) == "Linked to Organization"
        assert audit_action_label(AuditAction.UPDATE_STATUS.value) == "Status Changed"

    def test_unknown_action_is_title_cased(self):
        assert audit_action_label("SOME_THING") == "Some Thing"
