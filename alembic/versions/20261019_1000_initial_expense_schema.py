"""Initial expense management schema

Revision ID: 20261019_1000_initial_expense_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000

This migration creates the expense workflow tables:
- users, organizations, organization_members: tenancy and roles
- expenses, expense_line_items: expense reports with a version stamp
  used for optimistic concurrency
- expense_audit_entries: append-only per-expense audit trail
- organization_audit_events: finance access and membership events
- reactive_linking_notifications: prompts to link personal drafts
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '20261019_1000_initial_expense_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create expense management tables."""

    # ===========================================
    # TENANCY
    # ===========================================
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'organizations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_organizations'),
    )
    op.create_index('ix_organizations_slug', 'organizations', ['slug'], unique=True)

    op.create_table(
        'organization_members',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_organization_members'),
        sa.ForeignKeyConstraint(
            ['organization_id'], ['organizations.id'],
            name='fk_organization_members_organization_id_organizations',
            ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['user_id'], ['users.id'],
            name='fk_organization_members_user_id_users',
            ondelete='CASCADE',
        ),
        sa.UniqueConstraint('organization_id', 'user_id', name='uq_organization_members_org_user'),
    )
    op.create_index('ix_organization_members_organization_id', 'organization_members', ['organization_id'])
    op.create_index('ix_organization_members_user_id', 'organization_members', ['user_id'])

    # ===========================================
    # EXPENSES
    # ===========================================
    op.create_table(
        'expenses',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('organization_id', sa.Uuid(), nullable=True,
                  comment='NULL for personal (vault) expenses'),
        sa.Column('manager_ids', sa.JSON(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('total_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('total_overridden', sa.Boolean(), nullable=False,
                  comment='Set by an audited admin override of the total'),
        sa.Column('state', sa.String(30), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_expenses'),
        sa.ForeignKeyConstraint(
            ['user_id'], ['users.id'],
            name='fk_expenses_user_id_users',
            ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['organization_id'], ['organizations.id'],
            name='fk_expenses_organization_id_organizations',
            ondelete='SET NULL',
        ),
    )
    op.create_index('ix_expenses_user_id', 'expenses', ['user_id'])
    op.create_index('ix_expenses_organization_id', 'expenses', ['organization_id'])
    op.create_index('ix_expenses_state', 'expenses', ['state'])

    op.create_table(
        'expense_line_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('expense_id', sa.Uuid(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('expense_date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('attachments', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_expense_line_items'),
        sa.ForeignKeyConstraint(
            ['expense_id'], ['expenses.id'],
            name='fk_expense_line_items_expense_id_expenses',
            ondelete='CASCADE',
        ),
    )
    op.create_index('ix_expense_line_items_expense_id', 'expense_line_items', ['expense_id'])

    # ===========================================
    # AUDIT
    # ===========================================
    op.create_table(
        'expense_audit_entries',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('expense_id', sa.Uuid(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('actor_id', sa.String(64), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('changes', sa.JSON(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_expense_audit_entries'),
        sa.ForeignKeyConstraint(
            ['expense_id'], ['expenses.id'],
            name='fk_expense_audit_entries_expense_id_expenses',
            ondelete='CASCADE',
        ),
        sa.UniqueConstraint('expense_id', 'sequence', name='uq_expense_audit_entries_expense_sequence'),
    )
    op.create_index('ix_expense_audit_entries_expense_id', 'expense_audit_entries', ['expense_id'])
    op.create_index('ix_expense_audit_entries_action', 'expense_audit_entries', ['action'])

    op.create_table(
        'organization_audit_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('actor_id', sa.Uuid(), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('role', sa.String(20), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_organization_audit_events'),
        sa.ForeignKeyConstraint(
            ['organization_id'], ['organizations.id'],
            name='fk_organization_audit_events_organization_id_organizations',
            ondelete='CASCADE',
        ),
    )
    op.create_index('ix_organization_audit_events_organization_id', 'organization_audit_events', ['organization_id'])
    op.create_index('ix_organization_audit_events_actor_id', 'organization_audit_events', ['actor_id'])
    op.create_index('ix_organization_audit_events_action', 'organization_audit_events', ['action'])
    op.create_index('ix_organization_audit_events_created_at', 'organization_audit_events', ['created_at'])

    # ===========================================
    # REACTIVE LINKING
    # ===========================================
    op.create_table(
        'reactive_linking_notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('personal_draft_count', sa.Integer(), nullable=False),
        sa.Column('linked_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_reactive_linking_notifications'),
        sa.ForeignKeyConstraint(
            ['user_id'], ['users.id'],
            name='fk_reactive_linking_notifications_user_id_users',
            ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['organization_id'], ['organizations.id'],
            name='fk_reactive_linking_notifications_organization_id_organizations',
            ondelete='CASCADE',
        ),
    )
    op.create_index('ix_reactive_linking_notifications_user_id', 'reactive_linking_notifications', ['user_id'])
    op.create_index(
        'ix_reactive_linking_notifications_organization_id',
        'reactive_linking_notifications',
        ['organization_id'],
    )
    op.create_index('ix_reactive_linking_notifications_status', 'reactive_linking_notifications', ['status'])


def downgrade() -> None:
    """Drop expense management tables."""
    op.drop_table('reactive_linking_notifications')
    op.drop_table('organization_audit_events')
    op.drop_table('expense_audit_entries')
    op.drop_table('expense_line_items')
    op.drop_table('expenses')
    op.drop_table('organization_members')
    op.drop_table('organizations')
    op.drop_table('users')
