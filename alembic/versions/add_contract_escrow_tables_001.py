"""Add contract and escrow tables

This migration adds:
1. users table (mirror of the auth service's accounts)
2. campaigns table (budget ceiling per campaign)
3. contracts table with the active_slot uniqueness guard
4. contract_audit_events table
5. escrow_ledgers table (one per brand)
6. milestones table
7. notifications table

Revision ID: add_contract_escrow_tables_001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = 'add_contract_escrow_tables_001'
down_revision = None
branch_labels = None
depends_on = None


CONTRACT_STATUSES = ('draft', 'sent', 'viewed', 'negotiation', 'finalize', 'signing', 'locked', 'rejected')
PAYOUT_STATUSES = ('pending', 'initiated', 'paid')


def _signature_columns(party):
    return [
        sa.Column(f'{party}_signed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(f'{party}_signed_by', sa.String(36)),
        sa.Column(f'{party}_signer_name', sa.String(255)),
        sa.Column(f'{party}_signer_email', sa.String(255)),
        sa.Column(f'{party}_signed_at', sa.DateTime),
        sa.Column(f'{party}_signature_ref', sa.Text),
        sa.Column(f'{party}_signature_bytes', sa.Integer),
    ]


def upgrade():
    # 1. Users
    op.create_table('users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255)),
        sa.Column('user_type', sa.Enum('brand', 'influencer', 'admin', name='usertype'), server_default='brand'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # 2. Campaigns
    op.create_table('campaigns',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('brand_id', sa.String(36), nullable=False),
        sa.Column('title', sa.String(255)),
        sa.Column('description', sa.Text),
        sa.Column('budget', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), server_default='USD'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_campaigns_brand_id', 'campaigns', ['brand_id'])

    # 3. Contracts
    op.create_table('contracts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('brand_id', sa.String(36), nullable=False),
        sa.Column('influencer_id', sa.String(36), nullable=False),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.id'), nullable=False),
        sa.Column('status', sa.Enum(*CONTRACT_STATUSES, name='contractstatusdb'), nullable=False, server_default='draft'),
        sa.Column('active_slot', sa.String(120), unique=True, nullable=True),

        sa.Column('fee_amount', sa.Numeric(12, 2), server_default='0'),
        sa.Column('currency', sa.String(3), server_default='USD'),
        sa.Column('brand_terms', sa.JSON),
        sa.Column('influencer_terms', sa.JSON),
        sa.Column('admin_terms', sa.JSON),

        sa.Column('legal_template_version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('legal_template_text', sa.Text),
        sa.Column('legal_template_history', sa.JSON),

        sa.Column('brand_confirmed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('brand_confirmed_by', sa.String(36)),
        sa.Column('brand_confirmed_at', sa.DateTime),
        sa.Column('influencer_confirmed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('influencer_confirmed_by', sa.String(36)),
        sa.Column('influencer_confirmed_at', sa.DateTime),

        *_signature_columns('brand'),
        *_signature_columns('influencer'),
        *_signature_columns('platform'),

        sa.Column('edited_fields', sa.JSON),
        sa.Column('last_edited_by', sa.String(20)),
        sa.Column('last_edited_at', sa.DateTime),

        sa.Column('sent_at', sa.DateTime),
        sa.Column('viewed_at', sa.DateTime),
        sa.Column('finalized_at', sa.DateTime),
        sa.Column('locked_at', sa.DateTime),
        sa.Column('effective_date', sa.DateTime),
        sa.Column('effective_date_override', sa.DateTime),
        sa.Column('rejected_at', sa.DateTime),
        sa.Column('rejection_reason', sa.Text),

        sa.Column('resend_iteration', sa.Integer, nullable=False, server_default='0'),
        sa.Column('resend_of', sa.String(36), sa.ForeignKey('contracts.id'), nullable=True),
        sa.Column('superseded_by', sa.String(36), nullable=True),

        sa.Column('version', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_contracts_influencer_id', 'contracts', ['influencer_id'])
    op.create_index('ix_contracts_triple', 'contracts', ['brand_id', 'influencer_id', 'campaign_id'])

    # 4. Contract audit events
    op.create_table('contract_audit_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('contract_id', sa.String(36), sa.ForeignKey('contracts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer, nullable=False),
        sa.Column('at', sa.DateTime, nullable=False),
        sa.Column('actor_role', sa.String(20), nullable=False),
        sa.Column('actor_id', sa.String(36)),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('details', sa.JSON),
        sa.UniqueConstraint('contract_id', 'sequence', name='uq_contract_audit_sequence'),
    )

    # 5. Escrow ledgers
    op.create_table('escrow_ledgers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('brand_id', sa.String(36), unique=True, nullable=False),
        sa.Column('wallet_balance', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # 6. Milestones
    op.create_table('milestones',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('ledger_id', sa.String(36), sa.ForeignKey('escrow_ledgers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer, nullable=False),
        sa.Column('influencer_id', sa.String(36), nullable=False),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.id'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('gateway_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('amount_with_fee', sa.Numeric(12, 2), nullable=False),
        sa.Column('released', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('released_at', sa.DateTime),
        sa.Column('payout_status', sa.Enum(*PAYOUT_STATUSES, name='payoutstatusdb'), nullable=False, server_default='pending'),
        sa.Column('paid_at', sa.DateTime),
        sa.Column('paid_by', sa.String(36)),
        sa.Column('version', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('ledger_id', 'sequence', name='uq_milestone_ledger_sequence'),
    )
    op.create_index('ix_milestones_influencer_campaign', 'milestones', ['influencer_id', 'campaign_id'])
    op.create_index('ix_milestones_campaign', 'milestones', ['campaign_id'])

    # 7. Notifications
    op.create_table('notifications',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('recipient_type', sa.String(20), nullable=False),
        sa.Column('recipient_id', sa.String(36), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text),
        sa.Column('entity_type', sa.String(30)),
        sa.Column('entity_id', sa.String(36)),
        sa.Column('action_url', sa.String(500)),
        sa.Column('data', sa.JSON),
        sa.Column('is_read', sa.Boolean, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_recipient_id', 'notifications', ['recipient_id'])


def downgrade():
    op.drop_index('ix_notifications_recipient_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_milestones_campaign', table_name='milestones')
    op.drop_index('ix_milestones_influencer_campaign', table_name='milestones')
    op.drop_table('milestones')
    op.drop_table('escrow_ledgers')
    op.drop_table('contract_audit_events')
    op.drop_index('ix_contracts_triple', table_name='contracts')
    op.drop_index('ix_contracts_influencer_id', table_name='contracts')
    op.drop_table('contracts')
    op.drop_index('ix_campaigns_brand_id', table_name='campaigns')
    op.drop_table('campaigns')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')

    sa.Enum(name='payoutstatusdb').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='contractstatusdb').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='usertype').drop(op.get_bind(), checkfirst=True)
