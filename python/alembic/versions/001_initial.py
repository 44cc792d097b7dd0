"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

Baseline migration creating the screening record, watchlist result and
audit tables of the compliance screening core (see database/models.py).
For existing databases, use `alembic stamp 001_initial` to mark as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


SCREENING_STATUS = ('pending', 'in_review', 'approved', 'denied', 'requires_enhanced_dd')

AUDIT_ACTIONS = (
    'CREATE', 'SCREEN', 'TRANSITION', 'UPDATE_RISK', 'ASSIGN_OFFICER',
    'COMPLETE_ENHANCED_DD', 'UPLOAD_DOCUMENT', 'UPDATE_DETAILS',
)


def upgrade() -> None:
    """Create initial database schema."""

    # Create enums
    screening_status = postgresql.ENUM(*SCREENING_STATUS, name='screening_status', create_type=True)
    screening_status.create(op.get_bind(), checkfirst=True)

    audit_action = postgresql.ENUM(*AUDIT_ACTIONS, name='audit_action', create_type=True)
    audit_action.create(op.get_bind(), checkfirst=True)

    # Create screening_records table
    op.create_table(
        'screening_records',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('shipment_id', sa.String(100), nullable=False),
        sa.Column('status', postgresql.ENUM(*SCREENING_STATUS, name='screening_status', create_type=False),
                  nullable=False, server_default='pending'),
        sa.Column('company_name', sa.String(500)),
        sa.Column('country', sa.String(100)),
        sa.Column('assigned_officer', sa.String(200)),
        sa.Column('overall_risk', sa.Float),
        sa.Column('risk_tier', sa.String(20)),
        sa.Column('enhanced_dd_required', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('enhanced_dd_completed', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('watchlist_run_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('payload', postgresql.JSONB, nullable=False),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()'))
    )

    # Create screening_list_results table
    op.create_table(
        'screening_list_results',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('record_id', sa.String(100),
                  sa.ForeignKey('screening_records.id', ondelete='CASCADE'), nullable=False),
        sa.Column('run_number', sa.Integer, nullable=False),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('list_name', sa.String(100), nullable=False),
        sa.Column('match_found', sa.Boolean, nullable=False),
        sa.Column('matched_entity_name', sa.String(500)),
        sa.Column('match_confidence', sa.Float),
        sa.Column('match_reason', sa.Text),
        sa.Column('lookup_failed', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('processing_time_ms', sa.Float),
        sa.Column('screened_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.UniqueConstraint('record_id', 'run_number', 'position', name='uq_list_result_position')
    )

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('action', postgresql.ENUM(*AUDIT_ACTIONS, name='audit_action', create_type=False),
                  nullable=False),
        sa.Column('resource_type', sa.String(100), nullable=False, server_default='screening_record'),
        sa.Column('resource_id', sa.String(100)),
        sa.Column('actor_name', sa.String(200)),
        sa.Column('details', postgresql.JSONB),
        sa.Column('old_value', postgresql.JSONB),
        sa.Column('new_value', postgresql.JSONB),
        sa.Column('success', sa.Boolean, nullable=False, server_default='true'),
        sa.Column('error_message', sa.Text)
    )

    # Create indexes
    op.create_index('ix_screening_records_shipment_id', 'screening_records', ['shipment_id'])
    op.create_index('ix_screening_records_status', 'screening_records', ['status'])
    op.create_index('ix_screening_records_country', 'screening_records', ['country'])
    op.create_index('ix_screening_records_assigned_officer', 'screening_records', ['assigned_officer'])
    op.create_index('ix_screening_records_risk_tier', 'screening_records', ['risk_tier'])
    op.create_index('ix_screening_status_tier', 'screening_records', ['status', 'risk_tier'])

    op.create_index('ix_screening_list_results_record_id', 'screening_list_results', ['record_id'])
    op.create_index('ix_screening_list_results_list_name', 'screening_list_results', ['list_name'])
    op.create_index('ix_screening_list_results_match_found', 'screening_list_results', ['match_found'])

    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_actor_name', 'audit_logs', ['actor_name'])
    op.create_index('ix_audit_timestamp_action', 'audit_logs', ['timestamp', 'action'])
    op.create_index('ix_audit_resource', 'audit_logs', ['resource_type', 'resource_id'])


def downgrade() -> None:
    """Drop all tables and types."""
    # Drop tables in reverse order
    op.drop_table('audit_logs')
    op.drop_table('screening_list_results')
    op.drop_table('screening_records')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS audit_action')
    op.execute('DROP TYPE IF EXISTS screening_status')
