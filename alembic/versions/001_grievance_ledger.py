"""grievances, tracking ledger and attachments

Revision ID: 001_grievance_ledger
Revises:
Create Date: 2026-10-19 10:00:00

Initial schema. tracking_entries is append-only: a per-grievance UNIQUE
sequence number serialises racing appends, and a trigger rejects UPDATE
and DELETE.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_grievance_ledger'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'grievances',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('ticket_code', sa.String(50), nullable=False),
        sa.Column('submitter_id', sa.String(50), nullable=False),
        sa.Column('campus_id', sa.Integer, nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('subject', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('has_attachments', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(20), nullable=False, server_default='SUBMITTED'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_grievances_ticket_code', 'grievances', ['ticket_code'], unique=True)
    op.create_index('ix_grievances_submitter_id', 'grievances', ['submitter_id'])
    op.create_index('ix_grievances_campus_id', 'grievances', ['campus_id'])
    op.create_index('ix_grievances_category', 'grievances', ['category'])
    op.create_index('ix_grievances_status', 'grievances', ['status'])
    op.create_index('ix_grievances_created_at', 'grievances', ['created_at'])

    op.create_table(
        'tracking_entries',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('grievance_id', sa.Integer, sa.ForeignKey('grievances.id'), nullable=False),
        sa.Column('sequence_number', sa.Integer, nullable=False),
        sa.Column('from_status', sa.String(20), nullable=True),
        sa.Column('to_status', sa.String(20), nullable=False),
        sa.Column('actor_id', sa.String(50), nullable=False),
        sa.Column('actor_role', sa.String(20), nullable=True),
        sa.Column('note', sa.Text(), nullable=False, server_default=''),
        sa.Column('redirect_target', sa.String(50), nullable=True),
        sa.Column('is_redirect', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_override', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('grievance_id', 'sequence_number', name='uq_tracking_grievance_sequence'),
    )
    op.create_index('ix_tracking_entries_grievance_id', 'tracking_entries', ['grievance_id'])
    op.create_index('ix_tracking_entries_to_status', 'tracking_entries', ['to_status'])
    op.create_index('ix_tracking_entries_actor_id', 'tracking_entries', ['actor_id'])
    op.create_index('ix_tracking_entries_created_at', 'tracking_entries', ['created_at'])

    op.create_table(
        'attachments',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('grievance_id', sa.Integer, sa.ForeignKey('grievances.id'), nullable=True),
        sa.Column('original_filename', sa.String(255), nullable=False),
        sa.Column('mime_type', sa.String(100), nullable=False),
        sa.Column('size_bytes', sa.Integer, nullable=False),
        sa.Column('storage_handle', sa.String(255), nullable=True),
        sa.Column('content', sa.LargeBinary(), nullable=True),
        sa.Column('uploaded_by', sa.String(50), nullable=False),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_attachments_grievance_id', 'attachments', ['grievance_id'])
    op.create_index('ix_attachments_storage_handle', 'attachments', ['storage_handle'])
    op.create_index('ix_attachments_uploaded_by', 'attachments', ['uploaded_by'])
    op.create_index('ix_attachments_unclaimed_age', 'attachments', ['grievance_id', 'uploaded_at'])

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        op.execute("""
            CREATE OR REPLACE FUNCTION reject_tracking_mutation()
            RETURNS TRIGGER AS $$
            BEGIN
                RAISE EXCEPTION 'Tracking entries are append-only. Operation % is forbidden.', TG_OP;
            END;
            $$ LANGUAGE plpgsql;
        """)
        op.execute("""
            CREATE TRIGGER prevent_tracking_mutation
            BEFORE UPDATE OR DELETE ON tracking_entries
            FOR EACH ROW EXECUTE FUNCTION reject_tracking_mutation();
        """)
    elif bind.dialect.name == 'sqlite':
        op.execute("""
            CREATE TRIGGER IF NOT EXISTS prevent_tracking_update
            BEFORE UPDATE ON tracking_entries
            BEGIN
                SELECT RAISE(ABORT, 'Tracking entries are append-only');
            END;
        """)
        op.execute("""
            CREATE TRIGGER IF NOT EXISTS prevent_tracking_delete
            BEFORE DELETE ON tracking_entries
            BEGIN
                SELECT RAISE(ABORT, 'Tracking entries are append-only');
            END;
        """)


def downgrade():
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        op.execute("DROP TRIGGER IF EXISTS prevent_tracking_mutation ON tracking_entries")
        op.execute("DROP FUNCTION IF EXISTS reject_tracking_mutation()")
    elif bind.dialect.name == 'sqlite':
        op.execute("DROP TRIGGER IF EXISTS prevent_tracking_update")
        op.execute("DROP TRIGGER IF EXISTS prevent_tracking_delete")

    op.drop_table('attachments')
    op.drop_table('tracking_entries')
    op.drop_table('grievances')
